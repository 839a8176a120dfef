# 📂 backend/pterocoin/services/referrals.py — реферальные коды (разовый взаимный бонус)
# -----------------------------------------------------------------------------
# generate(uid, code): длина ≤ REFERRAL_CODE_MAX_LENGTH, без пробельных символов,
#   код свободен. Хранится в таблице "referral-codes": {userId, createdAt}.
# claim(uid, code): код существует, пользователь ещё ничего не активировал
#   (referral-<uid> == 1 — навсегда), код не свой. Владелец +80, активатор +250.
# Проверка и установка флага идут под замком referral:<uid>.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict

from ..config import Settings
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..utils import Clock, get_logger, iso_now, now_ms

log = get_logger("referrals")

CODES_TABLE = "referral-codes"


class ReferralService:
    def __init__(self, store: KeyValueStore, ledger: LedgerService, locks: KeyedLock, settings: Settings, clock: Clock = now_ms):
        self.store = store
        self.codes = store.table(CODES_TABLE)
        self.ledger = ledger
        self.locks = locks
        self.settings = settings
        self.clock = clock

    @guarded(log, "generate referral code")
    async def generate(self, user_id: str, code: str) -> Result[Dict[str, Any]]:
        if not code:
            return Result.failure(ErrorCode.MISSING_FIELDS, "No code provided")
        if len(code) > self.settings.REFERRAL_CODE_MAX_LENGTH or any(ch.isspace() for ch in code):
            return Result.failure(ErrorCode.INVALID_CODE)

        async with self.locks.hold(f"referral-code:{code}"):
            if await self.codes.get(code) is not None:
                return Result.failure(ErrorCode.CODE_TAKEN)
            await self.codes.set(code, {"userId": user_id, "createdAt": iso_now(self.clock)})

        log.info("user %s created referral code %r", user_id, code)
        return Result.success({"success": "Referral code created"})

    @guarded(log, "claim referral code")
    async def claim(self, user_id: str, code: str) -> Result[Dict[str, Any]]:
        if not code:
            return Result.failure(ErrorCode.MISSING_FIELDS, "No code provided")

        async with self.locks.hold(f"referral:{user_id}"):
            referral = await self.codes.get(code)
            if not referral:
                return Result.failure(ErrorCode.CODE_NOT_FOUND)
            if str(await self.store.get(f"referral-{user_id}")) == "1":
                return Result.failure(ErrorCode.REFERRAL_ALREADY_CLAIMED)
            owner = referral.get("userId")
            if owner == user_id:
                return Result.failure(ErrorCode.CANNOT_CLAIM_OWN_CODE)

            await self.store.set(f"referral-{user_id}", 1)
            await self.ledger.credit(owner, self.settings.REFERRAL_OWNER_BONUS, reason=f"referral {code} owner")
            await self.ledger.credit(user_id, self.settings.REFERRAL_CLAIMER_BONUS, reason=f"referral {code} claim")

        log.info("user %s claimed referral code %r owned by %s", user_id, code, owner)
        return Result.success({"success": "Referral code claimed"})
