# 📂 backend/pterocoin/services/daily.py — ежедневные награды за серию входов
# -----------------------------------------------------------------------------
# Один claim на календарные сутки (локальная полночь сервера).
# Переход серии при claim:
#   • первый claim или разрыв ≤ DAILY_MAX_STREAK_GAP (1 день) → streak + 1;
#   • разрыв ≤ streakProtection → streak + 1, защита уменьшается на 1 день;
#   • иначе серия сбрасывается в 1.
# Награда = floor(25 * multiplier(streak) + milestoneBonus(streak)).
# Вехи 30/60/90 поднимают защиту до bronze (1 день), если она сейчас меньше.
#
# Лидерборд (streak-leaderboard) обновляется ТОЛЬКО явным update_leaderboard()
# после успешного claim (это делает HTTP-слой).
# -----------------------------------------------------------------------------

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Optional

from ..catalog import (
    DAILY_BASE_AMOUNT,
    DAILY_CLAIMS_CAP,
    DAILY_MAX_STREAK_GAP,
    DAILY_MILESTONES,
    PROTECTION_LEVELS,
    PROTECTION_PURCHASES_CAP,
    ProtectionLevel,
    parse_enum,
    streak_multiplier,
)
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..utils import Clock, get_logger, local_date, local_midnight_ms, now_ms, push_capped

log = get_logger("daily")

LEADERBOARD_KEY = "streak-leaderboard"
BRONZE_DAYS = PROTECTION_LEVELS[ProtectionLevel.BRONZE].days


def streak_key(user_id: str) -> str:
    return f"daily-streak-{user_id}"


def empty_streak() -> Dict[str, int]:
    return {
        "currentStreak": 0,
        "longestStreak": 0,
        "lastClaimTimestamp": 0,
        "totalClaimed": 0,
        "totalCoinsEarned": 0,
        "streakProtection": 0,
    }


def reward_for(streak: int) -> Dict[str, Any]:
    """Размер награды для дня серии streak (с учётом множителя и вех)."""
    multiplier = streak_multiplier(streak)
    milestone = DAILY_MILESTONES.get(streak)
    bonus = milestone.bonus if milestone else 0
    amount = int((Decimal(DAILY_BASE_AMOUNT) * multiplier + bonus).to_integral_value(rounding=ROUND_FLOOR))
    return {
        "amount": amount,
        "baseAmount": DAILY_BASE_AMOUNT,
        "multiplier": float(multiplier),
        "milestoneBonus": bonus,
        "milestoneMessage": milestone.message if milestone else None,
    }


class DailyRewardsEngine:
    def __init__(self, store: KeyValueStore, ledger: LedgerService, locks: KeyedLock, clock: Clock = now_ms):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.clock = clock

    async def get_streak(self, user_id: str) -> Dict[str, int]:
        info = await self.store.get(streak_key(user_id))
        return {**empty_streak(), **info} if info else empty_streak()

    def days_since(self, last_claim: int) -> Optional[int]:
        """Целое число календарных дней с последнего claim; None, если claim'ов не было."""
        if not last_claim:
            return None
        return (local_date(self.clock()) - local_date(last_claim)).days

    @staticmethod
    def _transition(info: Dict[str, int], gap: Optional[int]) -> Dict[str, Any]:
        protection = int(info.get("streakProtection") or 0)
        if gap is None or gap <= DAILY_MAX_STREAK_GAP:
            return {"streak": info["currentStreak"] + 1, "maintained": True, "protectionUsed": False}
        if 0 < protection and gap <= protection:
            return {"streak": info["currentStreak"] + 1, "maintained": True, "protectionUsed": True}
        return {"streak": 1, "maintained": False, "protectionUsed": False}

    async def get_status(self, user_id: str) -> Dict[str, Any]:
        info = await self.get_streak(user_id)
        today = local_midnight_ms(self.clock())
        gap = self.days_since(info["lastClaimTimestamp"])
        step = self._transition(info, gap)
        return {
            "userId": user_id,
            "canClaim": info["lastClaimTimestamp"] != today,
            "daysSinceLastClaim": gap,
            **{k: info[k] for k in empty_streak()},
            "projectedStreak": step["streak"],
            "streakWillMaintain": step["maintained"],
            "willUseProtection": step["protectionUsed"],
            "nextReward": reward_for(step["streak"]),
        }

    @guarded(log, "claim daily reward")
    async def claim(self, user_id: str) -> Result[Dict[str, Any]]:
        async with self.locks.hold(f"daily:{user_id}"):
            info = await self.get_streak(user_id)
            now = self.clock()
            today = local_midnight_ms(now)
            if info["lastClaimTimestamp"] == today:
                return Result.failure(ErrorCode.ALREADY_CLAIMED)

            step = self._transition(info, self.days_since(info["lastClaimTimestamp"]))
            streak = step["streak"]
            protection = int(info.get("streakProtection") or 0)
            if step["protectionUsed"]:
                protection -= 1

            reward = reward_for(streak)
            credited = await self.ledger.credit(user_id, reward["amount"], reason=f"daily streak {streak}")
            if not credited.ok:
                return credited

            milestone = DAILY_MILESTONES.get(streak)
            if milestone and milestone.grants_protection and protection < BRONZE_DAYS:
                protection = BRONZE_DAYS

            updated = {
                "currentStreak": streak,
                "longestStreak": max(streak, int(info.get("longestStreak") or 0)),
                "lastClaimTimestamp": today,
                "totalClaimed": int(info.get("totalClaimed") or 0) + 1,
                "totalCoinsEarned": int(info.get("totalCoinsEarned") or 0) + reward["amount"],
                "streakProtection": protection,
            }
            await self.store.set(streak_key(user_id), updated)

            details = {
                "timestamp": now,
                "streak": streak,
                "reward": reward["amount"],
                "streakMaintained": step["maintained"],
                "streakProtectionUsed": step["protectionUsed"],
                "baseAmount": reward["baseAmount"],
                "multiplier": reward["multiplier"],
                "milestoneBonus": reward["milestoneBonus"],
                "milestoneMessage": reward["milestoneMessage"],
            }
            await push_capped(self.store, f"daily-claims-{user_id}", details, cap=DAILY_CLAIMS_CAP)

        log.info("user %s claimed daily reward: streak %s, +%s", user_id, streak, reward["amount"])
        return Result.success({
            "userId": user_id,
            **details,
            "newBalance": credited.value,
            "streakProtectionRemaining": protection,
            "nextReward": reward_for(streak + 1),
        })

    @guarded(log, "purchase streak protection")
    async def purchase_protection(self, user_id: str, level: Any) -> Result[Dict[str, Any]]:
        lvl = parse_enum(ProtectionLevel, level)
        if lvl is None:
            return Result.failure(ErrorCode.INVALID_LEVEL)
        tier = PROTECTION_LEVELS[lvl]

        async with self.locks.hold(f"daily:{user_id}"):
            info = await self.get_streak(user_id)
            if int(info.get("streakProtection") or 0) >= tier.days:
                return Result.failure(ErrorCode.ALREADY_PROTECTED)

            debit = await self.ledger.debit(
                user_id, tier.price, reason=f"streak protection {lvl.value}", shortfall=ErrorCode.INSUFFICIENT_COINS
            )
            if not debit.ok:
                return debit

            info["streakProtection"] = tier.days
            await self.store.set(streak_key(user_id), info)
            await push_capped(self.store, f"protection-purchases-{user_id}", {
                "timestamp": self.clock(),
                "level": lvl.value,
                "protectionDays": tier.days,
                "price": tier.price,
                "newBalance": debit.value,
            }, cap=PROTECTION_PURCHASES_CAP)

        return Result.success({
            "userId": user_id,
            "level": lvl.value,
            "protectionDays": tier.days,
            "price": tier.price,
            "newBalance": debit.value,
            "streakInfo": info,
        })

    async def update_leaderboard(self, user_id: str, username: Optional[str] = None) -> None:
        """Обновляет (или добавляет) запись пользователя в кэше лидерборда."""
        info = await self.get_streak(user_id)
        async with self.locks.hold("leaderboard"):
            board = [e for e in (await self.store.get(LEADERBOARD_KEY) or []) if e.get("userId") != user_id]
            board.append({
                "userId": user_id,
                "username": username or user_id,
                "currentStreak": info["currentStreak"],
                "longestStreak": info["longestStreak"],
                "totalClaimed": info["totalClaimed"],
                "lastUpdated": self.clock(),
            })
            await self.store.set(LEADERBOARD_KEY, board)

    async def get_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        board = await self.store.get(LEADERBOARD_KEY) or []
        board.sort(key=lambda e: (e.get("currentStreak", 0), e.get("longestStreak", 0), e.get("totalClaimed", 0)), reverse=True)
        return board[: max(0, limit)]

    async def get_history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        logs = await self.store.get(f"daily-claims-{user_id}") or []
        return logs[: max(0, limit)]
