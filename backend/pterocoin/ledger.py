"""
Модуль учёта монет (coins) и кредитного баланса USD (credit).

⚡ Основные правила:
1. Баланс монет: целое число ≥ 0 под ключом coins-<uid>.
   Отсутствующий ключ = 0. Баланс, ставший ровно 0, удаляется из хранилища
   (оба представления эквивалентны для get_balance).
2. Списание, которое увело бы баланс в минус, отклоняется целиком:
   баланс не меняется, возвращается INSUFFICIENT_FUNDS (или код вызывающего движка).
3. Каждая операция «прочитал → проверил → записал» выполняется под
   блокировкой coins:<uid> (credit:<uid> для кредита), поэтому параллельные
   запросы и фоновые задачи не теряют списания.
4. Кредитный баланс (credit-<uid>): Decimal с 2 знаками, хранится строкой.
5. Все движения пишутся в лог pterocoin.ledger с причиной (reason).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from .errors import ErrorCode, Result, guarded
from .kv_store import KeyedLock, KeyValueStore
from .utils import get_logger, q2

log = get_logger("ledger")


# ==============================
# 🔹 Монеты
# ==============================

class LedgerService:
    def __init__(self, store: KeyValueStore, locks: KeyedLock):
        self.store = store
        self.locks = locks

    @staticmethod
    def key(user_id: str) -> str:
        return f"coins-{user_id}"

    async def get_balance(self, user_id: str) -> int:
        raw = await self.store.get(self.key(user_id))
        try:
            return int(raw or 0)
        except (TypeError, ValueError):
            log.warning("corrupted balance for %s: %r, treating as 0", user_id, raw)
            return 0

    async def _write(self, user_id: str, value: int) -> None:
        if value == 0:
            await self.store.delete(self.key(user_id))
        else:
            await self.store.set(self.key(user_id), value)

    @guarded(log, "credit coins")
    async def credit(self, user_id: str, amount: int, reason: str = "") -> Result[int]:
        """
        Начисление монет. Используется для:
          - наград (daily, staking, referral),
          - возвратов за бусты,
          - покупок монет за кредит.
        """
        if not _positive_int(amount):
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        async with self.locks.hold(f"coins:{user_id}"):
            balance = int(await self.store.increment(self.key(user_id), int(amount)))
        log.info("credit %s +%s (%s) → %s", user_id, amount, reason or "-", balance)
        return Result.success(balance)

    @guarded(log, "debit coins")
    async def debit(
        self,
        user_id: str,
        amount: int,
        reason: str = "",
        shortfall: ErrorCode = ErrorCode.INSUFFICIENT_FUNDS,
    ) -> Result[int]:
        """
        Списание монет. При нехватке отказ кодом shortfall, баланс не меняется.
        """
        if not _positive_int(amount):
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        async with self.locks.hold(f"coins:{user_id}"):
            balance = await self.get_balance(user_id)
            if balance < amount:
                return Result.failure(shortfall)
            balance -= int(amount)
            await self._write(user_id, balance)
        log.info("debit %s -%s (%s) → %s", user_id, amount, reason or "-", balance)
        return Result.success(balance)

    @guarded(log, "set coin balance")
    async def set_balance(self, user_id: str, amount: int) -> Result[int]:
        """Прямая установка баланса (админка). amount ≥ 0, 0 → ключ удаляется."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        async with self.locks.hold(f"coins:{user_id}"):
            await self._write(user_id, amount)
        log.info("set balance %s = %s", user_id, amount)
        return Result.success(amount)


# ==============================
# 🔹 Кредит USD (биллинг)
# ==============================

class CreditLedger:
    def __init__(self, store: KeyValueStore, locks: KeyedLock):
        self.store = store
        self.locks = locks

    @staticmethod
    def key(user_id: str) -> str:
        return f"credit-{user_id}"

    async def get_balance(self, user_id: str) -> Decimal:
        raw = await self.store.get(self.key(user_id))
        return q2(raw) if raw not in (None, "") else Decimal("0.00")

    @guarded(log, "add credit")
    async def add(self, user_id: str, amount: Any, reason: str = "") -> Result[Decimal]:
        amount = q2(amount)
        if amount <= 0:
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        async with self.locks.hold(f"credit:{user_id}"):
            balance = q2(await self.get_balance(user_id) + amount)
            await self.store.set(self.key(user_id), str(balance))
        log.info("credit usd %s +%s (%s) → %s", user_id, amount, reason or "-", balance)
        return Result.success(balance)

    @guarded(log, "spend credit")
    async def spend(self, user_id: str, amount: Any, reason: str = "") -> Result[Decimal]:
        amount = q2(amount)
        if amount <= 0:
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        async with self.locks.hold(f"credit:{user_id}"):
            balance = await self.get_balance(user_id)
            if balance < amount:
                return Result.failure(ErrorCode.INSUFFICIENT_CREDIT)
            balance = q2(balance - amount)
            await self.store.set(self.key(user_id), str(balance))
        log.info("spend usd %s -%s (%s) → %s", user_id, amount, reason or "-", balance)
        return Result.success(balance)


def _positive_int(amount: Any) -> bool:
    return not isinstance(amount, bool) and isinstance(amount, int) and amount > 0
