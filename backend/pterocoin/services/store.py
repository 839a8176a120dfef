# 📂 backend/pterocoin/services/store.py — магазин ресурсов за монеты
# -----------------------------------------------------------------------------
# buy(uid, resourceType, amount):
#   • resourceType ∈ ram/disk/cpu/servers, amount — целое ≥ 1;
#   • extra[resource] + amount * RESOURCE_UNITS ≤ MAX_RESOURCE_UNITS * RESOURCE_UNITS;
#   • цена = STORE_PRICES[resource] * amount, нехватка → 402 INSUFFICIENT_FUNDS
#     (в ответе required/balance);
#   • после покупки — reconcile (мог вернуться запас для приостановленных серверов).
# Renewal bypass: разовая покупка за RENEWAL_BYPASS_PRICE (renewbypass-<uid>).
# Журнал покупок: purchases-<uid> (дописывается в конец, максимум 200).
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict, List

from ..catalog import (
    MAX_RESOURCE_UNITS,
    RESOURCE_UNITS,
    STORE_HISTORY_CAP,
    ResourceEnvelope,
    ResourceType,
    parse_enum,
)
from ..config import Settings
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..utils import Clock, gen_id, get_logger, now_ms, push_capped

log = get_logger("store")


class ResourceStore:
    def __init__(
        self,
        store: KeyValueStore,
        ledger: LedgerService,
        locks: KeyedLock,
        settings: Settings,
        reconciler=None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.settings = settings
        self.reconciler = reconciler
        self.clock = clock

    def price_of(self, resource: ResourceType) -> int:
        return int(self.settings.STORE_PRICES.get(resource.value, 0))

    async def get_config(self, user_id: str) -> Dict[str, Any]:
        balance = await self.ledger.get_balance(user_id)
        prices = {r.value: self.price_of(r) for r in ResourceType}
        bypass = self.settings.RENEWAL_BYPASS_PRICE
        return {
            "prices": {"resources": prices, "renewalBypass": bypass},
            "multipliers": {r.value: v for r, v in RESOURCE_UNITS.items()},
            "limits": {r.value: v for r, v in MAX_RESOURCE_UNITS.items()},
            "userBalance": balance,
            "canAfford": {**{r: balance >= p for r, p in prices.items()}, "renewalBypass": balance >= bypass},
        }

    async def get_resources(self, user_id: str) -> Dict[str, int]:
        return ResourceEnvelope.from_dict(await self.store.get(f"extra-{user_id}")).to_dict()

    async def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.store.get(f"purchases-{user_id}") or []

    async def has_renewal_bypass(self, user_id: str) -> bool:
        return bool(await self.store.get(f"renewbypass-{user_id}"))

    async def get_renewal_status(self, user_id: str) -> Dict[str, Any]:
        balance = await self.ledger.get_balance(user_id)
        price = self.settings.RENEWAL_BYPASS_PRICE
        return {
            "hasRenewalBypass": await self.has_renewal_bypass(user_id),
            "price": price,
            "canAfford": balance >= price,
            "currentBalance": balance,
        }

    async def _log(self, user_id: str, resource_type: str, amount: int, cost: int) -> Dict[str, Any]:
        purchase = {
            "id": gen_id(self.clock),
            "userId": user_id,
            "resourceType": resource_type,
            "amount": amount,
            "cost": cost,
            "timestamp": self.clock(),
        }
        await push_capped(self.store, f"purchases-{user_id}", purchase, cap=STORE_HISTORY_CAP, newest_first=False)
        return purchase

    @guarded(log, "buy resource")
    async def buy(self, user_id: str, resource_type: Any, amount: Any) -> Result[Dict[str, Any]]:
        resource = parse_enum(ResourceType, resource_type)
        if resource is None:
            return Result.failure(ErrorCode.INVALID_RESOURCE)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            return Result.failure(ErrorCode.INVALID_AMOUNT, "Amount must be a positive integer")

        unit = RESOURCE_UNITS[resource]
        cost = self.price_of(resource) * amount

        async with self.locks.hold(f"extra:{user_id}"):
            extra = ResourceEnvelope.from_dict(await self.store.get(f"extra-{user_id}"))
            new_value = getattr(extra, resource.value) + amount * unit
            if new_value > MAX_RESOURCE_UNITS[resource] * unit:
                return Result.failure(ErrorCode.RESOURCE_LIMIT_EXCEEDED)

            balance = await self.ledger.get_balance(user_id)
            if balance < cost:
                return Result.failure(ErrorCode.INSUFFICIENT_FUNDS, details={"required": cost, "balance": balance})
            if cost > 0:
                debit = await self.ledger.debit(user_id, cost, reason=f"store {resource.value} x{amount}")
                if not debit.ok:
                    return Result.failure(
                        debit.error, debit.message,
                        details={"required": cost, "balance": await self.ledger.get_balance(user_id)},
                    )
                balance = debit.value

            setattr(extra, resource.value, new_value)
            await self.store.set(f"extra-{user_id}", extra.to_dict())
            purchase = await self._log(user_id, resource.value, amount, cost)

        log.info("user %s bought %s x%s for %s coins", user_id, resource.value, amount, cost)
        if self.reconciler is not None:
            await self.reconciler.reconcile(user_id)
        return Result.success({
            "success": True,
            "purchase": purchase,
            "resources": extra.to_dict(),
            "remainingCoins": balance,
        })

    @guarded(log, "buy renewal bypass")
    async def buy_renewal_bypass(self, user_id: str) -> Result[Dict[str, Any]]:
        price = self.settings.RENEWAL_BYPASS_PRICE
        async with self.locks.hold(f"extra:{user_id}"):
            if await self.has_renewal_bypass(user_id):
                return Result.failure(ErrorCode.ALREADY_PURCHASED)
            debit = await self.ledger.debit(user_id, price, reason="renewal bypass")
            if not debit.ok:
                return debit
            await self.store.set(f"renewbypass-{user_id}", True)
            purchase = await self._log(user_id, "renewal_bypass", 1, price)
        return Result.success({"success": True, "purchase": purchase, "remainingCoins": debit.value})
