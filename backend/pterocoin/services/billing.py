# 📂 backend/pterocoin/services/billing.py — кредит USD через Stripe Checkout → монеты и пакеты
# -----------------------------------------------------------------------------
# Что делает:
#   • create_checkout_session(uid, amount_usd) — hosted checkout с metadata
#       {userId, type: "credit_purchase", amount_usd}; ответ {sessionId}.
#   • verify_checkout(uid, session_id) — под замком session:<sid>:
#       1) processed-session-<sid> уже есть → SESSION_ALREADY_PROCESSED
#       2) Stripe: payment_status != "paid" → PAYMENT_NOT_COMPLETED
#       3) metadata.userId != uid            → SESSION_NOT_OWNED
#       4) пометка processed ДО зачисления (fail-closed: сбой после пометки
#          не даст зачислить сессию повторно)
#       5) credit += amount_usd, запись в transactions-<uid>
#   • purchase_coins / purchase_bundle — списание кредита (INSUFFICIENT_CREDIT),
#     затем монеты и/или extra-ресурсы по каталогу. Реальные деньги не трогаются.
#   • get_transactions — журнал, новые сверху.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict, List

from ..catalog import BUNDLES, COIN_PURCHASE_OPTIONS, BundleId, ResourceEnvelope, find_coin_package, parse_enum
from ..config import Settings
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import CreditLedger, LedgerService
from ..payments import PaymentProcessor
from ..utils import Clock, gen_txn_id, get_logger, iso_now, now_ms, q2
from .entitlements import add_extra

log = get_logger("billing")


def transactions_key(user_id: str) -> str:
    return f"transactions-{user_id}"


class BillingService:
    def __init__(
        self,
        store: KeyValueStore,
        ledger: LedgerService,
        credit: CreditLedger,
        payments: PaymentProcessor,
        locks: KeyedLock,
        settings: Settings,
        reconciler=None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.ledger = ledger
        self.credit = credit
        self.payments = payments
        self.locks = locks
        self.settings = settings
        self.reconciler = reconciler
        self.clock = clock

    # ---------------- чтение ----------------
    async def get_info(self, user_id: str) -> Dict[str, Any]:
        return {
            "balances": {
                "credit_usd": float(await self.credit.get_balance(user_id)),
                "coins": await self.ledger.get_balance(user_id),
            },
            "coin_packages": [{"amount": p.amount, "price_usd": float(p.price_usd)} for p in COIN_PURCHASE_OPTIONS],
            "bundles": {
                b.value: {"name": bundle.name, "price_usd": float(bundle.price_usd), "resources": bundle.resources}
                for b, bundle in BUNDLES.items()
            },
        }

    async def get_transactions(self, user_id: str) -> List[Dict[str, Any]]:
        items = await self.store.get(transactions_key(user_id)) or []
        return sorted(items, key=lambda t: t.get("timestamp") or "", reverse=True)

    async def _log(self, user_id: str, kind: str, details: Dict[str, Any], amount: Any) -> Dict[str, Any]:
        txn = {
            "id": gen_txn_id(self.clock),
            "type": kind,
            "details": details,
            "amount": amount,
            "timestamp": iso_now(self.clock),
        }
        async with self.locks.hold(f"transactions:{user_id}"):
            items = await self.store.get(transactions_key(user_id)) or []
            items.append(txn)
            await self.store.set(transactions_key(user_id), items)
        return txn

    # ---------------- Stripe ----------------
    @guarded(log, "create checkout session")
    async def create_checkout_session(self, user_id: str, amount_usd: Any) -> Result[Dict[str, str]]:
        try:
            amount = q2(amount_usd)
        except ArithmeticError:
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        if not amount.is_finite() or amount < q2(self.settings.MIN_CHECKOUT_USD):
            return Result.failure(ErrorCode.INVALID_AMOUNT)

        domain = self.settings.WEBSITE_DOMAIN
        session = await self.payments.create_checkout_session(
            amount,
            {"userId": user_id, "type": "credit_purchase", "amount_usd": str(amount)},
            success_url=f"{domain}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{domain}/billing",
        )
        log.info("checkout session %s created for %s ($%s)", session.id, user_id, amount)
        return Result.success({"sessionId": session.id, "url": session.url})

    @guarded(log, "verify checkout")
    async def verify_checkout(self, user_id: str, session_id: str) -> Result[Dict[str, Any]]:
        if not session_id:
            return Result.failure(ErrorCode.MISSING_FIELDS)
        processed_key = f"processed-session-{session_id}"

        async with self.locks.hold(f"session:{session_id}"):
            if await self.store.get(processed_key):
                return Result.failure(ErrorCode.SESSION_ALREADY_PROCESSED)

            session = await self.payments.retrieve_session(session_id)
            if session.payment_status != "paid":
                return Result.failure(ErrorCode.PAYMENT_NOT_COMPLETED)
            if session.metadata.get("userId") != user_id:
                log.warning("user %s tried to verify foreign session %s", user_id, session_id)
                return Result.failure(ErrorCode.SESSION_NOT_OWNED)

            await self.store.set(processed_key, True)
            amount = q2(session.metadata.get("amount_usd") or 0)
            added = await self.credit.add(user_id, amount, reason=f"checkout {session_id}")
            if not added.ok:
                log.error("session %s marked processed but credit failed: %s", session_id, added.message)
                return added
            await self._log(user_id, "credit_purchase", {"checkout_session": session_id, "amount_usd": float(amount)}, float(amount))

        log.info("payment_success: user %s added $%s credit via Stripe Checkout", user_id, amount)
        return Result.success({"success": True, "credit_usd": float(added.value)})

    # ---------------- покупки за кредит ----------------
    @guarded(log, "purchase coins")
    async def purchase_coins(self, user_id: str, package_id: Any) -> Result[Dict[str, Any]]:
        package = find_coin_package(package_id)
        if package is None:
            return Result.failure(ErrorCode.INVALID_PACKAGE)

        spent = await self.credit.spend(user_id, package.price_usd, reason=f"coins {package.amount}")
        if not spent.ok:
            return spent
        coins = await self.ledger.credit(user_id, package.amount, reason="coin purchase")
        if not coins.ok:
            await self.credit.add(user_id, package.price_usd, reason="coin purchase rollback")
            return coins

        txn = await self._log(
            user_id, "coin_purchase",
            {"package_amount": package.amount, "price_usd": float(package.price_usd)},
            package.amount,
        )
        return Result.success({
            "success": True,
            "transaction": txn,
            "new_credit_balance": float(spent.value),
            "new_coin_balance": coins.value,
        })

    @guarded(log, "purchase bundle")
    async def purchase_bundle(self, user_id: str, bundle_id: Any) -> Result[Dict[str, Any]]:
        bid = parse_enum(BundleId, bundle_id)
        if bid is None:
            return Result.failure(ErrorCode.INVALID_BUNDLE)
        bundle = BUNDLES[bid]

        spent = await self.credit.spend(user_id, bundle.price_usd, reason=f"bundle {bid.value}")
        if not spent.ok:
            return spent

        try:
            extra = await add_extra(
                self.store, self.locks, user_id,
                ResourceEnvelope(ram=bundle.ram, disk=bundle.disk, cpu=bundle.cpu, servers=bundle.servers),
            )
        except Exception:
            await self.credit.add(user_id, bundle.price_usd, reason="bundle purchase rollback")
            raise
        coins = await self.ledger.get_balance(user_id)
        if bundle.coins:
            credited = await self.ledger.credit(user_id, bundle.coins, reason=f"bundle {bid.value} bonus")
            if credited.ok:
                coins = credited.value

        await self._log(
            user_id, "bundle_purchase",
            {"bundle": bid.value, "name": bundle.name, "resources": bundle.resources},
            float(bundle.price_usd),
        )
        if self.reconciler is not None:
            await self.reconciler.reconcile(user_id)

        return Result.success({
            "success": True,
            "new_credit_balance": float(spent.value),
            "new_resources": extra.to_dict(),
            "new_coin_balance": coins,
        })
