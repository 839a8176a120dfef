# 📂 backend/pterocoin/container.py — сборка всех движков экономики (composition root)
# -----------------------------------------------------------------------------
# EconomyContainer.build(settings, ...) создаёт:
#   store → locks → ledger/credit → panel/payments → entitlements/reconciler →
#   boosts → servers (resize), staking, daily, billing, referrals, resource store, admin.
# Любую зависимость можно подменить (тесты передают MemoryKeyValueStore,
# фейковые panel/payments и управляемые часы).
# Фоновые проходы живут в scheduler.EconomyScheduler и получают контейнер целиком.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .kv_store import KeyedLock, KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from .ledger import CreditLedger, LedgerService
from .panel_client import PanelClient
from .payments import PaymentProcessor
from .services.admin import AdminService
from .services.billing import BillingService
from .services.boosts import BoostEngine
from .services.daily import DailyRewardsEngine
from .services.entitlements import EntitlementCalculator, SuspensionReconciler
from .services.referrals import ReferralService
from .services.servers import ServerService
from .services.staking import StakingEngine
from .services.store import ResourceStore
from .utils import Clock, now_ms


@dataclass
class EconomyContainer:
    settings: Settings
    store: KeyValueStore
    locks: KeyedLock
    ledger: LedgerService
    credit: CreditLedger
    panel: PanelClient
    payments: PaymentProcessor
    entitlements: EntitlementCalculator
    reconciler: SuspensionReconciler
    boosts: BoostEngine
    servers: ServerService
    staking: StakingEngine
    daily: DailyRewardsEngine
    billing: BillingService
    referrals: ReferralService
    resource_store: ResourceStore
    admin: AdminService

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        panel: Optional[PanelClient] = None,
        payments: Optional[PaymentProcessor] = None,
        clock: Clock = now_ms,
    ) -> "EconomyContainer":
        s = settings or get_settings()
        if store is None:
            store = (
                SqlKeyValueStore(s.STORE_NAMESPACE)
                if s.STORE_BACKEND == "sql"
                else MemoryKeyValueStore(s.STORE_NAMESPACE)
            )
        panel = panel or PanelClient(s.PTERODACTYL_URL, s.PTERODACTYL_KEY, timeout=s.HTTP_TIMEOUT)
        payments = payments or PaymentProcessor(s.STRIPE_SECRET_KEY, s.STRIPE_API_BASE, timeout=s.HTTP_TIMEOUT)

        locks = KeyedLock()
        ledger = LedgerService(store, locks)
        credit = CreditLedger(store, locks)
        entitlements = EntitlementCalculator(store, panel, s)
        reconciler = SuspensionReconciler(entitlements)
        boosts = BoostEngine(store, ledger, panel, locks, reconciler=reconciler, clock=clock)

        return cls(
            settings=s,
            store=store,
            locks=locks,
            ledger=ledger,
            credit=credit,
            panel=panel,
            payments=payments,
            entitlements=entitlements,
            reconciler=reconciler,
            boosts=boosts,
            servers=ServerService(boosts, entitlements, reconciler),
            staking=StakingEngine(store, ledger, locks, clock=clock),
            daily=DailyRewardsEngine(store, ledger, locks, clock=clock),
            billing=BillingService(store, ledger, credit, payments, locks, s, reconciler=reconciler, clock=clock),
            referrals=ReferralService(store, ledger, locks, s, clock=clock),
            resource_store=ResourceStore(store, ledger, locks, s, reconciler=reconciler, clock=clock),
            admin=AdminService(store, ledger, locks, reconciler, s),
        )
