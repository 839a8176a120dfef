# 📂 backend/pterocoin/services/admin.py — админ-операции над ресурсами и балансами
# -----------------------------------------------------------------------------
#   • set_extra         — заменить extra-<uid> (все поля ≥ 0) + reconcile
#   • set_package       — назначить пакет из settings.PACKAGES + reconcile
#   • link_panel_account — users-<uid> = id пользователя панели
#   • set_coins         — прямая установка баланса монет
#   • reconcile         — принудительная сверка лимитов
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict

from ..catalog import ResourceEnvelope
from ..config import Settings
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..utils import get_logger
from .entitlements import SuspensionReconciler, set_extra

log = get_logger("admin")


class AdminService:
    def __init__(
        self,
        store: KeyValueStore,
        ledger: LedgerService,
        locks: KeyedLock,
        reconciler: SuspensionReconciler,
        settings: Settings,
    ):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.reconciler = reconciler
        self.settings = settings

    @guarded(log, "set extra resources")
    async def set_extra(self, user_id: str, resources: Dict[str, Any]) -> Result[Dict[str, Any]]:
        try:
            extra = ResourceEnvelope.from_dict(resources)
        except (TypeError, ValueError):
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Resources must be integers")
        if min(extra.ram, extra.disk, extra.cpu, extra.servers) < 0:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Resources must be non-negative")
        await set_extra(self.store, self.locks, user_id, extra)
        log.info("admin set extra for %s: %s", user_id, extra.to_dict())
        outcome = await self.reconciler.reconcile(user_id)
        return Result.success({"success": True, "resources": extra.to_dict(), "reconcile": outcome})

    @guarded(log, "set package")
    async def set_package(self, user_id: str, package: str) -> Result[Dict[str, Any]]:
        if package not in self.settings.PACKAGES:
            return Result.failure(ErrorCode.INVALID_PACKAGE)
        await self.store.set(f"package-{user_id}", package)
        outcome = await self.reconciler.reconcile(user_id)
        return Result.success({"success": True, "package": package, "reconcile": outcome})

    @guarded(log, "link panel account")
    async def link_panel_account(self, user_id: str, panel_user_id: int) -> Result[Dict[str, Any]]:
        if isinstance(panel_user_id, bool) or not isinstance(panel_user_id, int) or panel_user_id < 1:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Panel user id must be a positive integer")
        await self.store.set(f"users-{user_id}", panel_user_id)
        return Result.success({"success": True, "userId": user_id, "panelUserId": panel_user_id})

    async def set_coins(self, user_id: str, amount: int) -> Result[int]:
        return await self.ledger.set_balance(user_id, amount)

    async def reconcile(self, user_id: str) -> Result[Dict[str, Any]]:
        return Result.success(await self.reconciler.reconcile(user_id))
