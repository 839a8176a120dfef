# 📂 backend/pterocoin/services/entitlements.py — лимиты ресурсов и приостановка серверов
# -----------------------------------------------------------------------------
# EntitlementCalculator:
#   • allowed  = пакет (package-<uid> → settings.PACKAGES) + extra-<uid>
#   • boosted  = сумма appliedChange активных бустов на серверах пользователя
#                (буст временно поднимает лимит сервера, а не «съедает» пакет)
#   • used     = Σ limits по серверам панели + количество серверов
#   • remaining = allowed + boosted − used (для servers: allowed − count)
#   • over_limit — список измерений, где used > allowed + boosted
#   compute() — чистая функция; snapshot(uid) подтягивает входные данные.
#
# SuspensionReconciler.reconcile(uid):
#   • любое превышение → suspend ВСЕХ серверов пользователя, иначе unsuspend всех;
#   • ошибки панели (и любые другие) логируются и не пробрасываются (eventually-consistent).
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..catalog import ResourceEnvelope
from ..config import Settings
from ..errors import ErrorCode, Result
from ..kv_store import KeyedLock, KeyValueStore
from ..panel_client import PanelClient, PanelError, PanelServer
from ..utils import get_logger

log = get_logger("entitlements")

DIMENSIONS = ("ram", "disk", "cpu", "servers")


@dataclass
class Entitlement:
    allowed: ResourceEnvelope
    used: ResourceEnvelope
    boosted: ResourceEnvelope = field(default_factory=ResourceEnvelope)
    server_ids: List[int] = field(default_factory=list)

    @property
    def ceiling(self) -> ResourceEnvelope:
        return self.allowed + self.boosted

    def remaining(self, additional: Optional[ResourceEnvelope] = None) -> ResourceEnvelope:
        return self.ceiling - (self.used + (additional or ResourceEnvelope()))

    @property
    def over_limit(self) -> List[str]:
        ceiling = self.ceiling
        return [d for d in DIMENSIONS if getattr(self.used, d) > getattr(ceiling, d)]

    def to_public(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed.to_dict(),
            "boosted": self.boosted.to_dict(),
            "used": self.used.to_dict(),
            "remaining": self.remaining().to_dict(),
            "overLimit": self.over_limit,
        }


class EntitlementCalculator:
    def __init__(self, store: KeyValueStore, panel: PanelClient, settings: Settings):
        self.store = store
        self.panel = panel
        self.settings = settings

    # ---------------- чистая часть ----------------
    @staticmethod
    def compute(
        package: ResourceEnvelope,
        extra: ResourceEnvelope,
        servers: List[PanelServer],
        boosted: Optional[ResourceEnvelope] = None,
    ) -> Entitlement:
        used = ResourceEnvelope(servers=len(servers))
        for s in servers:
            used.ram += s.limits.get("memory", 0)
            used.disk += s.limits.get("disk", 0)
            used.cpu += s.limits.get("cpu", 0)
        return Entitlement(
            allowed=package + extra,
            used=used,
            boosted=boosted or ResourceEnvelope(),
            server_ids=[s.id for s in servers],
        )

    @staticmethod
    def admit(entitlement: Entitlement, ram: int = 0, disk: int = 0, cpu: int = 0, servers: int = 1) -> Result[ResourceEnvelope]:
        """Проверка перед созданием/расширением: хватит ли лимитов на additional."""
        remaining = entitlement.remaining(ResourceEnvelope(ram, disk, cpu, servers))
        short = [d for d in DIMENSIONS if getattr(remaining, d) < 0]
        if short:
            return Result.failure(ErrorCode.RESOURCE_LIMIT_EXCEEDED, f"Resource limit exceeded: {', '.join(short)}")
        return Result.success(remaining)

    # ---------------- входные данные ----------------
    async def get_package(self, user_id: str) -> ResourceEnvelope:
        name = await self.store.get(f"package-{user_id}") or self.settings.DEFAULT_PACKAGE
        return ResourceEnvelope.from_dict(self.settings.package_for(name))

    async def get_extra(self, user_id: str) -> ResourceEnvelope:
        return ResourceEnvelope.from_dict(await self.store.get(f"extra-{user_id}"))

    async def get_panel_user(self, user_id: str) -> Optional[int]:
        raw = await self.store.get(f"users-{user_id}")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    async def boosted_for(self, server_ids: List[int]) -> ResourceEnvelope:
        wanted = {str(s) for s in server_ids}
        total = ResourceEnvelope()
        active = await self.store.get("active-boosts") or {}
        for server_id, boosts in active.items():
            if str(server_id) not in wanted:
                continue
            for boost in boosts.values():
                change = boost.get("appliedChange") or {}
                total.ram += int(change.get("memory") or 0)
                total.disk += int(change.get("disk") or 0)
                total.cpu += int(change.get("cpu") or 0)
        return total

    async def list_servers(self, user_id: str) -> List[PanelServer]:
        panel_user = await self.get_panel_user(user_id)
        if panel_user is None:
            return []
        return await self.panel.list_user_servers(panel_user)

    async def snapshot(self, user_id: str) -> Entitlement:
        """Полный расчёт для пользователя. PanelError пробрасывается вызывающему."""
        servers = await self.list_servers(user_id)
        return self.compute(
            await self.get_package(user_id),
            await self.get_extra(user_id),
            servers,
            await self.boosted_for([s.id for s in servers]),
        )


# -----------------------------------------------------------------------------
# extra-<uid>: изменения под замком extra:<uid>
# -----------------------------------------------------------------------------
async def add_extra(store: KeyValueStore, locks: KeyedLock, user_id: str, delta: ResourceEnvelope) -> ResourceEnvelope:
    async with locks.hold(f"extra:{user_id}"):
        extra = ResourceEnvelope.from_dict(await store.get(f"extra-{user_id}")) + delta
        await store.set(f"extra-{user_id}", extra.to_dict())
    return extra


async def set_extra(store: KeyValueStore, locks: KeyedLock, user_id: str, value: ResourceEnvelope) -> ResourceEnvelope:
    async with locks.hold(f"extra:{user_id}"):
        await store.set(f"extra-{user_id}", value.to_dict())
    return value


class SuspensionReconciler:
    def __init__(self, calculator: EntitlementCalculator):
        self.calculator = calculator
        self.panel = calculator.panel

    async def reconcile(self, user_id: str) -> Dict[str, Any]:
        """
        Приводит флаг suspended всех серверов пользователя к расчёту лимитов.
        Возвращает сводку {action, overLimit, failed}; исключений не бросает.
        """
        try:
            ent = await self.calculator.snapshot(user_id)
        except PanelError as e:
            log.error("reconcile %s: cannot load servers: %s", user_id, e)
            return {"action": "error", "overLimit": [], "failed": []}
        except Exception:
            log.exception("reconcile %s: unexpected failure", user_id)
            return {"action": "error", "overLimit": [], "failed": []}

        if not ent.server_ids:
            return {"action": "none", "overLimit": [], "failed": []}

        over = ent.over_limit
        suspend = bool(over)
        failed: List[int] = []
        for server_id in ent.server_ids:
            try:
                if suspend:
                    await self.panel.suspend_server(server_id)
                else:
                    await self.panel.unsuspend_server(server_id)
            except PanelError as e:
                log.error("reconcile %s: server %s %s failed: %s",
                          user_id, server_id, "suspend" if suspend else "unsuspend", e)
                failed.append(server_id)
            except Exception:
                log.exception("reconcile %s: server %s %s failed",
                              user_id, server_id, "suspend" if suspend else "unsuspend")
                failed.append(server_id)

        if suspend:
            log.warning("user %s over limit (%s): suspended %d server(s)",
                        user_id, ",".join(over), len(ent.server_ids) - len(failed))
        return {"action": "suspend" if suspend else "unsuspend", "overLimit": over, "failed": failed}
