# 📂 backend/pterocoin/services/servers.py — изменение лимитов сервера пользователем
# -----------------------------------------------------------------------------
# resize_server(uid, serverId, ram, disk, cpu):
#   • ram/disk/cpu — целые ≥ 1, иначе INVALID_AMOUNT;
#   • сервер должен принадлежать пользователю (SERVER_NOT_FOUND / NOT_OWNER);
#   • пока на сервере есть активный буст — BOOST_ALREADY_ACTIVE (откат буста
#     вернул бы сервер к initialResources и стёр бы новые лимиты);
#   • used считается без изменяемого сервера, запрос проходит через
#     EntitlementCalculator.admit → RESOURCE_LIMIT_EXCEEDED, в details — доступный запас;
#   • PATCH build на панели → при отказе UPDATE_FAILED;
#   • затем reconcile (уменьшение сервера могло снять превышение).
# Выполняется под замком "boosts", чтобы параллельный буст не лёг поверх.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict

from ..catalog import ResourceEnvelope
from ..errors import ErrorCode, Result, guarded
from ..utils import get_logger
from .boosts import LOCK as BOOSTS_LOCK
from .boosts import BoostEngine
from .entitlements import Entitlement, EntitlementCalculator, SuspensionReconciler

log = get_logger("servers")


def _positive_int(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value > 0


class ServerService:
    def __init__(self, boosts: BoostEngine, calculator: EntitlementCalculator, reconciler: SuspensionReconciler):
        self.boosts = boosts
        self.calculator = calculator
        self.reconciler = reconciler
        self.panel = calculator.panel

    @guarded(log, "resize server")
    async def resize_server(self, user_id: str, server_id: Any, ram: Any, disk: Any, cpu: Any) -> Result[Dict[str, Any]]:
        if not all(_positive_int(v) for v in (ram, disk, cpu)):
            return Result.failure(ErrorCode.INVALID_AMOUNT, "Resource values must be positive integers")

        async with self.boosts.locks.hold(BOOSTS_LOCK):
            resolved = await self.boosts.resolve_server(user_id, server_id)
            if not resolved.ok:
                return resolved
            server = resolved.value
            if await self.boosts.get_server_boosts(server.id):
                return Result.failure(ErrorCode.BOOST_ALREADY_ACTIVE, "Cancel active boosts before resizing this server")

            ent = await self.calculator.snapshot(user_id)
            own = ResourceEnvelope(
                ram=int(server.limits.get("memory", 0)),
                disk=int(server.limits.get("disk", 0)),
                cpu=int(server.limits.get("cpu", 0)),
            )
            others = Entitlement(allowed=ent.allowed, used=ent.used - own, boosted=ent.boosted, server_ids=ent.server_ids)
            admitted = self.calculator.admit(others, ram=ram, disk=disk, cpu=cpu, servers=0)
            if not admitted.ok:
                available = others.remaining()
                return Result.failure(
                    admitted.error,
                    admitted.message,
                    details={"available": {"ram": available.ram, "disk": available.disk, "cpu": available.cpu}},
                )

            limits = {"memory": ram, "disk": disk, "cpu": cpu}
            if not await self.panel.patch_server_build(server.id, limits):
                return Result.failure(ErrorCode.UPDATE_FAILED)

        log.info("server %s resized by %s: ram=%s disk=%s cpu=%s", server.id, user_id, ram, disk, cpu)
        await self.reconciler.reconcile(user_id)
        return Result.success({
            "serverId": server.id,
            "limits": limits,
            "remaining": admitted.value.to_dict(),
        })
