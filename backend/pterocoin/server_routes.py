# 📂 backend/pterocoin/server_routes.py — изменение лимитов своего сервера
# -----------------------------------------------------------------------------
# PATCH /servers/{serverId} {ram, disk, cpu}
#   • нехватка лимитов → 400 RESOURCE_LIMIT_EXCEEDED + available {ram, disk, cpu};
#   • чужой сервер → 403 NOT_OWNER, активный буст → 409 BOOST_ALREADY_ACTIVE.
# -----------------------------------------------------------------------------

from __future__ import annotations

from fastapi import APIRouter, Depends

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap
from .schemas import ResizeServerIn, require_fields

router = APIRouter(prefix="/servers", tags=["servers"])


@router.patch("/{server_id}", summary="Изменить RAM/диск/CPU сервера в пределах лимитов")
async def resize_server(
    server_id: str,
    payload: ResizeServerIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "ram", "disk", "cpu")
    result = unwrap(
        await economy.servers.resize_server(user_id, server_id, payload.ram, payload.disk, payload.cpu)
    )
    return {"success": True, **result}
