# 📂 backend/pterocoin/boost_routes.py — REST API бустов серверов
# -----------------------------------------------------------------------------
# GET  /boosts/types | active | scheduled | history?limit= | server/{serverId}
# POST /boosts/apply | cancel | extend | schedule | cancel-scheduled
#
# apply/schedule сначала получают сервер с панели и проверяют владельца
# (users-<uid> == server.user): SERVER_NOT_FOUND 404 / NOT_OWNER 403.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap
from .schemas import (
    ApplyBoostIn,
    CancelBoostIn,
    CancelScheduledIn,
    ExtendBoostIn,
    ScheduleBoostIn,
    require_fields,
)

router = APIRouter(prefix="/boosts", tags=["boosts"])


@router.get("/types", summary="Каталог бустов (множители и цены)")
async def boost_types(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
) -> Dict[str, Any]:
    return economy.boosts.get_boost_types()


@router.get("/active", summary="Активные бусты пользователя по серверам")
async def active_boosts(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.boosts.get_user_active_boosts(user_id)


@router.get("/scheduled", summary="Запланированные бусты пользователя")
async def scheduled_boosts(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.boosts.get_scheduled_boosts(user_id)


@router.get("/history", summary="Журнал бустов (новые сверху)")
async def boost_history(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.boosts.get_history(user_id, limit)


@router.get("/server/{server_id}", summary="Активные бусты конкретного сервера")
async def server_boosts(
    server_id: str,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.boosts.get_server_boosts(server_id, user_id)


@router.post("/apply", summary="Применить буст к серверу")
async def apply_boost(
    payload: ApplyBoostIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "server_id", "boost_type", "duration")
    server = unwrap(await economy.boosts.resolve_server(user_id, payload.server_id))
    result = unwrap(await economy.boosts.apply_boost(user_id, server, payload.boost_type, payload.duration))
    return {"success": True, **result}


@router.post("/cancel", summary="Отменить активный буст (возврат 50% остатка)")
async def cancel_boost(
    payload: CancelBoostIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "server_id", "boost_id")
    result = unwrap(await economy.boosts.cancel_boost(user_id, payload.server_id, payload.boost_id))
    return {"success": True, **result}


@router.post("/extend", summary="Продлить активный буст")
async def extend_boost(
    payload: ExtendBoostIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "server_id", "boost_id", "additional_duration")
    result = unwrap(await economy.boosts.extend_boost(
        user_id, payload.server_id, payload.boost_id, payload.additional_duration
    ))
    return {"success": True, **result}


@router.post("/schedule", summary="Запланировать буст (оплата сразу)")
async def schedule_boost(
    payload: ScheduleBoostIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "server_id", "boost_type", "duration", "scheduled_time")
    server = unwrap(await economy.boosts.resolve_server(user_id, payload.server_id))
    result = unwrap(await economy.boosts.schedule_boost(
        user_id, server, payload.boost_type, payload.duration, payload.scheduled_time
    ))
    return {"success": True, **result}


@router.post("/cancel-scheduled", summary="Отменить запланированный буст (полный возврат)")
async def cancel_scheduled(
    payload: CancelScheduledIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "scheduled_boost_id")
    result = unwrap(await economy.boosts.cancel_scheduled_boost(user_id, payload.scheduled_boost_id))
    return {"success": True, **result}
