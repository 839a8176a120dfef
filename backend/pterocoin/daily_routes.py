# 📂 backend/pterocoin/daily_routes.py — REST API ежедневных наград
# -----------------------------------------------------------------------------
# GET  /daily-rewards/status | history?limit=
# GET  /daily-rewards/leaderboard?limit=   — публично
# POST /daily-rewards/claim                — после успеха обновляется лидерборд
# POST /daily-rewards/protection {level}
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap, user_name
from .schemas import ProtectionIn, require_fields

router = APIRouter(prefix="/daily-rewards", tags=["daily-rewards"])


@router.get("/status", summary="Можно ли забрать награду сегодня + прогноз")
async def daily_status(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.daily.get_status(user_id)


@router.post("/claim", summary="Забрать ежедневную награду")
async def daily_claim(
    user_id: str = Depends(require_user),
    username: Optional[str] = Depends(user_name),
    economy: EconomyContainer = Depends(get_economy),
):
    result = unwrap(await economy.daily.claim(user_id))
    await economy.daily.update_leaderboard(user_id, username)
    return {"success": True, **result}


@router.post("/protection", summary="Купить защиту серии")
async def daily_protection(
    payload: ProtectionIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "level")
    result = unwrap(await economy.daily.purchase_protection(user_id, payload.level))
    return {"success": True, **result}


@router.get("/leaderboard", summary="Лидерборд по сериям")
async def daily_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.daily.get_leaderboard(limit)


@router.get("/history", summary="История получения наград")
async def daily_history(
    limit: int = Query(10, ge=1, le=30),
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.daily.get_history(user_id, limit)
