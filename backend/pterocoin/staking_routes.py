# 📂 backend/pterocoin/staking_routes.py — REST API стейкинга монет
# -----------------------------------------------------------------------------
# GET  /staking/plans              — публично
# GET  /staking/calculate          — публично, прогноз доходности
# GET  /staking/stakes | summary | history
# POST /staking/stakes             — {planId, amount}
# POST /staking/stakes/{id}/claim
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap
from .errors import ApiError, ErrorCode
from .schemas import CreateStakeIn, require_fields

router = APIRouter(prefix="/staking", tags=["staking"])


@router.get("/plans", summary="Доступные планы стейкинга")
async def staking_plans(economy: EconomyContainer = Depends(get_economy)):
    return economy.staking.get_plans()


@router.get("/calculate", summary="Прогноз доходности стейка")
async def staking_calculate(
    plan_id: Optional[str] = Query(None, alias="planId"),
    amount: Optional[str] = Query(None),
    duration: Optional[int] = Query(None, description="Дней, по умолчанию 30"),
    economy: EconomyContainer = Depends(get_economy),
):
    if not plan_id or not amount:
        raise ApiError(ErrorCode.MISSING_FIELDS, "Missing required parameters")
    return unwrap(economy.staking.calculate(plan_id, amount, duration))


@router.get("/stakes", summary="Стейки пользователя (с деталями плана)")
async def list_stakes(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.staking.get_user_stakes(user_id)


@router.get("/summary", summary="Сводка по стейкам пользователя")
async def staking_summary(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.staking.get_summary(user_id)


@router.get("/history", summary="Журнал операций стейкинга")
async def staking_history(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.staking.get_history(user_id)


@router.post("/stakes", summary="Создать стейк")
async def create_stake(
    payload: CreateStakeIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "plan_id", "amount")
    result = unwrap(await economy.staking.create_stake(user_id, payload.plan_id, payload.amount))
    return {"success": True, **result}


@router.post("/stakes/{stake_id}/claim", summary="Забрать стейк (досрочно со штрафом)")
async def claim_stake(
    stake_id: str,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    result = unwrap(await economy.staking.claim_stake(user_id, stake_id))
    return {"success": True, **result}
