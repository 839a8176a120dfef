# 📂 backend/pterocoin/referral_routes.py — реферальные коды (корневые пути, без /api)
# -----------------------------------------------------------------------------
# GET /generate?code=  — создать свой код
# GET /claim?code=     — активировать чужой код (один раз навсегда)
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap

router = APIRouter(tags=["referrals"])


@router.get("/generate", summary="Создать реферальный код")
async def generate_code(
    code: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.referrals.generate(user_id, code or ""))


@router.get("/claim", summary="Активировать реферальный код")
async def claim_code(
    code: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.referrals.claim(user_id, code or ""))
