# 📂 backend/pterocoin/store_routes.py — магазин ресурсов и сводка лимитов
# -----------------------------------------------------------------------------
# GET  /store/config | history | resources
# POST /store/buy {resourceType, amount}
# GET|POST /store/renewal-bypass
# GET  /resources — текущий entitlement (allowed/boosted/used/remaining/overLimit)
# -----------------------------------------------------------------------------

from __future__ import annotations

from fastapi import APIRouter, Depends

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap
from .schemas import StoreBuyIn, require_fields

router = APIRouter(tags=["store"])


@router.get("/store/config", summary="Цены, множители, лимиты и доступность покупок")
async def store_config(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.resource_store.get_config(user_id)


@router.post("/store/buy", summary="Купить ресурсы за монеты")
async def store_buy(
    payload: StoreBuyIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "resource_type", "amount")
    return unwrap(await economy.resource_store.buy(user_id, payload.resource_type, payload.amount))


@router.get("/store/history", summary="История покупок в магазине")
async def store_history(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.resource_store.get_history(user_id)


@router.get("/store/resources", summary="Купленные дополнительные ресурсы")
async def store_resources(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.resource_store.get_resources(user_id)


@router.get("/store/renewal-bypass", summary="Статус renewal bypass")
async def renewal_bypass_status(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.resource_store.get_renewal_status(user_id)


@router.post("/store/renewal-bypass", summary="Купить renewal bypass")
async def renewal_bypass_buy(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.resource_store.buy_renewal_bypass(user_id))


@router.get("/resources", summary="Лимиты пользователя: пакет + extra + бусты против использования")
async def resources_snapshot(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    snapshot = await economy.entitlements.snapshot(user_id)
    return snapshot.to_public()
