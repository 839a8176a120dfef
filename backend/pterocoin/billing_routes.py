# 📂 backend/pterocoin/billing_routes.py — REST API биллинга (кредит USD, Stripe Checkout)
# -----------------------------------------------------------------------------
# GET  /v5/billing/info | transactions
# POST /v5/billing/checkout               {amount_usd}  → {sessionId, url}
# GET  /v5/billing/verify-checkout?session_id=
# POST /v5/billing/purchase-coins         {package_id}
# POST /v5/billing/purchase-bundle        {bundle_id}
# Нехватка кредита → 402 INSUFFICIENT_CREDIT.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .container import EconomyContainer
from .deps import get_economy, require_user, unwrap
from .schemas import CheckoutIn, PurchaseBundleIn, PurchaseCoinsIn, require_fields

router = APIRouter(prefix="/v5/billing", tags=["billing"])


@router.get("/info", summary="Балансы, пакеты монет и бандлы")
async def billing_info(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.billing.get_info(user_id)


@router.post("/checkout", summary="Создать Stripe Checkout сессию на пополнение кредита")
async def billing_checkout(
    payload: CheckoutIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    require_fields(payload, "amount_usd")
    return unwrap(await economy.billing.create_checkout_session(user_id, payload.amount_usd))


@router.get("/verify-checkout", summary="Подтвердить оплату и зачислить кредит (один раз на сессию)")
async def billing_verify_checkout(
    session_id: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.billing.verify_checkout(user_id, session_id or ""))


@router.post("/purchase-coins", summary="Купить монеты за кредит")
async def billing_purchase_coins(
    payload: PurchaseCoinsIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.billing.purchase_coins(user_id, payload.package_id))


@router.post("/purchase-bundle", summary="Купить бандл ресурсов за кредит")
async def billing_purchase_bundle(
    payload: PurchaseBundleIn,
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.billing.purchase_bundle(user_id, payload.bundle_id))


@router.get("/transactions", summary="История операций биллинга (новые сверху)")
async def billing_transactions(
    user_id: str = Depends(require_user),
    economy: EconomyContainer = Depends(get_economy),
):
    return await economy.billing.get_transactions(user_id)
