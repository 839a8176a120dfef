# 📂 backend/pterocoin/admin_routes.py — админ-эндпоинты экономики
# -----------------------------------------------------------------------------
# Все маршруты требуют X-Admin-Token == ADMIN_API_TOKEN (deps.require_admin).
#   PUT  /admin/users/{uid}/resources     — extra-ресурсы (+ reconcile)
#   PUT  /admin/users/{uid}/package       — пакет (+ reconcile)
#   PUT  /admin/users/{uid}/panel-account — привязка к пользователю панели
#   PUT  /admin/users/{uid}/coins         — установить баланс монет
#   GET  /admin/users/{uid}/resources     — entitlement пользователя
#   POST /admin/users/{uid}/reconcile     — принудительная сверка лимитов
#   GET  /admin/staking/active-users      — список активных стейкеров
#   POST /admin/jobs/run                  — один проход всех фоновых задач
# -----------------------------------------------------------------------------

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from .container import EconomyContainer
from .deps import get_economy, require_admin, unwrap
from .schemas import AdminCoinsIn, AdminLinkIn, AdminPackageIn, AdminResourcesIn
from .utils import get_logger

log = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.put("/users/{user_id}/resources", summary="Установить extra-ресурсы пользователя")
async def admin_set_resources(
    user_id: str,
    payload: AdminResourcesIn,
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.admin.set_extra(user_id, payload.as_dict()))


@router.get("/users/{user_id}/resources", summary="Entitlement пользователя")
async def admin_get_resources(
    user_id: str,
    economy: EconomyContainer = Depends(get_economy),
):
    snapshot = await economy.entitlements.snapshot(user_id)
    return {
        "userId": user_id,
        "package": await economy.store.get(f"package-{user_id}") or economy.settings.DEFAULT_PACKAGE,
        "coins": await economy.ledger.get_balance(user_id),
        **snapshot.to_public(),
    }


@router.put("/users/{user_id}/package", summary="Назначить пакет ресурсов")
async def admin_set_package(
    user_id: str,
    payload: AdminPackageIn,
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.admin.set_package(user_id, payload.package))


@router.put("/users/{user_id}/panel-account", summary="Привязать пользователя панели")
async def admin_link_panel(
    user_id: str,
    payload: AdminLinkIn,
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.admin.link_panel_account(user_id, payload.panel_user_id))


@router.put("/users/{user_id}/coins", summary="Установить баланс монет")
async def admin_set_coins(
    user_id: str,
    payload: AdminCoinsIn,
    economy: EconomyContainer = Depends(get_economy),
):
    balance = unwrap(await economy.admin.set_coins(user_id, payload.amount))
    log.info("admin set coins for %s to %s", user_id, balance)
    return {"success": True, "userId": user_id, "coins": balance}


@router.post("/users/{user_id}/reconcile", summary="Сверить лимиты и приостановку серверов")
async def admin_reconcile(
    user_id: str,
    economy: EconomyContainer = Depends(get_economy),
):
    return unwrap(await economy.admin.reconcile(user_id))


@router.get("/staking/active-users", summary="Активные стейкеры")
async def admin_active_stakers(economy: EconomyContainer = Depends(get_economy)):
    users = await economy.staking.get_active_users()
    return {"count": len(users), "users": users}


@router.post("/jobs/run", summary="Запустить все фоновые проходы один раз")
async def admin_run_jobs(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"success": False, "detail": "Scheduler is not initialised"}
    await scheduler.run_all_once()
    return {"success": True}
