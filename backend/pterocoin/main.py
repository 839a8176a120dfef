# 📂 backend/pterocoin/main.py — запуск FastAPI + экономика + Scheduler
# -----------------------------------------------------------------------------
# Что делает:
#   1) Создаёт и конфигурирует FastAPI-приложение (create_app).
#   2) Подключает CORS (для фронтенда дашборда).
#   3) Регистрирует API-роуты с префиксом settings.API_PREFIX:
#        boosts, servers, staking, daily-rewards, v5/billing, store, resources, admin;
#      реферальные /generate и /claim — без префикса.
#   4) Обработчики ошибок: ApiError → {"error", "code"}; ошибки валидации → 400
#      VALIDATION_ERROR; сбои внешних систем → 502; остальное → 500.
#   5) На старте:
#       - инициализирует БД (если STORE_BACKEND == "sql"),
#       - собирает EconomyContainer (если не передан в create_app),
#       - запускает EconomyScheduler (истечение бустов, запланированные бусты,
#         начисления стейкинга).
#   6) Информационные эндпоинты: GET / (root), GET /healthz.
#
# Где используется:
#   - uvicorn backend.pterocoin.main:app
#   - тесты: create_app(container) с in-memory хранилищем и фейковой панелью.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .admin_routes import router as admin_router
from .billing_routes import router as billing_router
from .boost_routes import router as boost_router
from .config import Settings, get_settings
from .container import EconomyContainer
from .daily_routes import router as daily_router
from .database import check_db_connection, on_shutdown_dispose, on_startup_init_db
from .errors import ApiError, ErrorCode, UpstreamError
from .referral_routes import router as referral_router
from .scheduler import EconomyScheduler
from .server_routes import router as server_router
from .staking_routes import router as staking_router
from .store_routes import router as store_router
from .utils import get_logger

log = get_logger("main")


# -----------------------------------------------------------------------------
# Создание FastAPI приложения
# -----------------------------------------------------------------------------
def create_app(container: Optional[EconomyContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Создаёт и конфигурирует FastAPI приложение.

    - container передают тесты: тогда он сразу кладётся в app.state.economy,
      а на старте БД и контейнер не создаются.
    - Без контейнера всё собирается в startup из get_settings().
    """
    settings = settings or (container.settings if container else get_settings())
    log.setLevel(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        description="PteroCoin economy backend (FastAPI + PostgreSQL + Pterodactyl + Stripe)",
    )
    app.state.economy = container
    app.state.scheduler = EconomyScheduler(container) if container else None

    # -------------------
    # CORS
    # -------------------
    # Пустой BACKEND_CORS_ORIGINS: разрешаем всем.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------
    # Ошибки
    # -------------------
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        message = first.get("msg") or "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"error": message, "code": ErrorCode.VALIDATION_ERROR.value},
        )

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        log.error("%s %s: upstream failure: %s", request.method, request.url.path, exc)
        err = ApiError(ErrorCode.UPSTREAM_FAILURE)
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.error("%s %s failed", request.method, request.url.path, exc_info=exc)
        err = ApiError(ErrorCode.INTERNAL_ERROR)
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    # -------------------
    # Роуты API
    # -------------------
    prefix = settings.API_PREFIX
    app.include_router(boost_router, prefix=prefix)
    app.include_router(server_router, prefix=prefix)
    app.include_router(staking_router, prefix=prefix)
    app.include_router(daily_router, prefix=prefix)
    app.include_router(billing_router, prefix=prefix)
    app.include_router(store_router, prefix=prefix)
    app.include_router(admin_router, prefix=prefix)
    app.include_router(referral_router)

    # -------------------
    # Инфо и Healthcheck
    # -------------------
    @app.get("/")
    async def root():
        """Базовая информация: задеплоилось ли приложение и с какими настройками."""
        return {
            "name": settings.PROJECT_NAME,
            "env": settings.ENV,
            "api_prefix": settings.API_PREFIX,
            "store_backend": settings.STORE_BACKEND,
            "panel_url": settings.PTERODACTYL_URL,
        }

    @app.get("/healthz")
    async def healthz():
        scheduler = app.state.scheduler
        body = {
            "status": "ok",
            "economy": app.state.economy is not None,
            "scheduler": bool(scheduler and scheduler.running),
        }
        if settings.STORE_BACKEND == "sql" and container is None:
            body["database"] = await check_db_connection()
        return body

    # -------------------
    # Жизненный цикл
    # -------------------
    @app.on_event("startup")
    async def on_startup():
        log.info("Starting up (env=%s, store=%s)", settings.ENV, settings.STORE_BACKEND)

        if app.state.economy is None:
            if settings.STORE_BACKEND == "sql":
                await on_startup_init_db()
                log.info("Database initialized")
            app.state.economy = EconomyContainer.build(settings)
            app.state.scheduler = EconomyScheduler(app.state.economy)

        if settings.SCHEDULER_ENABLED and app.state.scheduler is not None:
            app.state.scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Shutting down...")
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown()
        if settings.STORE_BACKEND == "sql" and container is None:
            await on_shutdown_dispose()
        log.info("Shutdown complete")

    return app


app = create_app()


# -----------------------------------------------------------------------------
# Локальный запуск через uvicorn (для отладки)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    # Пример: python -m backend.pterocoin.main
    uvicorn.run("backend.pterocoin.main:app", host="0.0.0.0", port=8000, reload=True)
