# 📂 backend/pterocoin/database.py — подключение к БД, пул, сессии, создание схемы
# -----------------------------------------------------------------------------
# Этот модуль отвечает за:
#   • Создание асинхронного движка SQLAlchemy (PostgreSQL) с драйвером asyncpg.
#   • Настройку пула соединений (pool_size, max_overflow, pre_ping).
#   • Инициализацию схемы settings.DB_SCHEMA и таблицы kv_entries.
#   • Предоставление фабрики сессий:
#       - session_scope()       — контекстный менеджер транзакции (используется KV-хранилищем).
#   • Startup/Shutdown hooks: on_startup_init_db(), on_shutdown_dispose().
#
# Взаимосвязи:
#   • config.py — источник: DATABASE_URL, DB_SCHEMA, пул, DEBUG.
#   • models.py — KVEntry (kv_entries).
#   • kv_store.py — SqlKeyValueStore открывает session_scope() на каждую операцию.
#   • main.py — вызывает on_startup_init_db() / on_shutdown_dispose(), если STORE_BACKEND=sql.
# -----------------------------------------------------------------------------

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings
from .models import Base

# -----------------------------------------------------------------------------
# Глобальные синглтоны (создаются один раз на процесс/воркер)
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker] = None


def _build_database_url() -> str:
    """
    Возвращает async URL для SQLAlchemy.
    DATABASE_URL уже нормализован в get_settings() (postgres:// → postgresql+asyncpg://).
    """
    s = get_settings()
    url = s.DATABASE_URL or s.DATABASE_URL_LOCAL
    if not url:
        raise RuntimeError("DATABASE_URL is empty and DATABASE_URL_LOCAL is not provided in settings.")
    return url


def get_engine() -> AsyncEngine:
    """
    Ленивая инициализация AsyncEngine + фабрики сессий.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        return _engine

    s = get_settings()
    _engine = create_async_engine(
        _build_database_url(),
        echo=bool(s.DEBUG),
        pool_pre_ping=True,   # оживляет соединения после простоя
        pool_size=s.DB_POOL_SIZE,
        max_overflow=s.DB_MAX_OVERFLOW,
    )

    # autoflush=False: ручной flush; expire_on_commit=False: объекты живы после commit
    _SessionFactory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    return _engine


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Асинхронный контекстный менеджер «сессия как транзакция»:
        async with session_scope() as db:
            ... работа с db ...
    Автоматически выполняет commit/rollback/close.
    """
    if _SessionFactory is None:
        get_engine()

    assert _SessionFactory is not None, "Session factory is not initialized"
    session: AsyncSession = _SessionFactory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def ensure_schema(engine: Optional[AsyncEngine] = None) -> None:
    """
    Создаёт схему settings.DB_SCHEMA (idempotent) и таблицу kv_entries.
    """
    s = get_settings()
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{s.DB_SCHEMA}"'))
        await conn.run_sync(Base.metadata.create_all)


async def check_db_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """
    Простой health-check (SELECT 1). Возвращает True, если соединение установлено.
    """
    engine = engine or get_engine()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def on_startup_init_db() -> None:
    """
    Вызывается из main.py при старте приложения:
      1) Ленивая инициализация движка/фабрики сессий.
      2) Создание схемы и kv_entries.
      3) Проверка соединения, исключение при неуспехе.
    """
    engine = get_engine()
    await ensure_schema(engine)
    if not await check_db_connection(engine):
        raise RuntimeError("Database connection failed during startup.")


async def on_shutdown_dispose() -> None:
    """Корректное закрытие движка при остановке приложения."""
    global _engine, _SessionFactory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _SessionFactory = None
