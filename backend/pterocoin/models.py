# 📂 backend/pterocoin/models.py — SQLAlchemy ORM-модель key-value хранилища
# -----------------------------------------------------------------------------
# Назначение:
#   • Экономика хранит все записи (балансы, бусты, стейки, серии, транзакции)
#     как независимые JSON-значения по ключу. Реляционных связей нет.
#   • Одна таблица kv_entries (схема settings.DB_SCHEMA):
#       - namespace TEXT   — логическая таблица ("economy", "referral-codes", ...)
#       - key TEXT         — ключ записи ("coins-<uid>", "active-boosts", ...)
#       - value JSONB      — значение (JSON на не-PostgreSQL диалектах)
#       - updated_at TIMESTAMPTZ
#       - PRIMARY KEY (namespace, key)
#
# Примечания:
#   • Таблица создаётся в database.on_startup_init_db() через metadata.create_all.
#   • Доступ к ней только через kv_store.SqlKeyValueStore.
# -----------------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from .config import get_settings

# -----------------------------------------------------------------------------
# Общая база ORM и имя схемы
# -----------------------------------------------------------------------------
Base = declarative_base()

settings = get_settings()
SCHEMA = getattr(settings, "DB_SCHEMA", "pterocoin")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KVEntry(Base):
    """
    Одна запись key-value хранилища.
    Значение: произвольная JSON-структура (dict/list/int/str/bool).
    """
    __tablename__ = "kv_entries"
    __table_args__ = (
        {"schema": SCHEMA},
    )

    namespace = Column(String(64), primary_key=True)
    key = Column(String(255), primary_key=True)
    value = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<KVEntry {self.namespace}:{self.key}>"
