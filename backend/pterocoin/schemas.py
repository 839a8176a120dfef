# 📂 backend/pterocoin/schemas.py — Pydantic-схемы входных payload’ов API
# --------------------------------------------------------
# Поля объявлены необязательными и «сырыми» (Any/str): проверку значений
# выполняют движки и возвращают свои коды (INVALID_BOOST_TYPE, INVALID_PLAN, ...),
# отсутствие обязательного поля даёт MISSING_FIELDS (см. require_fields).
# Имена полей в JSON — как у фронта дашборда (camelCase для бустов/стейкинга/
# магазина, snake_case для биллинга).

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ApiError, ErrorCode


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def require_fields(payload: BaseModel, *names: str) -> None:
    """Пустые/отсутствующие обязательные поля → 400 MISSING_FIELDS."""
    missing = [n for n in names if getattr(payload, n) in (None, "")]
    if missing:
        raise ApiError(ErrorCode.MISSING_FIELDS)


# ======================
# ⚡ Бусты
# ======================
class ApplyBoostIn(_Payload):
    server_id: Optional[Any] = Field(None, alias="serverId")
    boost_type: Optional[str] = Field(None, alias="boostType")
    duration: Optional[str] = None


class CancelBoostIn(_Payload):
    server_id: Optional[Any] = Field(None, alias="serverId")
    boost_id: Optional[str] = Field(None, alias="boostId")


class ExtendBoostIn(CancelBoostIn):
    additional_duration: Optional[str] = Field(None, alias="additionalDuration")


class ScheduleBoostIn(ApplyBoostIn):
    scheduled_time: Optional[int] = Field(None, alias="scheduledTime", description="Unix ms")


class CancelScheduledIn(_Payload):
    scheduled_boost_id: Optional[str] = Field(None, alias="scheduledBoostId")


# ======================
# 📈 Стейкинг
# ======================
class CreateStakeIn(_Payload):
    plan_id: Optional[str] = Field(None, alias="planId")
    amount: Optional[Any] = None


# ======================
# 🎁 Ежедневные награды
# ======================
class ProtectionIn(_Payload):
    level: Optional[str] = None


# ======================
# 💳 Биллинг
# ======================
class CheckoutIn(_Payload):
    amount_usd: Optional[Any] = None


class PurchaseCoinsIn(_Payload):
    package_id: Optional[Any] = None


class PurchaseBundleIn(_Payload):
    bundle_id: Optional[str] = None


# ======================
# 🛒 Магазин ресурсов
# ======================
class StoreBuyIn(_Payload):
    resource_type: Optional[str] = Field(None, alias="resourceType")
    amount: Optional[Any] = None


# ======================
# 🖥 Серверы
# ======================
class ResizeServerIn(_Payload):
    ram: Optional[Any] = None
    disk: Optional[Any] = None
    cpu: Optional[Any] = None


# ======================
# 🛠 Админка
# ======================
class AdminResourcesIn(_Payload):
    ram: int = 0
    disk: int = 0
    cpu: int = 0
    servers: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"ram": self.ram, "disk": self.disk, "cpu": self.cpu, "servers": self.servers}


class AdminPackageIn(_Payload):
    package: str


class AdminLinkIn(_Payload):
    panel_user_id: int = Field(..., alias="panelUserId")


class AdminCoinsIn(_Payload):
    amount: int
