# 📂 backend/pterocoin/catalog.py — статические каталоги экономики
# -----------------------------------------------------------------------------
# Закрытые перечисления + таблицы значений:
#   • BoostType / BoostDuration → BOOST_TYPES (множители ram/cpu/disk, цены)
#   • StakingPlanId             → STAKING_PLANS (APY, мин. срок, штраф, мин. сумма)
#   • ProtectionLevel           → PROTECTION_LEVELS (дни защиты серии, цена)
#   • DAILY_* таблицы           — множители серии и бонусы за вехи
#   • COIN_PURCHASE_OPTIONS / BUNDLES — каталог биллинга (за кредит USD)
#   • ResourceType              → RESOURCE_UNITS / MAX_RESOURCE_UNITS (магазин за монеты)
#
# Сырые строки из HTTP-запросов приводятся к перечислениям функцией parse_enum;
# неизвестное значение → None, движок возвращает соответствующий INVALID_* код.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], raw: Any) -> Optional[E]:
    """Строка → член перечисления или None (валидация на границе API)."""
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        return None


# =============================================================================
# Бусты
# =============================================================================
class BoostType(str, Enum):
    PERFORMANCE = "performance"
    CPU = "cpu"
    MEMORY = "memory"
    STORAGE = "storage"
    EXTREME = "extreme"


class BoostDuration(str, Enum):
    H1 = "1h"
    H3 = "3h"
    H6 = "6h"
    H12 = "12h"
    H24 = "24h"

    @property
    def hours(self) -> int:
        return int(self.value.rstrip("h"))

    @property
    def ms(self) -> int:
        return self.hours * 60 * 60 * 1000


@dataclass(frozen=True)
class BoostSpec:
    name: str
    description: str
    ram: float
    cpu: float
    disk: float
    prices: Dict[BoostDuration, int]

    def to_public(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "resourceMultiplier": {"ram": self.ram, "cpu": self.cpu, "disk": self.disk},
            "prices": {d.value: p for d, p in self.prices.items()},
        }


def _prices(p1: int, p3: int, p6: int, p12: int, p24: int) -> Dict[BoostDuration, int]:
    return dict(zip(BoostDuration, (p1, p3, p6, p12, p24)))


BOOST_TYPES: Dict[BoostType, BoostSpec] = {
    BoostType.PERFORMANCE: BoostSpec(
        "Performance Boost",
        "Doubles your server's RAM, CPU and disk allocation for the duration",
        2, 2, 2, _prices(150, 400, 700, 1200, 2000),
    ),
    BoostType.CPU: BoostSpec(
        "CPU Boost",
        "Triples your server's CPU allocation for the duration",
        1, 3, 1, _prices(100, 250, 450, 800, 1500),
    ),
    BoostType.MEMORY: BoostSpec(
        "Memory Boost",
        "Triples your server's RAM allocation for the duration",
        3, 1, 1, _prices(100, 250, 450, 800, 1500),
    ),
    BoostType.STORAGE: BoostSpec(
        "Storage Boost",
        "Triples your server's disk allocation for the duration",
        1, 1, 3, _prices(80, 200, 350, 600, 1000),
    ),
    BoostType.EXTREME: BoostSpec(
        "Extreme Boost",
        "Quadruples ALL resources for the duration - maximum power!",
        4, 4, 4, _prices(300, 800, 1500, 2500, 4000),
    ),
}

BOOST_HISTORY_CAP = 100


# =============================================================================
# Стейкинг
# =============================================================================
class StakingPlanId(str, Enum):
    FLEXIBLE = "flexible"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


@dataclass(frozen=True)
class StakingPlan:
    id: StakingPlanId
    name: str
    apy: int                 # % годовых
    min_duration_days: int   # 0 → без минимального срока
    penalty_percent: int     # штраф за досрочный вывод (% от суммы)
    min_amount: int

    @property
    def min_duration_ms(self) -> int:
        return self.min_duration_days * 24 * 60 * 60 * 1000

    @property
    def daily_rate(self) -> Decimal:
        return Decimal(self.apy) / Decimal(365) / Decimal(100)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "apy": self.apy,
            "minDuration": self.min_duration_ms,
            "minDurationDays": self.min_duration_days,
            "penaltyPercent": self.penalty_percent,
            "minAmount": self.min_amount,
        }


STAKING_PLANS: Dict[StakingPlanId, StakingPlan] = {
    StakingPlanId.FLEXIBLE: StakingPlan(StakingPlanId.FLEXIBLE, "Flexible", 15, 0, 0, 100),
    StakingPlanId.BRONZE: StakingPlan(StakingPlanId.BRONZE, "Bronze", 25, 7, 20, 250),
    StakingPlanId.SILVER: StakingPlan(StakingPlanId.SILVER, "Silver", 40, 14, 30, 500),
    StakingPlanId.GOLD: StakingPlan(StakingPlanId.GOLD, "Gold", 60, 30, 40, 1000),
    StakingPlanId.PLATINUM: StakingPlan(StakingPlanId.PLATINUM, "Platinum", 80, 60, 50, 2500),
}


# =============================================================================
# Ежедневные награды
# =============================================================================
class ProtectionLevel(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


@dataclass(frozen=True)
class ProtectionTier:
    days: int
    price: int


PROTECTION_LEVELS: Dict[ProtectionLevel, ProtectionTier] = {
    ProtectionLevel.BRONZE: ProtectionTier(1, 100),
    ProtectionLevel.SILVER: ProtectionTier(3, 250),
    ProtectionLevel.GOLD: ProtectionTier(7, 500),
}

DAILY_BASE_AMOUNT = 25
DAILY_MAX_STREAK_GAP = 1
DAILY_CLAIMS_CAP = 30
PROTECTION_PURCHASES_CAP = 10

# Дни 1..30; пики 7/14/21/28 это недельные вехи
DAILY_STREAK_MULTIPLIERS: Dict[int, Decimal] = {
    day: Decimal(m)
    for day, m in enumerate(
        [
            "1.0", "1.0", "1.1", "1.1", "1.2", "1.2", "1.5",
            "1.2", "1.2", "1.3", "1.3", "1.4", "1.4", "1.75",
            "1.4", "1.4", "1.5", "1.5", "1.6", "1.6", "2.0",
            "1.6", "1.6", "1.7", "1.7", "1.8", "1.8", "2.5",
            "1.8", "2.0",
        ],
        start=1,
    )
}


@dataclass(frozen=True)
class Milestone:
    bonus: int
    message: str
    grants_protection: bool = False


DAILY_MILESTONES: Dict[int, Milestone] = {
    7: Milestone(50, "Weekly streak bonus! +50 coins"),
    14: Milestone(100, "Two-week streak bonus! +100 coins"),
    21: Milestone(150, "Three-week streak bonus! +150 coins"),
    28: Milestone(200, "Four-week streak bonus! +200 coins"),
    30: Milestone(300, "Monthly streak bonus! +300 coins", True),
    60: Milestone(600, "Two-month streak bonus! +600 coins", True),
    90: Milestone(1000, "Three-month streak bonus! +1000 coins", True),
}


def streak_multiplier(streak: int) -> Decimal:
    if streak <= 30:
        return DAILY_STREAK_MULTIPLIERS.get(streak, Decimal("2.0"))
    if streak < 60:
        return Decimal("2.0")
    if streak < 90:
        return Decimal("2.2")
    return Decimal("2.5")


# =============================================================================
# Биллинг (кредит USD → монеты / пакеты ресурсов)
# =============================================================================
@dataclass(frozen=True)
class CoinPackage:
    amount: int
    price_usd: Decimal


COIN_PURCHASE_OPTIONS: List[CoinPackage] = [
    CoinPackage(1000, Decimal("1.79")),
    CoinPackage(2500, Decimal("3.99")),
    CoinPackage(5000, Decimal("5.99")),
    CoinPackage(10000, Decimal("9.99")),
    CoinPackage(25000, Decimal("19.99")),
]


class BundleId(str, Enum):
    STARTER = "starter"
    NETWORK = "network"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class Bundle:
    name: str
    price_usd: Decimal
    ram: int
    disk: int
    cpu: int
    servers: int
    coins: int = 0

    @property
    def resources(self) -> Dict[str, int]:
        return {"ram": self.ram, "disk": self.disk, "cpu": self.cpu, "servers": self.servers, "coins": self.coins}


BUNDLES: Dict[BundleId, Bundle] = {
    BundleId.STARTER: Bundle("Explorer", Decimal("7.99"), 16384, 102400, 300, 2, 1000),
    BundleId.NETWORK: Bundle("Network", Decimal("37.99"), 65536, 409600, 1200, 8, 3500),
    BundleId.ENTERPRISE: Bundle("Unlimited", Decimal("99.99"), 163840, 1024000, 2400, 20, 10000),
}


def find_coin_package(raw: Any) -> Optional[CoinPackage]:
    try:
        amount = int(raw)
    except (TypeError, ValueError):
        return None
    return next((p for p in COIN_PURCHASE_OPTIONS if p.amount == amount), None)


# =============================================================================
# Магазин ресурсов (монеты → extra)
# =============================================================================
class ResourceType(str, Enum):
    RAM = "ram"
    DISK = "disk"
    CPU = "cpu"
    SERVERS = "servers"


# Сколько MiB / % / слотов даёт одна купленная единица
RESOURCE_UNITS: Dict[ResourceType, int] = {
    ResourceType.RAM: 1024,
    ResourceType.DISK: 5120,
    ResourceType.CPU: 100,
    ResourceType.SERVERS: 1,
}

# Потолок extra в единицах (GiB RAM, 5 GiB диска, ядра, слоты)
MAX_RESOURCE_UNITS: Dict[ResourceType, int] = {
    ResourceType.RAM: 96,
    ResourceType.DISK: 200,
    ResourceType.CPU: 36,
    ResourceType.SERVERS: 20,
}

STORE_HISTORY_CAP = 200


@dataclass
class ResourceEnvelope:
    """Набор ресурсов ram/disk/cpu/servers (пакет, extra, использование)."""

    ram: int = 0
    disk: int = 0
    cpu: int = 0
    servers: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceEnvelope":
        data = data or {}
        return cls(
            ram=int(data.get("ram") or 0),
            disk=int(data.get("disk") or 0),
            cpu=int(data.get("cpu") or 0),
            servers=int(data.get("servers") or 0),
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    def __add__(self, other: "ResourceEnvelope") -> "ResourceEnvelope":
        return ResourceEnvelope(
            self.ram + other.ram, self.disk + other.disk, self.cpu + other.cpu, self.servers + other.servers
        )

    def __sub__(self, other: "ResourceEnvelope") -> "ResourceEnvelope":
        return ResourceEnvelope(
            self.ram - other.ram, self.disk - other.disk, self.cpu - other.cpu, self.servers - other.servers
        )
