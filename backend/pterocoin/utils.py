# 📂 backend/pterocoin/utils.py — общие утилиты (Decimal, время, идентификаторы, логгеры)
# -----------------------------------------------------------------------------
# Здесь:
# - безопасная работа с Decimal (кредитный баланс с 2 знаками, стейкинг с 8),
# - время в миллисекундах и нормализация к локальной полуночи,
# - генерация ID в формате "<ms>-<9 символов base36>",
# - именованные логгеры pterocoin.* с единым форматом,
# - добавление записей в ограниченные журналы (history) в KV.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
import random
import string
import sys
import time
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, getcontext
from typing import Any, Callable, List, Optional

getcontext().prec = 28  # высокая точность внутренних вычислений

Clock = Callable[[], int]

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR

# =========================
# 🔢 Работа с Decimal
# =========================
def dec(x: Any) -> Decimal:
    """Безопасно приводит к Decimal"""
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def q2(x: Any) -> Decimal:
    """Округляет к 2 знакам (денежные суммы в USD), HALF_UP."""
    return dec(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def q8(x: Any) -> Decimal:
    """Округляет вниз к 8 знакам (накопленные награды стейкинга)."""
    return dec(x).quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)


# =========================
# ⏱ Время
# =========================
def now_ms() -> int:
    """Текущее время в миллисекундах (часы по умолчанию для всех движков)."""
    return int(time.time() * 1000)


def local_midnight_ms(ms: int) -> int:
    """Начало локальных суток для отметки времени ms."""
    d = datetime.fromtimestamp(ms / 1000)
    return int(datetime(d.year, d.month, d.day).timestamp() * 1000)


def local_date(ms: int) -> date:
    return datetime.fromtimestamp(ms / 1000).date()


def iso_now(clock: Clock = now_ms) -> str:
    stamp = datetime.fromtimestamp(clock() / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =========================
# 🆔 Идентификаторы
# =========================
_B36 = string.digits + string.ascii_lowercase


def gen_id(clock: Clock = now_ms) -> str:
    """ID вида "<ms>-<9 символов base36>" (бусты, стейки, записи истории)."""
    return f"{clock()}-{''.join(random.choices(_B36, k=9))}"


def gen_txn_id(clock: Clock = now_ms) -> str:
    """ID транзакции биллинга: "txn_<ms>_<9 символов>"."""
    return f"txn_{clock()}_{''.join(random.choices(_B36, k=9))}"


# =========================
# 📝 Логгеры
# =========================
def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Именованный логгер pterocoin.<name> с выводом в stdout.
    Формат: [время][уровень] имя: сообщение
    """
    logger = logging.getLogger(f"pterocoin.{name}" if name else "pterocoin")
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter("[%(asctime)s][%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(h)
        logger.propagate = False
    logger.setLevel(level or logging.INFO)
    return logger


# =========================
# 📚 Журналы (history)
# =========================
async def push_capped(store, key: str, entry: Any, cap: Optional[int] = None, newest_first: bool = True) -> List[Any]:
    """
    Добавляет запись в список под ключом key и обрезает его до cap элементов.
    newest_first=True → запись в начало (история бустов, daily-claims).
    """
    items = list(await store.get(key) or [])
    if newest_first:
        items.insert(0, entry)
        if cap is not None:
            del items[cap:]
    else:
        items.append(entry)
        if cap is not None and len(items) > cap:
            del items[: len(items) - cap]
    await store.set(key, items)
    return items
