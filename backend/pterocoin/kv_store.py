# 📂 backend/pterocoin/kv_store.py — key-value хранилище экономики + пер-ключевые блокировки
# -----------------------------------------------------------------------------
# KeyValueStore — единственный механизм персистентности движков:
#   • get(key, default)  — значение или default (отсутствующий ключ ≠ ошибка);
#   • set(key, value)    — значение обязано быть JSON-сериализуемым;
#   • delete(key);
#   • increment(key, delta) — атомарное сложение числового значения;
#   • table(name)        — то же хранилище в другой логической таблице (namespace).
#
# Реализации:
#   • MemoryKeyValueStore — словарь в памяти (dev/тесты); значения копируются через
#     JSON при записи/чтении, чтобы вызывающий код не мутировал хранимое состояние.
#   • SqlKeyValueStore    — таблица kv_entries (models.KVEntry) через session_scope().
#
# Отдельные get/set атомарны, но цепочки «прочитал → посчитал → записал» — нет.
# Такие цепочки в движках выполняются под KeyedLock (asyncio.Lock на ключ).
# -----------------------------------------------------------------------------

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union

from sqlalchemy import select

from .database import session_scope
from .models import KVEntry

Number = Union[int, float]


def _clone(value: Any) -> Any:
    return json.loads(json.dumps(value))


class KeyValueStore(ABC):
    """Абстрактное асинхронное KV-хранилище с пространствами имён."""

    def __init__(self, namespace: str = "economy"):
        self.namespace = namespace

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def increment(self, key: str, delta: Number = 1) -> Number:
        ...

    @abstractmethod
    def table(self, namespace: str) -> "KeyValueStore":
        ...

    async def has(self, key: str) -> bool:
        return (await self.get(key)) is not None


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, namespace: str = "economy", _data: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__(namespace)
        self._data: Dict[str, Dict[str, Any]] = _data if _data is not None else {}

    @property
    def _bucket(self) -> Dict[str, Any]:
        return self._data.setdefault(self.namespace, {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._bucket:
            return default
        return _clone(self._bucket[key])

    async def set(self, key: str, value: Any) -> None:
        self._bucket[key] = _clone(value)

    async def delete(self, key: str) -> None:
        self._bucket.pop(key, None)

    async def increment(self, key: str, delta: Number = 1) -> Number:
        value = (self._bucket.get(key) or 0) + delta
        self._bucket[key] = value
        return value

    def table(self, namespace: str) -> "MemoryKeyValueStore":
        return MemoryKeyValueStore(namespace, self._data)

    def dump(self) -> Dict[str, Any]:
        """Снимок текущей таблицы (для отладки и тестов)."""
        return _clone(self._bucket)


class SqlKeyValueStore(KeyValueStore):
    """
    KV поверх PostgreSQL (kv_entries). Каждая операция в отдельной транзакции
    session_scope(); increment блокирует строку (SELECT ... FOR UPDATE).
    """

    async def get(self, key: str, default: Any = None) -> Any:
        async with session_scope() as db:
            row = await db.get(KVEntry, (self.namespace, key))
            if row is None or row.value is None:
                return default
            return row.value

    async def set(self, key: str, value: Any) -> None:
        payload = _clone(value)
        async with session_scope() as db:
            row = await db.get(KVEntry, (self.namespace, key))
            if row is None:
                db.add(KVEntry(namespace=self.namespace, key=key, value=payload))
            else:
                row.value = payload

    async def delete(self, key: str) -> None:
        async with session_scope() as db:
            row = await db.get(KVEntry, (self.namespace, key))
            if row is not None:
                await db.delete(row)

    async def increment(self, key: str, delta: Number = 1) -> Number:
        async with session_scope() as db:
            res = await db.execute(
                select(KVEntry)
                .where(KVEntry.namespace == self.namespace, KVEntry.key == key)
                .with_for_update()
            )
            row = res.scalar_one_or_none()
            if row is None:
                db.add(KVEntry(namespace=self.namespace, key=key, value=delta))
                return delta
            row.value = (row.value or 0) + delta
            return row.value

    def table(self, namespace: str) -> "SqlKeyValueStore":
        return SqlKeyValueStore(namespace)


# -----------------------------------------------------------------------------
# Пер-ключевые блокировки
# -----------------------------------------------------------------------------
class KeyedLock:
    """
    asyncio.Lock на произвольный строковый ключ ("coins:<uid>", "boosts", ...).
    Замок удаляется, когда его никто не держит и не ждёт.
    Замки не реентерабельны: один и тот же ключ нельзя брать вложенно.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())
