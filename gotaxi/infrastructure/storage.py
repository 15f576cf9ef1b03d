"""
Durable local key-value storage.

The orchestration service persists two records through this interface:
the offline queue and the last-known user trip list.  Values must be
JSON-safe; every backend stores them serialized so a read never hands
back an object the caller could mutate in place.

Backends
--------
* ``memory`` -- ``InMemoryStore``, for tests and throwaway sessions.
* ``sqlite`` -- ``SQLiteStore`` (SQLAlchemy async + aiosqlite), the on-device store.
* ``redis``  -- ``RedisStore`` (``redis.asyncio``), for shared / server-side clients.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Protocol, runtime_checkable

OFFLINE_QUEUE_KEY = "offline_trip_queue"
DEAD_LETTER_KEY = "offline_trip_dead_letter"
USER_TRIPS_KEY = "user_trips"


@runtime_checkable
class KeyValueStore(Protocol):
    async def init(self) -> None: ...

    async def set_item(self, key: str, value: Any) -> None: ...

    async def get_item(self, key: str) -> Optional[Any]: ...

    async def remove_item(self, key: str) -> None: ...

    async def close(self) -> None: ...


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def loads(raw: Optional[str]) -> Optional[Any]:
    return json.loads(raw) if raw is not None else None


class InMemoryStore:
    """Dict-backed store; values are kept serialized like the durable backends."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def init(self) -> None:
        return None

    async def set_item(self, key: str, value: Any) -> None:
        self._data[key] = dumps(value)

    async def get_item(self, key: str) -> Optional[Any]:
        return loads(self._data.get(key))

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        return None

    def keys(self) -> list[str]:
        return list(self._data)


def create_store(settings) -> KeyValueStore:
    """Build the backend named by ``settings.storage_backend``."""
    backend = settings.storage_backend
    if backend == "memory":
        return InMemoryStore()
    if backend == "sqlite":
        from .database import SQLiteStore

        return SQLiteStore(settings.sqlite_url)
    if backend == "redis":
        from .redis_client import RedisStore

        return RedisStore.from_url(settings.redis_url)
    raise ValueError(f"Unknown storage backend: {backend}")
