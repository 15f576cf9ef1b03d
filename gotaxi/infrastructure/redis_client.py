"""Redis-backed key-value store."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis

from .storage import dumps, loads


class RedisStore:
    def __init__(self, client: aioredis.Redis, prefix: str = "gotaxi:"):
        self.redis = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "gotaxi:") -> "RedisStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True), prefix)

    async def init(self) -> None:
        await self.redis.ping()

    async def set_item(self, key: str, value: Any) -> None:
        await self.redis.set(self.prefix + key, dumps(value))

    async def get_item(self, key: str) -> Optional[Any]:
        return loads(await self.redis.get(self.prefix + key))

    async def remove_item(self, key: str) -> None:
        await self.redis.delete(self.prefix + key)

    async def close(self) -> None:
        await self.redis.aclose()
