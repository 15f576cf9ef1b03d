"""
Async SQLAlchemy key-value store.

Uses ``aiosqlite`` as the driver so the client keeps its offline queue
and trip cache in a local file that survives restarts.  Engine and
session factory belong to the store instance, so each session owns
(and disposes) its own connection pool.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base, KeyValueModel
from .storage import dumps, loads


class SQLiteStore:
    def __init__(self, url: str = "sqlite+aiosqlite:///gotaxi_client.db"):
        self.url = url
        self.engine = create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init(self) -> None:
        """Create the table on first use."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def set_item(self, key: str, value: Any) -> None:
        async with self._session_factory() as session:
            await session.merge(KeyValueModel(key=key, value=dumps(value)))
            await session.commit()

    async def get_item(self, key: str) -> Optional[Any]:
        async with self._session_factory() as session:
            row = await session.get(KeyValueModel, key)
            return loads(row.value) if row is not None else None

    async def remove_item(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(KeyValueModel).where(KeyValueModel.key == key))
            await session.commit()

    async def close(self) -> None:
        await self.engine.dispose()
