"""
Passenger session lifecycle.

A ``TripSession`` owns everything that used to be process-wide: the
local store, the orchestration service (with its offline queue and trip
cache) and the background sync worker.  It is created when the passenger
logs in and torn down at logout; consumers receive its components by
reference instead of importing a module-level instance.

Usage::

    async with TripSession(settings, passenger_id="u-1") as session:
        await session.trips.request_trip(origin, destination, "efectivo")
"""

from __future__ import annotations

import logging
from typing import Optional

from gotaxi.config import Settings, settings as default_settings
from gotaxi.infrastructure.api_client import TripApiClient
from gotaxi.infrastructure.repositories import TripRepository
from gotaxi.infrastructure.storage import KeyValueStore, create_store
from gotaxi.services.negotiation import DriverSelection
from gotaxi.services.trip_service import TripService
from gotaxi.workers.sync import SyncWorker

logger = logging.getLogger(__name__)


class TripSession:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        passenger_id: Optional[str] = None,
        *,
        repository: Optional[TripRepository] = None,
        store: Optional[KeyValueStore] = None,
    ):
        self.settings = settings or default_settings
        self.passenger_id = passenger_id
        self._api: Optional[TripApiClient] = None
        if repository is None:
            self._api = TripApiClient.from_settings(self.settings)
            repository = TripRepository(self._api)
        self.repository = repository
        self.store = store or create_store(self.settings)
        self.trips = TripService(
            repository, self.store, self.settings, passenger_id=passenger_id
        )
        self.drivers = DriverSelection(repository, self.settings)
        self.worker = SyncWorker(self.trips, self.settings.sync_interval_seconds)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> "TripSession":
        await self.store.init()
        await self.trips.load_offline_queue()
        await self.worker.start()
        self._open = True
        logger.info("Trip session opened for passenger %s", self.passenger_id)
        return self

    async def close(self, logout: bool = False) -> None:
        """Stop background work; on *logout* also wipe queue and cache."""
        if not self._open:
            return
        await self.worker.stop()
        self.drivers.cancel()
        await self.trips.close()
        if logout:
            await self.trips.clear_offline_queue()
            await self.trips.clear_cache()
        await self.store.close()
        if self._api is not None:
            await self._api.aclose()
        self._open = False
        logger.info(
            "Trip session closed for passenger %s%s",
            self.passenger_id,
            " (logout)" if logout else "",
        )

    async def __aenter__(self) -> "TripSession":
        return await self.open()

    async def __aexit__(self, *args) -> None:
        await self.close()
