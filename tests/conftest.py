"""
Shared test fixtures.

Collaborators at the network edge are replaced with ``AsyncMock`` so
tests run without a backend, and storage uses the in-memory store.
Timing settings are shrunk so polling / retry tests finish in
milliseconds while keeping the same ratios as production.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from gotaxi.config import Settings
from gotaxi.domain.entities import Location, Trip
from gotaxi.domain.enums import TripStatus
from gotaxi.infrastructure.repositories import TripRepository
from gotaxi.infrastructure.storage import InMemoryStore
from gotaxi.services.trip_service import TripService

ORIGIN = Location(address="Av. Corrientes 123", lat=-34.6037, lng=-58.3816)
DESTINATION = Location(address="Plaza de Mayo", lat=-34.6083, lng=-58.3712)


def make_trip(**overrides) -> Trip:
    fields = dict(
        id="trip_123",
        passenger_id="user_1",
        origin=ORIGIN,
        destination=DESTINATION,
        status=TripStatus.REQUESTED,
        payment_method="efectivo",
    )
    fields.update(overrides)
    return Trip(**fields)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        storage_backend="memory",
        retry_delay_seconds=0,
        sync_interval_seconds=0.05,
        poll_interval_seconds=0.02,
        negotiation_timeout_seconds=0.3,
        max_attempts=3,
        max_drain_failures=10,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repo() -> AsyncMock:
    return AsyncMock(spec=TripRepository)


@pytest.fixture
def service(repo, store, fast_settings) -> TripService:
    return TripService(repo, store, fast_settings, passenger_id="user_1")


async def settle(service: TripService) -> None:
    """Wait for background refreshes / drains the service scheduled."""
    while service._background:
        await asyncio.gather(*list(service._background), return_exceptions=True)
