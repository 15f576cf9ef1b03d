"""
Orchestration service tests: intents, error kinds and the trip cache.

The repository is an ``AsyncMock``; each test scripts the outcomes it
needs and asserts on which remote calls were (not) made.
"""

from __future__ import annotations

import pytest

from gotaxi.domain.enums import OperationType, TripStatus
from gotaxi.domain.results import Deferred, Err, ErrorKind, Ok
from gotaxi.infrastructure.storage import OFFLINE_QUEUE_KEY, USER_TRIPS_KEY
from tests.conftest import DESTINATION, ORIGIN, make_trip, settle

NETWORK_DOWN = Err(ErrorKind.NETWORK_ERROR, "Error de conexión")


class TestRequestTrip:
    @pytest.mark.asyncio
    async def test_same_origin_and_destination_rejected_without_io(self, service, repo, store):
        result = await service.request_trip({"address": "A"}, {"address": "A"}, "cash")

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.VALIDATION_ERROR
        assert "no pueden ser iguales" in result.message
        repo.request_ride.assert_not_awaited()
        assert service.state.queue == []
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_missing_fields_listed(self, service, repo):
        result = await service.request_trip(None, {"address": " "}, None)
        assert result.kind is ErrorKind.VALIDATION_ERROR
        assert set(result.details) == {
            "El origen es requerido",
            "El destino es requerido",
            "El método de pago es requerido",
        }
        repo.request_ride.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_out_of_range_coordinates_rejected_before_queueing(self, service, repo, store):
        service.set_online(False)

        result = await service.request_trip(
            {"address": "A", "lat": 200.0, "lng": -58.4}, DESTINATION, "efectivo"
        )

        assert result.kind is ErrorKind.VALIDATION_ERROR
        assert "Las coordenadas del origen no son válidas" in result.details
        assert service.state.queue == []
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_online_success(self, service, repo):
        created = make_trip(id="t1")
        repo.request_ride.return_value = Ok(created)

        result = await service.request_trip(ORIGIN, DESTINATION, "efectivo")

        assert isinstance(result, Ok)
        assert result.data == created
        assert result.message == "Viaje solicitado exitosamente"
        repo.request_ride.assert_awaited_once_with(ORIGIN, DESTINATION, "efectivo")
        assert service.state.queue == []

    @pytest.mark.asyncio
    async def test_offline_request_is_queued_with_estimate(self, service, repo, store):
        service.set_online(False)

        result = await service.request_trip(ORIGIN, DESTINATION, "efectivo")

        assert isinstance(result, Deferred)
        assert result.success and result.offline
        assert result.data.status is TripStatus.REQUESTED
        assert result.data.fare > 50.0
        assert result.data.duration >= 0
        repo.request_ride.assert_not_awaited()

        persisted = await store.get_item(OFFLINE_QUEUE_KEY)
        assert len(persisted) == 1
        assert persisted[0]["type"] == "requestTrip"
        assert persisted[0]["id"] == result.operation_id

    @pytest.mark.asyncio
    async def test_network_failure_falls_back_to_queue(self, service, repo):
        repo.request_ride.return_value = NETWORK_DOWN

        result = await service.request_trip(ORIGIN, DESTINATION, "efectivo")

        assert isinstance(result, Deferred)
        assert repo.request_ride.await_count == 1
        assert [op.type for op in service.state.queue] == [OperationType.REQUEST_TRIP]

    @pytest.mark.asyncio
    async def test_remote_error_passes_through(self, service, repo):
        rejected = Err(ErrorKind.REMOTE_ERROR, "Ya tenés un viaje activo")
        repo.request_ride.return_value = rejected

        result = await service.request_trip(ORIGIN, DESTINATION, "efectivo")

        assert result == rejected
        assert service.state.queue == []


class TestCancelTrip:
    @pytest.mark.asyncio
    async def test_missing_id(self, service, repo):
        result = await service.cancel_trip("")
        assert result.kind is ErrorKind.VALIDATION_ERROR
        repo.get_trip_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_in_progress_trip_is_state_error(self, service, repo):
        repo.get_trip_by_id.return_value = Ok(make_trip(status=TripStatus.IN_PROGRESS))

        result = await service.cancel_trip("trip_123")

        assert result.kind is ErrorKind.STATE_ERROR
        repo.cancel_trip.assert_not_awaited()
        assert service.state.queue == []

    @pytest.mark.asyncio
    async def test_online_cancel_updates_cached_list(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [make_trip().to_dict()])
        repo.get_trip_by_id.return_value = Ok(make_trip())
        repo.cancel_trip.return_value = Ok(make_trip(status=TripStatus.CANCELLED))

        result = await service.cancel_trip("trip_123")

        assert isinstance(result, Ok)
        assert result.message == "Viaje cancelado exitosamente"
        cached = await store.get_item(USER_TRIPS_KEY)
        assert cached[0]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unreachable_backend_uses_cached_trip_for_state_check(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [make_trip(status=TripStatus.COMPLETED).to_dict()])
        repo.get_trip_by_id.return_value = NETWORK_DOWN

        result = await service.cancel_trip("trip_123")

        assert result.kind is ErrorKind.STATE_ERROR
        repo.cancel_trip.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_cancel_without_cache_is_deferred(self, service, repo):
        service.set_online(False)
        repo.get_trip_by_id.return_value = NETWORK_DOWN

        result = await service.cancel_trip("trip_123")

        assert isinstance(result, Deferred)
        assert result.message.startswith("Cancelación guardada")
        repo.cancel_trip.assert_not_awaited()
        assert service.state.queue[0].payload == {"tripId": "trip_123"}

    @pytest.mark.asyncio
    async def test_unknown_trip_remote_error(self, service, repo):
        repo.get_trip_by_id.return_value = Err(ErrorKind.REMOTE_ERROR, "Viaje no encontrado")
        result = await service.cancel_trip("nope")
        assert result.kind is ErrorKind.REMOTE_ERROR
        assert result.message == "Viaje no encontrado"


class TestPayAndRate:
    @pytest.mark.asyncio
    async def test_pay_requires_method(self, service, repo):
        result = await service.pay_trip("trip_123", "")
        assert result.kind is ErrorKind.VALIDATION_ERROR
        repo.pay_trip.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pay_offline_is_queued(self, service, repo):
        service.set_online(False)
        result = await service.pay_trip("trip_123", "tarjeta")
        assert isinstance(result, Deferred)
        assert service.state.queue[0].payload == {
            "tripId": "trip_123",
            "paymentMethod": "tarjeta",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, 4.5, True, "5", None])
    async def test_rating_out_of_range(self, service, repo, rating):
        result = await service.rate_trip("trip_123", rating)
        assert result.kind is ErrorKind.VALIDATION_ERROR
        repo.get_trip_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_requires_completed_trip(self, service, repo):
        repo.get_trip_by_id.return_value = Ok(make_trip(status=TripStatus.ARRIVING))
        result = await service.rate_trip("trip_123", 5)
        assert result.kind is ErrorKind.STATE_ERROR
        repo.rate_trip.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_offline_is_queued(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [make_trip(status=TripStatus.COMPLETED).to_dict()])
        service.set_online(False)
        repo.get_trip_by_id.return_value = NETWORK_DOWN

        result = await service.rate_trip("trip_123", 4, "Bien")

        assert isinstance(result, Deferred)
        repo.rate_trip.assert_not_awaited()
        queued = await store.get_item(OFFLINE_QUEUE_KEY)
        assert [op["type"] for op in queued] == ["rateTrip"]
        assert queued[0]["payload"] == {"tripId": "trip_123", "rating": 4, "comment": "Bien"}

    @pytest.mark.asyncio
    async def test_rate_completed_trip(self, service, repo):
        repo.get_trip_by_id.return_value = Ok(make_trip(status=TripStatus.COMPLETED))
        repo.rate_trip.return_value = Ok(
            make_trip(status=TripStatus.COMPLETED, passenger_rating=5)
        )
        result = await service.rate_trip("trip_123", 5, "Excelente")
        assert isinstance(result, Ok)
        repo.rate_trip.assert_awaited_once_with("trip_123", 5, "Excelente")


class TestQueriesAndCache:
    @pytest.mark.asyncio
    async def test_first_read_goes_remote_and_fills_cache(self, service, repo, store):
        repo.get_user_trips.return_value = Ok([make_trip(id="t1")])

        result = await service.get_user_trips_with_cache()

        assert isinstance(result, Ok)
        assert not result.from_cache
        assert [t["id"] for t in await store.get_item(USER_TRIPS_KEY)] == ["t1"]

    @pytest.mark.asyncio
    async def test_cached_read_refreshes_in_background(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [make_trip(id="t1").to_dict()])
        repo.get_user_trips.return_value = Ok([make_trip(id="t1"), make_trip(id="t2")])

        first = await service.get_user_trips_with_cache()
        assert first.from_cache
        assert [t.id for t in first.data] == ["t1"]

        await settle(service)
        second = await service.get_user_trips_with_cache()
        assert [t.id for t in second.data] == ["t1", "t2"]
        await settle(service)

    @pytest.mark.asyncio
    async def test_repeated_reads_without_remote_change_are_identical(self, service, repo, store):
        trips = [make_trip(id="t1"), make_trip(id="t2", status=TripStatus.COMPLETED)]
        await store.set_item(USER_TRIPS_KEY, [t.to_dict() for t in trips])
        repo.get_user_trips.return_value = Ok(trips)

        first = await service.get_user_trips_with_cache()
        await settle(service)
        second = await service.get_user_trips_with_cache()
        await settle(service)

        assert first.data == second.data == trips

    @pytest.mark.asyncio
    async def test_corrupted_cache_is_ignored(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [{"id": "t1", "createdAt": "not-a-date"}])
        repo.get_user_trips.return_value = Ok([make_trip(id="t1")])
        repo.get_trip_by_id.return_value = NETWORK_DOWN
        repo.cancel_trip.return_value = NETWORK_DOWN

        cancelled = await service.cancel_trip("t1")
        listed = await service.get_user_trips_with_cache()

        assert not listed.from_cache
        assert [t.id for t in listed.data] == ["t1"]
        assert isinstance(cancelled, Deferred)

    @pytest.mark.asyncio
    async def test_offline_cached_read_is_flagged(self, service, repo, store):
        await store.set_item(USER_TRIPS_KEY, [make_trip().to_dict()])
        service.set_online(False)

        result = await service.get_user_trips_with_cache()

        assert result.from_cache
        assert "caché" in result.message
        repo.get_user_trips.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_has_active_trip(self, service, repo):
        repo.get_active_trip.return_value = Ok(make_trip(status=TripStatus.ARRIVING))
        assert await service.has_active_trip()
        repo.get_active_trip.return_value = Ok(None)
        assert not await service.has_active_trip()
        repo.get_active_trip.return_value = NETWORK_DOWN
        assert not await service.has_active_trip()

    @pytest.mark.asyncio
    async def test_get_trip_by_id_requires_id(self, service, repo):
        result = await service.get_trip_by_id(None)
        assert result.kind is ErrorKind.VALIDATION_ERROR
        repo.get_trip_by_id.assert_not_awaited()

    def test_estimates_without_coordinates(self, service):
        assert service.estimate_fare({"address": "A"}, {"address": "B"}) == 125.0
        assert service.estimate_duration({"address": "A"}, {"address": "B"}) == 10

    @pytest.mark.asyncio
    async def test_sync_pending_data_offline(self, service):
        service.set_online(False)
        result = await service.sync_pending_data()
        assert result.kind is ErrorKind.NETWORK_ERROR
