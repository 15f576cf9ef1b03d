"""
Trip Orchestration Service
==========================

Turns a passenger intent (request, cancel, pay, rate) into remote
operations that survive intermittent connectivity.

Offline queue
-------------
* Mutations issued while offline, or that hit a network failure, are
  appended to an in-memory FIFO queue and the whole queue is written to
  the local store right away.
* A drain pass executes queued operations strictly in order, one at a
  time.  Each gets ``max_attempts`` tries ``retry_delay`` seconds apart.
  An operation that runs out of tries stays at the head and the pass
  stops, so nothing behind it can overtake it.
* After ``max_drain_failures`` failed passes the head operation is moved
  to a persisted dead letter and reported through ``get_sync_status``.

Read-through cache
------------------
``get_user_trips_with_cache`` answers from the cached trip list when one
exists and refreshes it in the background; the next read sees the
refreshed list.

Error kinds
-----------
``VALIDATION_ERROR`` and ``STATE_ERROR`` never touch the network or the
queue.  ``NETWORK_ERROR`` is absorbed into the queue.  ``REMOTE_ERROR``
is returned to the caller unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Coroutine, Optional, Union

from gotaxi.config import Settings, settings as default_settings
from gotaxi.domain.entities import (
    Location,
    OfflineOperation,
    Trip,
    ValidationResult,
    utcnow,
)
from gotaxi.domain.enums import OperationType, TripStatus
from gotaxi.domain.pricing import FareEstimator
from gotaxi.domain.results import Deferred, Err, ErrorKind, Ok, Result
from gotaxi.infrastructure.repositories import TripRepository
from gotaxi.infrastructure.storage import (
    DEAD_LETTER_KEY,
    OFFLINE_QUEUE_KEY,
    USER_TRIPS_KEY,
    KeyValueStore,
)

logger = logging.getLogger(__name__)

LocationInput = Union[Location, dict[str, Any], None]


@dataclass
class SyncState:
    is_online: bool = True
    queue: list[OfflineOperation] = field(default_factory=list)
    last_sync_time: Optional[datetime] = None
    dead_letter: list[OfflineOperation] = field(default_factory=list)
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SyncStatus:
    is_online: bool
    pending_operations: int
    failed_operations: int
    last_sync: Optional[datetime]
    last_error: Optional[str]

    @property
    def sync_failed(self) -> bool:
        return self.failed_operations > 0


class TripService:
    def __init__(
        self,
        repository: TripRepository,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        estimator: Optional[FareEstimator] = None,
        *,
        passenger_id: Optional[str] = None,
    ):
        cfg = settings or default_settings
        self.repository = repository
        self.store = store
        self.estimator = estimator or FareEstimator.from_settings(cfg)
        self.passenger_id = passenger_id
        self.max_attempts = cfg.max_attempts
        self.retry_delay = cfg.retry_delay_seconds
        self.max_drain_failures = cfg.max_drain_failures

        self.state = SyncState()
        self._drain_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    # ── Trip intents ──────────────────────────────────────────────

    async def request_trip(
        self,
        origin: LocationInput,
        destination: LocationInput,
        payment_method: Optional[str],
    ) -> Result:
        origin = Location.from_dict(origin)
        destination = Location.from_dict(destination)

        validation = self.validate_trip_request(origin, destination, payment_method)
        if not validation.is_valid:
            return Err(
                ErrorKind.VALIDATION_ERROR,
                ", ".join(validation.errors),
                validation.errors,
            )

        estimate = self.estimator.estimate(origin, destination)
        now = utcnow()
        trip = Trip(
            passenger_id=self.passenger_id,
            origin=origin,
            destination=destination,
            status=TripStatus.REQUESTED,
            fare=estimate.fare,
            distance=estimate.distance_km,
            duration=estimate.duration_minutes,
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
        )
        check = trip.validate()
        if not check.is_valid:
            return Err(ErrorKind.VALIDATION_ERROR, ", ".join(check.errors), check.errors)

        return await self._submit(
            OperationType.REQUEST_TRIP,
            {
                "origin": origin.to_dict(),
                "destination": destination.to_dict(),
                "paymentMethod": payment_method,
            },
            projected=trip,
            done="Viaje solicitado exitosamente",
            queued="Solicitud guardada para sincronizar cuando haya conexión",
        )

    async def cancel_trip(self, trip_id: Optional[str]) -> Result:
        if not trip_id:
            return Err(ErrorKind.VALIDATION_ERROR, "ID de viaje requerido")

        current = await self._current_trip(trip_id)
        if isinstance(current, Err):
            return current
        if current is not None and not current.can_be_cancelled():
            return Err(
                ErrorKind.STATE_ERROR,
                "Este viaje no puede ser cancelado en su estado actual",
            )

        return await self._submit(
            OperationType.CANCEL_TRIP,
            {"tripId": trip_id},
            projected=current,
            done="Viaje cancelado exitosamente",
            queued="Cancelación guardada para sincronizar cuando haya conexión",
        )

    async def pay_trip(
        self, trip_id: Optional[str], payment_method: Optional[str]
    ) -> Result:
        if not trip_id:
            return Err(ErrorKind.VALIDATION_ERROR, "ID de viaje requerido")
        if not payment_method:
            return Err(ErrorKind.VALIDATION_ERROR, "Método de pago requerido")

        return await self._submit(
            OperationType.PAY_TRIP,
            {"tripId": trip_id, "paymentMethod": payment_method},
            done="Pago procesado exitosamente",
            queued="Pago guardado para sincronizar cuando haya conexión",
        )

    async def rate_trip(
        self, trip_id: Optional[str], rating: Any, comment: str = ""
    ) -> Result:
        if not trip_id:
            return Err(ErrorKind.VALIDATION_ERROR, "ID de viaje requerido")
        if (
            isinstance(rating, bool)
            or not isinstance(rating, int)
            or not 1 <= rating <= 5
        ):
            return Err(
                ErrorKind.VALIDATION_ERROR, "La calificación debe estar entre 1 y 5"
            )

        current = await self._current_trip(trip_id)
        if isinstance(current, Err):
            return current
        if current is not None and not current.can_be_rated():
            return Err(
                ErrorKind.STATE_ERROR,
                "Este viaje no puede ser calificado en su estado actual",
            )

        return await self._submit(
            OperationType.RATE_TRIP,
            {"tripId": trip_id, "rating": rating, "comment": comment or ""},
            projected=current,
            done="Viaje calificado exitosamente",
            queued="Calificación guardada para sincronizar cuando haya conexión",
        )

    # ── Queries ───────────────────────────────────────────────────

    async def get_trip_by_id(self, trip_id: Optional[str]) -> Result:
        if not trip_id:
            return Err(ErrorKind.VALIDATION_ERROR, "ID de viaje requerido")
        return await self.repository.get_trip_by_id(trip_id)

    async def get_user_trips(self) -> Result:
        return await self.repository.get_user_trips()

    async def get_active_trip(self) -> Result:
        return await self.repository.get_active_trip()

    async def has_active_trip(self) -> bool:
        result = await self.get_active_trip()
        return result.success and result.data is not None

    async def get_trips_by_status(self, status: TripStatus | str) -> Result:
        return await self.repository.get_trips_by_status(status)

    async def get_user_trips_with_cache(self) -> Result:
        cached = await self._load_cached_trips()

        if cached is not None and self.state.is_online:
            self._schedule(self.refresh_trips_cache())
            return Ok(cached, from_cache=True)

        if cached is not None:
            return Ok(
                cached,
                from_cache=True,
                message="Datos en caché - posible información desactualizada",
            )

        result = await self.repository.get_user_trips()
        if result.success:
            await self._store_trips(result.data)
        return result

    async def refresh_trips_cache(self) -> None:
        result = await self.repository.get_user_trips()
        if result.success:
            await self._store_trips(result.data)
        else:
            logger.debug("Background trip refresh failed: %s", result.message)

    # ── Estimates & validation ────────────────────────────────────

    def validate_trip_request(
        self,
        origin: Optional[Location],
        destination: Optional[Location],
        payment_method: Optional[str],
    ) -> ValidationResult:
        errors: list[str] = []
        has_origin = origin is not None and bool(origin.address.strip())
        has_destination = destination is not None and bool(destination.address.strip())
        if not has_origin:
            errors.append("El origen es requerido")
        if not has_destination:
            errors.append("El destino es requerido")
        if not payment_method:
            errors.append("El método de pago es requerido")
        if (
            has_origin
            and has_destination
            and origin.address.strip() == destination.address.strip()
        ):
            errors.append("El origen y destino no pueden ser iguales")
        # the API rejects out-of-range coordinates; catch them before queueing
        if origin is not None and not origin.has_valid_coordinates:
            errors.append("Las coordenadas del origen no son válidas")
        if destination is not None and not destination.has_valid_coordinates:
            errors.append("Las coordenadas del destino no son válidas")
        return ValidationResult(is_valid=not errors, errors=tuple(errors))

    def estimate_fare(self, origin: LocationInput, destination: LocationInput) -> float:
        distance = self.estimator.distance(
            Location.from_dict(origin), Location.from_dict(destination)
        )
        return self.estimator.fare_for(distance)

    def estimate_duration(self, origin: LocationInput, destination: LocationInput) -> int:
        distance = self.estimator.distance(
            Location.from_dict(origin), Location.from_dict(destination)
        )
        return self.estimator.duration_for(distance)

    # ── Connectivity & sync ───────────────────────────────────────

    def set_online(self, online: bool) -> None:
        was_online = self.state.is_online
        self.state.is_online = online
        if online == was_online:
            return
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        if online and self.state.queue:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return  # no loop yet; the sync worker picks the queue up
            self._schedule(self.process_offline_queue())

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.state.is_online,
            pending_operations=len(self.state.queue),
            failed_operations=len(self.state.dead_letter),
            last_sync=self.state.last_sync_time,
            last_error=self.state.last_error,
        )

    async def sync_pending_data(self) -> Result:
        if not self.state.is_online:
            return Err(ErrorKind.NETWORK_ERROR, "Sin conexión a internet")
        await self.process_offline_queue()
        if self.state.queue:
            return Err(
                ErrorKind.REMOTE_ERROR,
                self.state.last_error or "Error durante la sincronización",
            )
        return Ok(self.get_sync_status(), message="Datos sincronizados exitosamente")

    async def process_offline_queue(self) -> int:
        """Run one drain pass.  Returns the number of operations synced."""
        if self._drain_lock.locked():
            logger.debug("Drain pass already running, skipping")
            return 0

        async with self._drain_lock:
            synced = 0
            while self.state.queue and self.state.is_online:
                operation = self.state.queue[0]
                result = await self._execute_with_retry(operation)

                if result.success:
                    self.state.queue.remove(operation)
                    await self._persist_queue()
                    if isinstance(result.data, Trip):
                        await self._remember_trip(result.data)
                    synced += 1
                    continue

                if not self.state.is_online:
                    # went offline mid-pass; this is not a failure of the operation
                    operation.retries_remaining = self.max_attempts
                    await self._persist_queue()
                    break

                await self._park_failed(operation, result)
                break

            if synced or not self.state.queue:
                self.state.last_sync_time = utcnow()
            if not self.state.queue:
                self.state.last_error = None
            if synced:
                logger.info(
                    "Drain pass: %d synced, %d pending", synced, len(self.state.queue)
                )
            return synced

    # ── Persistence ───────────────────────────────────────────────

    async def load_offline_queue(self) -> None:
        try:
            queued = await self.store.get_item(OFFLINE_QUEUE_KEY)
            dead = await self.store.get_item(DEAD_LETTER_KEY)
        except Exception:
            logger.exception("Could not read the offline queue from the local store")
            return
        if isinstance(queued, list):
            self.state.queue = [
                OfflineOperation.from_dict(item, self.max_attempts) for item in queued
            ]
        if isinstance(dead, list):
            self.state.dead_letter = [
                OfflineOperation.from_dict(item, self.max_attempts) for item in dead
            ]
        if self.state.queue:
            logger.info("Restored %d queued operations", len(self.state.queue))

    async def clear_offline_queue(self) -> None:
        self.state.queue = []
        self.state.dead_letter = []
        await self.store.remove_item(OFFLINE_QUEUE_KEY)
        await self.store.remove_item(DEAD_LETTER_KEY)

    async def clear_cache(self) -> None:
        await self.store.remove_item(USER_TRIPS_KEY)

    async def close(self) -> None:
        """Cancel background refreshes and drains still in flight."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internals ─────────────────────────────────────────────────

    async def _submit(
        self,
        op_type: OperationType,
        payload: dict[str, Any],
        *,
        done: str,
        queued: str,
        projected: Optional[Trip] = None,
    ) -> Result:
        if not self.state.is_online:
            operation = await self._enqueue(op_type, payload)
            return Deferred(operation.id, data=projected, message=queued)

        result = await self._dispatch(op_type, payload)
        if isinstance(result, Err) and result.is_network:
            operation = await self._enqueue(op_type, payload)
            return Deferred(operation.id, data=projected, message=queued)
        if not result.success:
            return result

        if isinstance(result.data, Trip):
            await self._remember_trip(result.data)
        return Ok(result.data, message=done)

    async def _current_trip(self, trip_id: str) -> Union[Trip, Err, None]:
        """Fetch the trip a mutation applies to.

        On a network failure the cached copy stands in; with no cached
        copy ``None`` is returned and the backend judges the mutation
        when the queue syncs.
        """
        result = await self.repository.get_trip_by_id(trip_id)
        if result.success:
            return result.data
        if not result.is_network:
            return result
        cached = await self._cached_trip(trip_id)
        if cached is None:
            logger.info("Trip %s not cached; state check left to the backend", trip_id)
        return cached

    async def _dispatch(self, op_type: OperationType, payload: dict[str, Any]) -> Result:
        if op_type is OperationType.REQUEST_TRIP:
            return await self.repository.request_ride(
                Location.from_dict(payload["origin"]),
                Location.from_dict(payload["destination"]),
                payload["paymentMethod"],
            )
        if op_type is OperationType.CANCEL_TRIP:
            return await self.repository.cancel_trip(payload["tripId"])
        if op_type is OperationType.PAY_TRIP:
            return await self.repository.pay_trip(
                payload["tripId"], payload["paymentMethod"]
            )
        if op_type is OperationType.RATE_TRIP:
            return await self.repository.rate_trip(
                payload["tripId"], payload["rating"], payload.get("comment", "")
            )
        raise ValueError(f"Operación desconocida: {op_type}")

    async def _execute_with_retry(self, operation: OfflineOperation) -> Result:
        result: Result = Err(ErrorKind.NETWORK_ERROR, "Sin conexión a internet")
        while operation.retries_remaining > 0 and self.state.is_online:
            operation.retries_remaining -= 1
            try:
                result = await self._dispatch(operation.type, operation.payload)
            except Exception:
                logger.exception("Queued %s raised", operation.type.value)
                result = Err(ErrorKind.REMOTE_ERROR, "Error durante la sincronización")
            if result.success:
                return result
            logger.debug(
                "Queued %s failed (%s), %d tries left",
                operation.type.value,
                result.message,
                operation.retries_remaining,
            )
            if operation.retries_remaining > 0:
                await asyncio.sleep(self.retry_delay)
        return result

    async def _park_failed(self, operation: OfflineOperation, result: Err) -> None:
        operation.retries_remaining = self.max_attempts
        operation.drain_failures += 1
        self.state.last_error = result.message

        if self.max_drain_failures and operation.drain_failures >= self.max_drain_failures:
            self.state.queue.remove(operation)
            self.state.dead_letter.append(operation)
            logger.warning(
                "Queued %s %s failed %d drain passes; moved to dead letter: %s",
                operation.type.value,
                operation.id,
                operation.drain_failures,
                result.message,
            )
            await self._persist(DEAD_LETTER_KEY, self.state.dead_letter)
        else:
            logger.warning(
                "Queued %s %s exhausted its retries (%s); queue blocked",
                operation.type.value,
                operation.id,
                result.message,
            )
        await self._persist_queue()

    async def _enqueue(
        self, op_type: OperationType, payload: dict[str, Any]
    ) -> OfflineOperation:
        operation = OfflineOperation(
            type=op_type, payload=payload, retries_remaining=self.max_attempts
        )
        self.state.queue.append(operation)
        await self._persist_queue()
        logger.info(
            "Queued %s for sync (%d pending)", op_type.value, len(self.state.queue)
        )
        return operation

    async def _persist_queue(self) -> None:
        await self._persist(OFFLINE_QUEUE_KEY, self.state.queue)

    async def _persist(self, key: str, operations: list[OfflineOperation]) -> None:
        try:
            await self.store.set_item(key, [op.to_dict() for op in operations])
        except Exception:
            logger.exception("Could not persist %s", key)

    async def _load_cached_trips(self) -> Optional[list[Trip]]:
        try:
            raw = await self.store.get_item(USER_TRIPS_KEY)
        except Exception:
            logger.exception("Could not read the trip cache")
            return None
        if not isinstance(raw, list):
            return None
        try:
            return [Trip.from_dict(item) for item in raw]
        except (ValueError, TypeError, AttributeError):
            logger.exception("Discarding undecodable trip cache")
            return None

    async def _store_trips(self, trips: list[Trip]) -> None:
        try:
            await self.store.set_item(USER_TRIPS_KEY, [t.to_dict() for t in trips])
        except Exception:
            logger.exception("Could not write the trip cache")

    async def _cached_trip(self, trip_id: str) -> Optional[Trip]:
        cached = await self._load_cached_trips() or []
        return next((t for t in cached if t.id == trip_id), None)

    async def _remember_trip(self, trip: Trip) -> None:
        """Write a remotely confirmed trip through to the cached list."""
        cached = await self._load_cached_trips()
        if cached is None or trip.id is None:
            return
        for i, known in enumerate(cached):
            if known.id == trip.id:
                if not known.can_transition_to(trip.status):
                    logger.warning(
                        "Trip %s jumped from %s to %s", trip.id, known.status, trip.status
                    )
                cached[i] = trip
                break
        else:
            cached.insert(0, trip)
        await self._store_trips(cached)

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(self._guarded(coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _guarded(coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background trip task failed")
