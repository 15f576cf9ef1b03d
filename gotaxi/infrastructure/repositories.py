"""
Repository Pattern -- turns remote calls into tagged results.

``TripRepository`` never raises: every outcome of a remote operation,
success or failure, comes back as ``Ok`` or ``Err`` so the orchestration
layer can branch on the error kind instead of on exception types.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from gotaxi.domain.entities import DriverCandidate, Location, Trip
from gotaxi.domain.enums import TripStatus, canonical_trip_status
from gotaxi.domain.results import Err, ErrorKind, Ok, Result
from .api_client import NetworkError, RemoteError, TripApiClient
from .schemas import DriverCandidatePayload

logger = logging.getLogger(__name__)


def _decode_trip(raw: Any) -> Trip:
    if not isinstance(raw, dict):
        raise ValueError(f"expected a trip record, got {type(raw).__name__}")
    return Trip.from_dict(raw)


def _decode_trips(raw: Any) -> list[Trip]:
    if not isinstance(raw, list):
        raise ValueError(f"expected a trip list, got {type(raw).__name__}")
    return [_decode_trip(item) for item in raw]


def _decode_drivers(raw: Any) -> list[DriverCandidate]:
    if not isinstance(raw, list):
        raise ValueError(f"expected a driver list, got {type(raw).__name__}")
    return [DriverCandidatePayload.model_validate(item).to_entity() for item in raw]


class TripRepository:
    def __init__(self, api: TripApiClient):
        self.api = api

    async def request_ride(
        self, origin: Location, destination: Location, payment_method: str
    ) -> Result:
        return await self._call(
            "Error al solicitar viaje",
            self.api.request_ride(origin, destination, payment_method),
            _decode_trip,
        )

    async def get_trip_by_id(self, trip_id: str) -> Result:
        return await self._call(
            "Error al obtener viaje", self.api.get_ride(trip_id), _decode_trip
        )

    async def cancel_trip(self, trip_id: str) -> Result:
        return await self._call(
            "Error al cancelar viaje", self.api.cancel_ride(trip_id), _decode_trip
        )

    async def pay_trip(self, trip_id: str, payment_method: str) -> Result:
        return await self._call(
            "Error al pagar viaje",
            self.api.pay_ride(trip_id, payment_method),
            _decode_trip,
        )

    async def rate_trip(self, trip_id: str, rating: int, comment: str = "") -> Result:
        return await self._call(
            "Error al calificar viaje",
            self.api.rate_ride(trip_id, rating, comment),
            _decode_trip,
        )

    async def get_user_trips(self) -> Result:
        return await self._call(
            "Error al obtener viajes", self.api.list_rides(), _decode_trips
        )

    async def get_trips_by_status(self, status: TripStatus | str) -> Result:
        wanted = canonical_trip_status(status)
        result = await self.get_user_trips()
        if not result.success:
            return result
        return Ok([trip for trip in result.data if trip.status == wanted])

    async def get_active_trip(self) -> Result:
        """First trip still in motion, or ``Ok(None)``.

        A linear scan is fine: a passenger only has a handful of trips.
        """
        result = await self._call(
            "Error al obtener viaje activo", self.api.list_rides(), _decode_trips
        )
        if not result.success:
            return result
        active: Optional[Trip] = next((t for t in result.data if t.is_active()), None)
        return Ok(active)

    async def get_available_drivers(self) -> Result:
        return await self._call(
            "Error al cargar conductores disponibles",
            self.api.list_available_drivers(),
            _decode_drivers,
        )

    async def select_driver(self, trip_id: str, driver_id: str) -> Result:
        return await self._call(
            "Error al seleccionar conductor",
            self.api.select_driver(trip_id, driver_id),
            lambda raw: raw,
        )

    # ── Internals ─────────────────────────────────────────────────

    async def _call(
        self,
        fallback: str,
        pending: Awaitable[Any],
        decode: Callable[[Any], Any],
    ) -> Result:
        try:
            raw = await pending
        except NetworkError as e:
            return Err(ErrorKind.NETWORK_ERROR, str(e) or "Error de conexión")
        except RemoteError as e:
            return Err(ErrorKind.REMOTE_ERROR, str(e) or fallback)
        except ValidationError as e:
            # request body rejected before it left the device
            details = tuple(err["msg"] for err in e.errors())
            return Err(ErrorKind.VALIDATION_ERROR, fallback, details)
        except Exception:
            logger.exception("Unexpected failure: %s", fallback)
            return Err(ErrorKind.REMOTE_ERROR, fallback)

        try:
            return Ok(decode(raw))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Undecodable response (%s): %s", fallback, e)
            return Err(ErrorKind.REMOTE_ERROR, "Respuesta inválida del servidor")
