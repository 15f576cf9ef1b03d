"""
Domain entities with business logic.

Patterns used
-------------
- **Immutable record** on ``Trip``: lifecycle changes produce a new value
  via ``transition_to`` (REQUESTED -> ACCEPTED -> ARRIVING -> IN_PROGRESS
  -> COMPLETED | CANCELLED); the status only moves when the remote system
  confirms it.
- ``OfflineOperation`` is the persisted unit of the offline queue and
  tracks its own retry budget.

Nothing in this module performs I/O.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .enums import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUSES,
    TRIP_TRANSITIONS,
    OperationType,
    PaymentStatus,
    TripStatus,
    canonical_payment_status,
    canonical_trip_status,
)


class InvalidStateTransition(Exception):
    """Raised when a trip status change violates the state machine."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def has_valid_coordinates(self) -> bool:
        """Missing coordinates are fine; present ones must be on the globe."""
        return (self.lat is None or -90 <= self.lat <= 90) and (
            self.lng is None or -180 <= self.lng <= 180
        )

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Location"]:
        if data is None:
            return None
        if isinstance(data, Location):
            return data
        return cls(
            address=data.get("address") or data.get("direccion") or "",
            lat=data.get("lat", data.get("latitude")),
            lng=data.get("lng", data.get("longitude")),
        )


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[str, ...] = ()


def _has_address(location: Optional[Location]) -> bool:
    return location is not None and bool(location.address and location.address.strip())


# ── Entities ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Trip:
    id: Optional[str] = None
    passenger_id: Optional[str] = None
    driver_id: Optional[str] = None
    origin: Optional[Location] = None
    destination: Optional[Location] = None
    status: str = TripStatus.REQUESTED
    fare: Optional[float] = None
    distance: Optional[float] = None
    duration: Optional[float] = None
    payment_method: Optional[str] = None
    payment_status: str = PaymentStatus.PENDING
    passenger_rating: Optional[int] = None
    driver_rating: Optional[int] = None
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # driver explicitly cleared by the backend, as opposed to never assigned
    driver_released: bool = False

    def __post_init__(self) -> None:
        # Plain strings from callers become enum members; unknown tokens stay raw.
        object.__setattr__(self, "status", canonical_trip_status(self.status))
        object.__setattr__(
            self, "payment_status", canonical_payment_status(self.payment_status)
        )

    # ── Predicates ────────────────────────────────────────────────

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def can_be_rated(self) -> bool:
        return self.status == TripStatus.COMPLETED and self.passenger_rating is None

    def can_be_completed(self) -> bool:
        return self.status == TripStatus.IN_PROGRESS

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, new_status: TripStatus) -> bool:
        if self.status == new_status:
            return True
        try:
            current = TripStatus(self.status)
        except ValueError:
            return False
        return new_status in TRIP_TRANSITIONS.get(current, set())

    def transition_to(self, new_status: TripStatus) -> "Trip":
        """Return a copy in *new_status* if the transition is legal, else raise."""
        if new_status == self.status or not self.can_transition_to(new_status):
            raise InvalidStateTransition(
                f"Cannot transition from {self.status} to {new_status}"
            )
        return replace(self, status=new_status, updated_at=utcnow())

    def estimated_arrival(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if not self.duration:
            return None
        return (now or utcnow()) + timedelta(minutes=self.duration)

    # ── Validation ────────────────────────────────────────────────

    def validate(self) -> ValidationResult:
        errors: list[str] = []
        if not _has_address(self.origin):
            errors.append("El origen es requerido")
        if not _has_address(self.destination):
            errors.append("El destino es requerido")
        if (
            _has_address(self.origin)
            and _has_address(self.destination)
            and self.origin.address.strip() == self.destination.address.strip()
        ):
            errors.append("El origen y destino no pueden ser iguales")
        if self.origin is not None and not self.origin.has_valid_coordinates:
            errors.append("Las coordenadas del origen no son válidas")
        if self.destination is not None and not self.destination.has_valid_coordinates:
            errors.append("Las coordenadas del destino no son válidas")
        if self.fare is not None and self.fare < 0:
            errors.append("La tarifa no puede ser negativa")
        if self.distance is not None and self.distance < 0:
            errors.append("La distancia no puede ser negativa")
        if self.duration is not None and self.duration < 0:
            errors.append("La duración no puede ser negativa")
        if not isinstance(self.status, TripStatus):
            errors.append("El estado del viaje no es válido")
        if not isinstance(self.payment_status, PaymentStatus):
            errors.append("El estado del pago no es válido")
        if self.passenger_rating is not None and not 1 <= self.passenger_rating <= 5:
            errors.append("La calificación debe estar entre 1 y 5")
        if self.driver_rating is not None and not 1 <= self.driver_rating <= 5:
            errors.append("La calificación del conductor debe estar entre 1 y 5")
        return ValidationResult(is_valid=not errors, errors=tuple(errors))

    # ── Serialization ─────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        record = {
            "id": self.id,
            "passengerId": self.passenger_id,
            "origin": self.origin.to_dict() if self.origin else None,
            "destination": self.destination.to_dict() if self.destination else None,
            "status": str(getattr(self.status, "value", self.status)),
            "fare": self.fare,
            "distance": self.distance,
            "duration": self.duration,
            "paymentMethod": self.payment_method,
            "paymentStatus": str(getattr(self.payment_status, "value", self.payment_status)),
            "passengerRating": self.passenger_rating,
            "driverRating": self.driver_rating,
            "comment": self.comment,
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
        }
        # an absent key means "never assigned", an explicit null means "released"
        if self.driver_id is not None or self.driver_released:
            record["driverId"] = self.driver_id
        return record

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trip":
        """Build a Trip from a wire or storage record.

        Accepts the camelCase keys produced by ``to_dict`` as well as the
        backend's ``_id`` / ``estado`` / ``conductor`` / ``pasajero`` fields.
        """
        driver_key = next((k for k in ("driverId", "conductor") if k in data), None)
        driver = data[driver_key] if driver_key else None
        if isinstance(driver, dict):
            driver = driver.get("id") or driver.get("_id")
        passenger = data.get("passengerId", data.get("pasajero"))
        if isinstance(passenger, dict):
            passenger = passenger.get("id") or passenger.get("_id")
        trip_id = data.get("id", data.get("_id"))
        return cls(
            id=str(trip_id) if trip_id is not None else None,
            passenger_id=str(passenger) if passenger is not None else None,
            driver_id=str(driver) if driver is not None else None,
            origin=Location.from_dict(data.get("origin", data.get("origen"))),
            destination=Location.from_dict(data.get("destination", data.get("destino"))),
            status=canonical_trip_status(data.get("status", data.get("estado"))),
            fare=data.get("fare"),
            distance=data.get("distance"),
            duration=data.get("duration"),
            payment_method=data.get("paymentMethod"),
            payment_status=canonical_payment_status(data.get("paymentStatus")),
            passenger_rating=data.get("passengerRating"),
            driver_rating=data.get("driverRating"),
            comment=data.get("comment"),
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
            driver_released=driver_key is not None and data[driver_key] is None,
        )


@dataclass(frozen=True)
class DriverCandidate:
    """Read-only snapshot shown while the passenger picks a driver."""

    id: str
    driver_profile: dict[str, Any] = field(default_factory=dict)
    vehicle_info: dict[str, Any] = field(default_factory=dict)
    rating: float = 0.0

    @property
    def display_name(self) -> str:
        first = self.driver_profile.get("nombre", "")
        last = self.driver_profile.get("apellido", "")
        return f"{first} {last}".strip() or "Conductor"

    def vehicle_description(self) -> Optional[str]:
        if not self.vehicle_info:
            return None
        v = self.vehicle_info
        return (
            f"{v.get('marca', '')} {v.get('modelo', '')} "
            f"({v.get('anio', '')}) - {v.get('color', '')}"
        )


@dataclass
class OfflineOperation:
    type: OperationType
    payload: dict[str, Any]
    retries_remaining: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: datetime = field(default_factory=utcnow)
    drain_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "enqueuedAt": _format_datetime(self.enqueued_at),
            "retriesRemaining": self.retries_remaining,
            "drainFailures": self.drain_failures,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_retries: int) -> "OfflineOperation":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            type=OperationType(data["type"]),
            payload=dict(data.get("payload") or data.get("data") or {}),
            enqueued_at=_parse_datetime(data.get("enqueuedAt", data.get("timestamp")))
            or utcnow(),
            retries_remaining=data.get("retriesRemaining", default_retries),
            drain_failures=data.get("drainFailures", 0),
        )
