"""Domain enumerations, state-transition rules and status translation."""

from __future__ import annotations

import enum
from typing import Union


class TripStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    ARRIVING = "arriving"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class OperationType(str, enum.Enum):
    REQUEST_TRIP = "requestTrip"
    CANCEL_TRIP = "cancelTrip"
    PAY_TRIP = "payTrip"
    RATE_TRIP = "rateTrip"


ACTIVE_STATUSES = frozenset(
    {
        TripStatus.REQUESTED,
        TripStatus.ACCEPTED,
        TripStatus.ARRIVING,
        TripStatus.IN_PROGRESS,
    }
)

CANCELLABLE_STATUSES = frozenset(
    {TripStatus.REQUESTED, TripStatus.ACCEPTED, TripStatus.ARRIVING}
)

# State machine: maps current status -> set of valid next statuses.
# ACCEPTED -> REQUESTED happens when the selected driver rejects the trip.
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.REQUESTED: {TripStatus.ACCEPTED, TripStatus.CANCELLED},
    TripStatus.ACCEPTED: {
        TripStatus.ARRIVING,
        TripStatus.IN_PROGRESS,
        TripStatus.CANCELLED,
        TripStatus.REQUESTED,
    },
    TripStatus.ARRIVING: {TripStatus.IN_PROGRESS, TripStatus.CANCELLED},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}


# ── Boundary translation ──────────────────────────────────────────────
#
# The backend reports localized tokens; everything past the repository
# speaks the canonical enums above.

REMOTE_TRIP_STATUS: dict[str, TripStatus] = {
    "pendiente": TripStatus.REQUESTED,
    "asignado": TripStatus.ACCEPTED,
    "en_camino": TripStatus.ARRIVING,
    "driver_arrived": TripStatus.ARRIVING,
    "en_curso": TripStatus.IN_PROGRESS,
    "finalizado": TripStatus.COMPLETED,
    "completado": TripStatus.COMPLETED,
    "cancelado": TripStatus.CANCELLED,
}

REMOTE_PAYMENT_STATUS: dict[str, PaymentStatus] = {
    "pendiente": PaymentStatus.PENDING,
    "pagado": PaymentStatus.PAID,
    "fallido": PaymentStatus.FAILED,
}


def canonical_trip_status(token: str | None) -> Union[TripStatus, str]:
    """Translate a remote status token.

    Unknown tokens are returned untouched so that ``Trip.validate`` can
    report them instead of silently guessing an equivalent.
    """
    if token is None:
        return TripStatus.REQUESTED
    if isinstance(token, TripStatus):
        return token
    normalized = str(token).strip().lower()
    try:
        return TripStatus(normalized)
    except ValueError:
        return REMOTE_TRIP_STATUS.get(normalized, token)


def canonical_payment_status(token: str | None) -> Union[PaymentStatus, str]:
    if token is None:
        return PaymentStatus.PENDING
    if isinstance(token, PaymentStatus):
        return token
    normalized = str(token).strip().lower()
    try:
        return PaymentStatus(normalized)
    except ValueError:
        return REMOTE_PAYMENT_STATUS.get(normalized, token)
