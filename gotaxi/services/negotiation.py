"""
Driver negotiation
==================

After the passenger picks a driver, the selected driver has a bounded
window to accept.  The client learns the decision by polling the trip.

State machine
-------------
::

    WAITING --(trip accepted / arriving / in progress)--> CONFIRMED
    WAITING --(trip back to requested, driver cleared)--> REJECTED
    WAITING --(timeout)---------------------------------> TIMED_OUT
    WAITING --(passenger cancels / trip cancelled)------> CANCELLED

Exactly one exit ends a session, and every exit clears both the poll
task and the timeout handle, so no late poll or timer can fire a second
transition.  REJECTED and TIMED_OUT carry the trip id so the caller can
go back to driver selection for the same trip.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from gotaxi.config import Settings, settings as default_settings
from gotaxi.domain.entities import Trip, utcnow
from gotaxi.domain.enums import TripStatus
from gotaxi.domain.results import Err, ErrorKind, Ok, Result
from gotaxi.infrastructure.repositories import TripRepository

logger = logging.getLogger(__name__)


class NegotiationState(str, enum.Enum):
    WAITING = "WAITING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"  # manual exit, no judgement on the trip


CONFIRMING_STATUSES = frozenset(
    {TripStatus.ACCEPTED, TripStatus.ARRIVING, TripStatus.IN_PROGRESS}
)


@dataclass(frozen=True)
class NegotiationOutcome:
    state: NegotiationState
    trip: Optional[Trip] = None
    reselect_trip_id: Optional[str] = None

    @property
    def needs_reselection(self) -> bool:
        return self.reselect_trip_id is not None


TransitionCallback = Callable[["NegotiationSession", NegotiationOutcome], None]


class NegotiationSession:
    def __init__(
        self,
        repository: TripRepository,
        trip_id: str,
        selected_driver_id: str,
        *,
        poll_interval: float = 3.0,
        timeout: float = 120.0,
        on_transition: Optional[TransitionCallback] = None,
    ):
        self.repository = repository
        self.trip_id = trip_id
        self.selected_driver_id = selected_driver_id
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.on_transition = on_transition

        self.state = NegotiationState.WAITING
        self.started_at: Optional[datetime] = None
        self._done: Optional[asyncio.Future] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None

    # ── Public API ────────────────────────────────────────────────

    def start(self) -> None:
        """Enter WAITING: start polling and arm the timeout."""
        if self._done is not None:
            raise RuntimeError(f"Negotiation for trip {self.trip_id} already started")
        loop = asyncio.get_running_loop()
        self.started_at = utcnow()
        self._done = loop.create_future()
        self._poll_task = loop.create_task(self._poll_loop())
        self._timeout_handle = loop.call_later(self.timeout, self._on_timeout)
        logger.info(
            "Waiting for driver %s on trip %s (timeout=%ss)",
            self.selected_driver_id,
            self.trip_id,
            self.timeout,
        )

    @property
    def is_waiting(self) -> bool:
        return self.state is NegotiationState.WAITING

    async def wait(self) -> NegotiationOutcome:
        if self._done is None:
            raise RuntimeError("Negotiation not started")
        return await asyncio.shield(self._done)

    def cancel(self) -> None:
        """Passenger backs out; ends the session without judging the trip."""
        self._finish(NegotiationState.CANCELLED)

    @staticmethod
    def interpret(trip: Trip) -> Optional[NegotiationState]:
        """Map a polled trip onto a terminal state, or ``None`` to keep waiting."""
        if trip.status in CONFIRMING_STATUSES:
            return NegotiationState.CONFIRMED
        if trip.status == TripStatus.REQUESTED and trip.driver_released:
            return NegotiationState.REJECTED
        if trip.status == TripStatus.CANCELLED:
            return NegotiationState.CANCELLED
        return None

    # ── Internals ─────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self.is_waiting:
            await asyncio.sleep(self.poll_interval)
            result = await self.repository.get_trip_by_id(self.trip_id)
            if not self.is_waiting:
                return  # timed out or cancelled while the call was in flight
            if not result.success:
                logger.warning(
                    "Polling trip %s failed: %s", self.trip_id, result.message
                )
                continue
            decided = self.interpret(result.data)
            logger.debug("Trip %s polled: %s", self.trip_id, result.data.status)
            if decided is not None:
                self._finish(decided, trip=result.data)
                return

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        if self.is_waiting:
            logger.info("Driver %s did not answer in time", self.selected_driver_id)
        self._finish(NegotiationState.TIMED_OUT)

    def _finish(self, state: NegotiationState, trip: Optional[Trip] = None) -> None:
        if not self.is_waiting:
            return
        self.state = state
        self._clear_timers()

        reselect = state in (NegotiationState.REJECTED, NegotiationState.TIMED_OUT)
        outcome = NegotiationOutcome(
            state=state,
            trip=trip,
            reselect_trip_id=self.trip_id if reselect else None,
        )
        if self._done is not None and not self._done.done():
            self._done.set_result(outcome)
        logger.info("Negotiation for trip %s ended: %s", self.trip_id, state.value)

        if self.on_transition is not None:
            try:
                self.on_transition(self, outcome)
            except Exception:
                logger.exception("Negotiation transition callback failed")

    def _clear_timers(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()


class DriverSelection:
    """Driver picking for one trip, plus the negotiation that follows it."""

    def __init__(
        self,
        repository: TripRepository,
        settings: Optional[Settings] = None,
        on_transition: Optional[TransitionCallback] = None,
    ):
        cfg = settings or default_settings
        self.repository = repository
        self.poll_interval = cfg.poll_interval_seconds
        self.timeout = cfg.negotiation_timeout_seconds
        self.on_transition = on_transition
        self.session: Optional[NegotiationSession] = None

    async def list_drivers(self) -> Result:
        result = await self.repository.get_available_drivers()
        if result.success and not result.data:
            return Ok([], message="No hay conductores disponibles en este momento")
        return result

    async def select_driver(self, trip_id: Optional[str], driver_id: Optional[str]) -> Result:
        if not trip_id:
            return Err(ErrorKind.VALIDATION_ERROR, "Error: ID de viaje no disponible")
        if not driver_id:
            return Err(ErrorKind.VALIDATION_ERROR, "Conductor requerido")

        if self.session is not None and self.session.is_waiting:
            self.session.cancel()

        result = await self.repository.select_driver(trip_id, driver_id)
        if not result.success:
            return result

        session = NegotiationSession(
            self.repository,
            trip_id,
            driver_id,
            poll_interval=self.poll_interval,
            timeout=self.timeout,
            on_transition=self.on_transition,
        )
        session.start()
        self.session = session
        return Ok(session, message="Conductor seleccionado")

    async def reselect(self, trip_id: str) -> Result:
        """Recovery path after REJECTED / TIMED_OUT: pick again for *trip_id*."""
        if self.session is not None and self.session.trip_id != trip_id:
            logger.warning(
                "Reselecting for trip %s while session belongs to %s",
                trip_id,
                self.session.trip_id,
            )
        return await self.list_drivers()

    def cancel(self) -> None:
        if self.session is not None:
            self.session.cancel()
