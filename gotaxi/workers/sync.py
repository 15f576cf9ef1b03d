"""
Background Sync Worker
======================

Runs every ``sync_interval_seconds`` (default 30 s).

Cycle
-----
1. Skip unless the device is online and the offline queue is non-empty.
2. Run one drain pass on the orchestration service.

Re-entering is safe: the service serializes drain passes and every
queued operation carries its own retry budget.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from gotaxi.services.trip_service import TripService

logger = logging.getLogger(__name__)


class SyncWorker:
    def __init__(self, service: TripService, interval_seconds: float = 30.0):
        self.service = service
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Public API ────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Sync worker started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sync worker stopped")

    async def run_cycle(self) -> int:
        """Execute one sync cycle.  Returns the number of operations synced."""
        state = self.service.state
        if not state.is_online or not state.queue:
            logger.debug("Nothing to sync (online=%s, pending=%d)", state.is_online, len(state.queue))
            return 0
        return await self.service.process_offline_queue()

    # ── Internals ─────────────────────────────────────────────────

    async def _loop(self) -> None:
        """Periodic loop: sleep for the interval, then run a cycle."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            # Wait for the interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in sync cycle")
