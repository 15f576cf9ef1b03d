"""
GoTaxi Passenger Trip Sync
==========================
Entry point. Run with: python main.py --passenger <id>

Opens a passenger session, restores the persisted offline queue and
keeps the background sync worker running until interrupted.
"""

import argparse
import asyncio
import logging

from gotaxi.config import settings
from gotaxi.session import TripSession

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gotaxi")


async def run(passenger_id: str | None) -> None:
    async with TripSession(settings, passenger_id) as session:
        status = session.trips.get_sync_status()
        logger.info(
            "%d operations pending, %d in dead letter",
            status.pending_operations,
            status.failed_operations,
        )
        await asyncio.Event().wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="GoTaxi trip sync client")
    parser.add_argument("--passenger", default=None, help="passenger id for this session")
    args = parser.parse_args()
    try:
        asyncio.run(run(args.passenger))
    except KeyboardInterrupt:
        pass
