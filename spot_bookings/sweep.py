"""
Completion sweep: confirmed bookings whose end date has passed become
completed. Meant to be run periodically by an external scheduler (cron,
k8s CronJob) via the `spot-bookings-sweep` entry point.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from loguru import logger
from tortoise import Tortoise, run_async

from spot_bookings import settings
from spot_bookings.crud import BookingCRUD
from spot_bookings.engine import BookingEngine
from spot_bookings.errors import BookingError


async def run_completion_sweep(repository: BookingCRUD, today: date) -> list:
    """Complete every due booking; return the ones that were completed."""
    engine = BookingEngine(repository)
    due = await repository.list_due_for_completion(today)
    logger.info("Completion sweep: {} booking(s) due before {}", len(due), today)

    completed = []
    for booking in due:
        try:
            completed.append(await engine.complete(booking, today))
        except BookingError as exc:
            logger.warning("Skipping booking {}: {}", booking.id, exc.detail)
    logger.info("Completion sweep finished: {}/{} completed", len(completed), len(due))
    return completed


async def _sweep_once() -> None:
    await Tortoise.init(db_url=settings.db_url, modules={"models": ["spot_bookings.models"]})
    await run_completion_sweep(BookingCRUD(), datetime.now(timezone.utc).date())


def main() -> None:
    run_async(_sweep_once())


if __name__ == "__main__":
    main()
