"""
Date-range rules for a single camping spot.

All ranges are closed: a booking ending on day D and one starting on day D
share that day and therefore overlap.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Protocol
from uuid import UUID

from spot_bookings.errors import InvalidRange
from spot_bookings.models import BookingStatus

# Statuses that hold a spot's dates.
ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.UNAVAILABLE}
)


class DateRanged(Protocol):
    id: UUID
    start_date: date
    end_date: date


def validate_range(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise InvalidRange(start_date, end_date)


def nights(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days


def overlaps(existing: DateRanged, candidate_start: date, candidate_end: date) -> bool:
    """Return True if `existing` shares at least one calendar day with the candidate."""
    return existing.start_date <= candidate_end and existing.end_date >= candidate_start


def find_conflicts(
    bookings: Iterable[DateRanged],
    start_date: date,
    end_date: date,
    exclude_booking_id: UUID | None = None,
) -> list:
    """Return every booking overlapping [start_date, end_date], minus the excluded one."""
    validate_range(start_date, end_date)
    return [
        b
        for b in bookings
        if b.id != exclude_booking_id and overlaps(b, start_date, end_date)
    ]
