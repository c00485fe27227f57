from __future__ import annotations

from datetime import date

from spot_bookings.errors import InvalidTransition
from spot_bookings.models import BookingStatus

VALID_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    # Blackouts are removed by deleting the row, never transitioned.
    BookingStatus.UNAVAILABLE: frozenset(),
}

# Targets a request (user or payments collaborator) may ask for.
# COMPLETED is reserved for the completion sweep.
REQUESTABLE_TARGETS: frozenset[BookingStatus] = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.CANCELLED}
)


def allowed_targets(current: BookingStatus) -> frozenset[BookingStatus]:
    return VALID_TRANSITIONS.get(current, frozenset())


def assert_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise InvalidTransition unless `current -> target` is in the table."""
    if target not in allowed_targets(current):
        raise InvalidTransition(
            current,
            target,
            f"allowed: {sorted(s.value for s in allowed_targets(current))}",
        )


def can_cancel(end_date: date, today: date) -> bool:
    """A booking can be cancelled until its end date has passed."""
    return end_date >= today


def is_due_for_completion(status: BookingStatus, end_date: date, today: date) -> bool:
    return status == BookingStatus.CONFIRMED and end_date < today


def assert_requested_transition(
    current: BookingStatus,
    target: BookingStatus,
    end_date: date,
    today: date,
) -> None:
    """
    Guard for transitions coming from a request rather than the sweep.

      pending   -> confirmed : payment captured
      pending   -> cancelled : end date not yet passed
      confirmed -> cancelled : end date not yet passed
    """
    if target not in REQUESTABLE_TARGETS:
        raise InvalidTransition(current, target, "only the completion sweep may set this status")
    assert_transition(current, target)
    if target == BookingStatus.CANCELLED and not can_cancel(end_date, today):
        raise InvalidTransition(current, target, f"booking ended on {end_date}")


def assert_completion(status: BookingStatus, end_date: date, today: date) -> None:
    assert_transition(status, BookingStatus.COMPLETED)
    if not is_due_for_completion(status, end_date, today):
        raise InvalidTransition(
            status, BookingStatus.COMPLETED, f"end date {end_date} has not passed"
        )
