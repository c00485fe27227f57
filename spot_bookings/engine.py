"""
Booking availability engine.

Decides whether a reservation may be accepted for a spot and drives the
status lifecycle. It never mutates a booking in place: every change is a
write requested from the repository.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from loguru import logger

from spot_bookings.availability import find_conflicts, validate_range
from spot_bookings.errors import (
    DateConflict,
    DuplicateBooking,
    InvalidTransition,
    NotFound,
)
from spot_bookings.lifecycle import assert_completion, assert_requested_transition
from spot_bookings.models import BookingStatus
from spot_bookings.schemas import (
    BlackoutCreate,
    BookingCreate,
    BookingResponse,
    parse_booking_request,
)


class BookingRepository(Protocol):
    """Storage collaborator. Implemented by BookingCRUD over Tortoise."""

    async def list_active_bookings_for_spot(
        self, spot_id: UUID, for_update: bool = False
    ) -> Sequence[BookingResponse]: ...

    async def find_bookings(
        self, spot_id: UUID, requester_id: UUID, start_date: date, end_date: date
    ) -> Sequence[BookingResponse]: ...

    async def insert_booking(self, **data: Any) -> BookingResponse: ...

    async def update_booking_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        expected_status: BookingStatus | None = None,
    ) -> BookingResponse | None: ...

    async def update_booking_dates(
        self, booking_id: UUID, start_date: date, end_date: date
    ) -> BookingResponse | None: ...

    async def get_booking(self, booking_id: UUID) -> BookingResponse | None: ...

    def spot_lock(self, spot_id: UUID) -> AbstractAsyncContextManager[Any]: ...


class BookingEngine:
    def __init__(self, repository: BookingRepository):
        self.repository = repository

    # ------------------------------------------------------------------
    # Read-only checks
    # ------------------------------------------------------------------

    async def find_conflicts(
        self,
        spot_id: UUID,
        start_date: date,
        end_date: date,
        exclude_booking_id: UUID | None = None,
        *,
        for_update: bool = False,
    ) -> list[BookingResponse]:
        validate_range(start_date, end_date)
        active = await self.repository.list_active_bookings_for_spot(
            spot_id, for_update=for_update
        )
        return find_conflicts(active, start_date, end_date, exclude_booking_id)

    async def is_available(
        self,
        spot_id: UUID,
        start_date: date,
        end_date: date,
        exclude_booking_id: UUID | None = None,
    ) -> bool:
        conflicts = await self.find_conflicts(
            spot_id, start_date, end_date, exclude_booking_id
        )
        return not conflicts

    async def find_active_duplicate(
        self,
        spot_id: UUID,
        requester_id: UUID,
        start_date: date,
        end_date: date,
    ) -> BookingResponse | None:
        """First non-cancelled booking with exactly these spot, requester and dates."""
        matches = await self.repository.find_bookings(
            spot_id, requester_id, start_date, end_date
        )
        for booking in matches:
            if booking.status != BookingStatus.CANCELLED:
                return booking
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_booking(
        self,
        request: BookingCreate | dict[str, Any],
        requester_id: UUID,
        spot_owner_id: UUID,
    ) -> BookingResponse:
        """
        Accept a reservation request:
          1. validate the request shape
          2. reject an exact duplicate (retry of an earlier request)
          3. reject overlapping active bookings
          4. insert as pending
        Steps 2-4 run under the spot lock so two concurrent requests for
        overlapping dates cannot both pass step 3.
        """
        if not isinstance(request, BookingCreate):
            request = parse_booking_request(request)

        async with self.repository.spot_lock(request.spot_id):
            existing = await self.find_active_duplicate(
                request.spot_id, requester_id, request.start_date, request.end_date
            )
            if existing is not None:
                logger.info(
                    "Duplicate booking request for spot {} by {} -> {}",
                    request.spot_id,
                    requester_id,
                    existing.id,
                )
                raise DuplicateBooking(existing.id)

            conflicts = await self.find_conflicts(
                request.spot_id, request.start_date, request.end_date, for_update=True
            )
            if conflicts:
                raise DateConflict(conflicts)

            booking = await self.repository.insert_booking(
                spot_id=request.spot_id,
                spot_owner_id=spot_owner_id,
                requester_id=requester_id,
                start_date=request.start_date,
                end_date=request.end_date,
                guest_count=request.guest_count,
                cost=request.cost,
                notes=request.notes,
                status=BookingStatus.PENDING,
            )

        logger.info(
            "Booking {} created for spot {} ({} -> {})",
            booking.id,
            booking.spot_id,
            booking.start_date,
            booking.end_date,
        )
        return booking

    async def create_blackout(
        self,
        request: BlackoutCreate,
        owner_id: UUID,
    ) -> BookingResponse:
        """Block a date range on the owner's own spot."""
        async with self.repository.spot_lock(request.spot_id):
            conflicts = await self.find_conflicts(
                request.spot_id, request.start_date, request.end_date, for_update=True
            )
            if conflicts:
                raise DateConflict(conflicts)

            booking = await self.repository.insert_booking(
                spot_id=request.spot_id,
                spot_owner_id=owner_id,
                requester_id=owner_id,
                start_date=request.start_date,
                end_date=request.end_date,
                guest_count=0,
                cost=Decimal("0.00"),
                notes=request.notes,
                status=BookingStatus.UNAVAILABLE,
            )

        logger.info("Spot {} blacked out ({} -> {})", booking.spot_id, booking.start_date, booking.end_date)
        return booking

    async def reschedule(
        self,
        booking_id: UUID,
        start_date: date,
        end_date: date,
    ) -> BookingResponse:
        validate_range(start_date, end_date)
        spot_id = (await self._get(booking_id)).spot_id

        async with self.repository.spot_lock(spot_id):
            # Status is checked under the lock; a cancellation may have landed
            # since the first read.
            booking = await self._get(booking_id)
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise InvalidTransition(
                    booking.status,
                    booking.status,
                    "only pending or confirmed bookings can change dates",
                )
            conflicts = await self.find_conflicts(
                booking.spot_id,
                start_date,
                end_date,
                exclude_booking_id=booking.id,
                for_update=True,
            )
            if conflicts:
                raise DateConflict(conflicts)
            updated = await self.repository.update_booking_dates(
                booking.id, start_date, end_date
            )

        if updated is None:
            raise NotFound("Booking", booking_id)
        return updated

    async def transition(
        self,
        booking_id: UUID,
        target: BookingStatus,
        today: date,
    ) -> BookingResponse:
        """Apply a requested status change (payment confirmation or cancellation)."""
        booking = await self._get(booking_id)
        assert_requested_transition(booking.status, target, booking.end_date, today)
        return await self._write_status(booking, target)

    async def complete(self, booking: BookingResponse, today: date) -> BookingResponse:
        """Confirmed -> completed, for the completion sweep only."""
        assert_completion(booking.status, booking.end_date, today)
        return await self._write_status(booking, BookingStatus.COMPLETED)

    # ------------------------------------------------------------------

    async def _get(self, booking_id: UUID) -> BookingResponse:
        booking = await self.repository.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking", booking_id)
        return booking

    async def _write_status(
        self, booking: BookingResponse, target: BookingStatus
    ) -> BookingResponse:
        # Compare-and-set on the status we checked: a concurrent writer that
        # already moved the booking (e.g. a second payment confirmation) wins.
        updated = await self.repository.update_booking_status(
            booking.id, target, expected_status=booking.status
        )
        if updated is None:
            raise InvalidTransition(booking.status, target, "booking status changed concurrently")
        logger.info("Booking {}: {} -> {}", booking.id, booking.status, target)
        return updated
