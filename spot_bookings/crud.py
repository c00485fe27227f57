from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from uuid import UUID

from tortoise.transactions import in_transaction

from spot_bookings.availability import ACTIVE_STATUSES
from spot_bookings.models import Booking, BookingStatus
from spot_bookings.schemas import BookingFilters, BookingResponse, BookingSlot

# One writer per spot inside this process. An entry lives only while some
# task holds or waits on the lock.
_spot_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()


def _local_lock(spot_id: UUID) -> asyncio.Lock:
    lock = _spot_locks.get(spot_id)
    if lock is None:
        lock = asyncio.Lock()
        _spot_locks[spot_id] = lock
    return lock


def _to_response(inst: Booking) -> BookingResponse:
    return BookingResponse.model_validate(inst, from_attributes=True)


class BookingCRUD:
    """Tortoise-backed booking repository."""

    @asynccontextmanager
    async def spot_lock(self, spot_id: UUID) -> AsyncIterator[None]:
        """
        Serialize check-then-insert for one spot inside a DB transaction.

        On Postgres a transaction-scoped advisory lock keyed by the spot also
        serializes writers in other processes, including when the spot has no
        rows yet for SELECT ... FOR UPDATE to lock.
        """
        async with _local_lock(spot_id):
            async with in_transaction() as conn:
                if conn.capabilities.dialect == "postgres":
                    # UUID() guarantees a safe literal.
                    await conn.execute_query(
                        "SELECT pg_advisory_xact_lock(hashtextextended("
                        f"'{UUID(str(spot_id))}', 0))"
                    )
                yield

    async def list_active_bookings_for_spot(
        self, spot_id: UUID, for_update: bool = False
    ) -> list[BookingResponse]:
        qs = Booking.filter(spot_id=spot_id, status__in=list(ACTIVE_STATUSES))
        if for_update:
            qs = qs.select_for_update()
        bookings = await qs.order_by("start_date")
        return [_to_response(b) for b in bookings]

    async def find_bookings(
        self,
        spot_id: UUID,
        requester_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[BookingResponse]:
        bookings = await Booking.filter(
            spot_id=spot_id,
            requester_id=requester_id,
            start_date=start_date,
            end_date=end_date,
        ).order_by("created_at")
        return [_to_response(b) for b in bookings]

    async def insert_booking(self, **data) -> BookingResponse:
        inst = await Booking.create(**data)
        return _to_response(inst)

    async def update_booking_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        expected_status: BookingStatus | None = None,
    ) -> BookingResponse | None:
        """Set the status; with `expected_status`, only if the row still has it."""
        qs = Booking.filter(id=booking_id)
        if expected_status is not None:
            qs = qs.filter(status=expected_status)
        updated = await qs.update(
            status=new_status, updated_at=datetime.now(timezone.utc)
        )
        if not updated:
            return None
        return await self.get_booking(booking_id)

    async def update_booking_dates(
        self, booking_id: UUID, start_date: date, end_date: date
    ) -> BookingResponse | None:
        inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        inst.start_date = start_date
        inst.end_date = end_date
        await inst.save(update_fields=["start_date", "end_date", "updated_at"])
        return _to_response(inst)

    async def get_booking(
        self,
        booking_id: UUID,
        requester_id: UUID | None = None,
        spot_owner_id: UUID | None = None,
    ) -> BookingResponse | None:
        if requester_id is not None:
            inst = await Booking.get_or_none(id=booking_id, requester_id=requester_id)
        elif spot_owner_id is not None:
            inst = await Booking.get_or_none(id=booking_id, spot_owner_id=spot_owner_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return _to_response(inst)

    async def list_bookings(
        self,
        filters: BookingFilters,
        requester_id: UUID | None = None,
        spot_owner_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if requester_id is not None:
            # Blackouts are the owner's own rows, not reservations they made.
            qs = qs.filter(requester_id=requester_id).exclude(
                status=BookingStatus.UNAVAILABLE
            )
        if spot_owner_id is not None:
            qs = qs.filter(spot_owner_id=spot_owner_id)
        if filters.spot_id is not None:
            qs = qs.filter(spot_id=filters.spot_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.offset(offset).limit(filters.page_size)

        bookings = await qs
        return [_to_response(b) for b in bookings]

    async def list_occupied_slots(self, spot_id: UUID) -> list[BookingSlot]:
        """Return held date ranges for a spot: no user info exposed."""
        bookings = await Booking.filter(
            spot_id=spot_id,
            status__in=list(ACTIVE_STATUSES),
        ).order_by("start_date").only("start_date", "end_date", "status")
        return [BookingSlot.model_validate(b, from_attributes=True) for b in bookings]

    async def list_due_for_completion(self, today: date) -> list[BookingResponse]:
        bookings = await Booking.filter(
            status=BookingStatus.CONFIRMED, end_date__lt=today
        ).order_by("end_date")
        return [_to_response(b) for b in bookings]

    async def delete_blackout(self, booking_id: UUID, spot_owner_id: UUID | None = None) -> BookingResponse | None:
        """Delete an unavailable range, optionally restricted to the spot owner's rows."""
        qs = Booking.filter(id=booking_id, status=BookingStatus.UNAVAILABLE)
        if spot_owner_id is not None:
            qs = qs.filter(spot_owner_id=spot_owner_id)
        inst = await qs.first()
        if not inst:
            return None
        await inst.delete()
        return _to_response(inst)

    async def delete_booking(self, booking_id: UUID) -> bool:
        deleted = await Booking.filter(id=booking_id).delete()
        return deleted > 0


booking_crud = BookingCRUD()
