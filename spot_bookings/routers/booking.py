from datetime import date, datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from spot_bookings.cache import get_slots_cache, invalidate_slots_cache, set_slots_cache
from spot_bookings.crud import booking_crud
from spot_bookings.deps import (
    CurrentUser,
    PaymentsClient,
    SpotsClient,
    can_admin_delete_booking,
    can_manage_booking,
    can_read_or_manage_booking,
    can_write_booking,
    get_booking_engine,
    get_current_user,
    get_payments_client,
    get_spots_client,
)
from spot_bookings.engine import BookingEngine
from spot_bookings.errors import BookingValidationError, NotFound
from spot_bookings.schemas import (
    AvailabilityResponse,
    BlackoutCreate,
    BookingCreate,
    BookingFilters,
    BookingReschedule,
    BookingResponse,
    BookingSlot,
    BookingStatus,
    BookingStatusUpdate,
)
from spot_bookings.scopes import BookingScope

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _is_admin(user: CurrentUser, *admin_scopes: str) -> bool:
    return user.is_admin or user.has_any(BookingScope.ADMIN, *admin_scopes)


async def _require_spot(
    spot_id: UUID, current_user: CurrentUser, spots_client: SpotsClient
) -> dict:
    spot = await spots_client.get_spot(spot_id, current_user)
    if spot is None:
        raise NotFound("Camping spot", spot_id)
    return spot


# ---------------------------------------------------------------------------
# Transition permission helpers
# ---------------------------------------------------------------------------


def _assert_status_permission(
    new_status: BookingStatus,
    booking: BookingResponse,
    current_user: CurrentUser,
) -> None:
    """
    Raise HTTP 403 if the caller may not request `new_status` on this booking.
    Whether the transition itself is legal is decided by the engine.

    Rules:
      -> confirmed : CONFIRM (payments service), OR admin
      -> cancelled : CANCEL + requester, OR MANAGE + spot owner, OR admin
    """
    if _is_admin(current_user, BookingScope.ADMIN_WRITE):
        return

    if new_status == BookingStatus.CONFIRMED:
        if BookingScope.CONFIRM not in current_user.scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Confirming a booking requires the '{BookingScope.CONFIRM}' scope."
                ),
            )

    elif new_status == BookingStatus.CANCELLED:
        is_requester = current_user.id == booking.requester_id
        is_spot_owner = current_user.id == booking.spot_owner_id
        has_cancel = BookingScope.CANCEL in current_user.scopes
        has_manage = BookingScope.MANAGE in current_user.scopes
        if not ((has_cancel and is_requester) or (has_manage and is_spot_owner)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Cancelling requires '{BookingScope.CANCEL}' scope as the guest, "
                    f"or '{BookingScope.MANAGE}' scope as the spot owner."
                ),
            )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/slots", response_model=list[BookingSlot])
async def get_spot_slots(
    spot_id: UUID,
    _: CurrentUser = Depends(get_current_user),
) -> list[BookingSlot]:
    """
    Returns held date ranges for a spot.
    Any authenticated user can call this: response contains NO user identity.
    """
    cached = await get_slots_cache(spot_id)
    if cached is not None:
        logger.debug("Cache hit for slots: spot_id={}", spot_id)
        return cached

    logger.debug("Cache miss for slots: spot_id={}", spot_id)
    slots = await booking_crud.list_occupied_slots(spot_id)
    await set_slots_cache(spot_id, slots)
    return slots


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    spot_id: UUID,
    start_date: date,
    end_date: date,
    exclude_booking_id: UUID | None = None,
    _: CurrentUser = Depends(get_current_user),
    engine: BookingEngine = Depends(get_booking_engine),
) -> AvailabilityResponse:
    conflicts = await engine.find_conflicts(
        spot_id, start_date, end_date, exclude_booking_id
    )
    return AvailabilityResponse(
        spot_id=spot_id,
        start_date=start_date,
        end_date=end_date,
        available=not conflicts,
        conflicts=[BookingSlot.model_validate(c, from_attributes=True) for c in conflicts],
    )


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> list[BookingResponse]:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if _is_admin(current_user, BookingScope.ADMIN_READ):
        return await booking_crud.list_bookings(filters=filters)
    if is_manager and not is_reader:
        return await booking_crud.list_bookings(
            filters=filters, spot_owner_id=current_user.id
        )
    return await booking_crud.list_bookings(
        filters=filters, requester_id=current_user.id
    )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    spots_client: SpotsClient = Depends(get_spots_client),
    engine: BookingEngine = Depends(get_booking_engine),
) -> BookingResponse:
    spot = await _require_spot(payload.spot_id, current_user, spots_client)

    max_guests = spot.get("max_guests")
    if max_guests is not None and payload.guest_count > int(max_guests):
        raise BookingValidationError.for_field(
            "guest_count", f"This camping spot can only accommodate {max_guests} guests"
        )

    booking = await engine.create_booking(
        payload,
        requester_id=current_user.id,
        spot_owner_id=UUID(spot["owner_id"]),
    )
    await invalidate_slots_cache(payload.spot_id)
    return booking


@router.post(
    "/blackouts",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_blackout(
    payload: BlackoutCreate,
    current_user: CurrentUser = Depends(can_manage_booking),
    spots_client: SpotsClient = Depends(get_spots_client),
    engine: BookingEngine = Depends(get_booking_engine),
) -> BookingResponse:
    spot = await _require_spot(payload.spot_id, current_user, spots_client)
    owner_id = UUID(spot["owner_id"])
    if owner_id != current_user.id and not _is_admin(current_user, BookingScope.ADMIN_WRITE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the spot owner can block dates on this spot",
        )

    booking = await engine.create_blackout(payload, owner_id=owner_id)
    await invalidate_slots_cache(payload.spot_id)
    return booking


@router.delete("/blackouts/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_blackout(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_manage_booking),
) -> None:
    if _is_admin(current_user, BookingScope.ADMIN_WRITE):
        removed = await booking_crud.delete_blackout(booking_id)
    else:
        removed = await booking_crud.delete_blackout(
            booking_id, spot_owner_id=current_user.id
        )
    if removed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Blackout not found"
        )
    await invalidate_slots_cache(removed.spot_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if _is_admin(current_user, BookingScope.ADMIN_READ):
        booking = await booking_crud.get_booking(booking_id)
    elif is_manager and not is_reader:
        booking = await booking_crud.get_booking(
            booking_id, spot_owner_id=current_user.id
        )
    else:
        booking = await booking_crud.get_booking(booking_id, requester_id=current_user.id)

    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


@router.patch("/{booking_id}", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    payload: BookingReschedule,
    current_user: CurrentUser = Depends(can_write_booking),
    engine: BookingEngine = Depends(get_booking_engine),
) -> BookingResponse:
    if _is_admin(current_user, BookingScope.ADMIN_WRITE):
        booking = await booking_crud.get_booking(booking_id)
    else:
        booking = await booking_crud.get_booking(booking_id, requester_id=current_user.id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    updated = await engine.reschedule(booking_id, payload.start_date, payload.end_date)
    await invalidate_slots_cache(booking.spot_id)
    return updated


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    payments_client: PaymentsClient = Depends(get_payments_client),
    engine: BookingEngine = Depends(get_booking_engine),
) -> BookingResponse:
    # Fetch the booking without ownership filter: we validate permissions manually
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    _assert_status_permission(payload.status, booking, current_user)

    updated = await engine.transition(booking_id, payload.status, _today())
    await invalidate_slots_cache(booking.spot_id)

    # Refund when the spot owner (or admin) cancels a paid booking.
    # Guest cancellations are not refunded here; refund policy for guests
    # lives in payments-ms. Refund failure does not block the cancellation.
    if (
        payload.status == BookingStatus.CANCELLED
        and booking.status == BookingStatus.CONFIRMED
    ):
        is_spot_owner = current_user.id == booking.spot_owner_id
        if is_spot_owner or _is_admin(current_user, BookingScope.ADMIN_WRITE):
            await payments_client.refund_booking(booking_id, current_user)

    return updated


@router.delete(
    "/{booking_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(can_admin_delete_booking)],
)
async def delete_booking(booking_id: UUID) -> None:
    deleted = await booking_crud.delete_booking(booking_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
