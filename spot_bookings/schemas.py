from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from spot_bookings import settings
from spot_bookings.availability import nights
from spot_bookings.errors import BookingValidationError
from spot_bookings.models import BookingStatus


class DateRangeMixin(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if nights(self.start_date, self.end_date) > settings.MAX_BOOKING_NIGHTS:
            raise ValueError(
                f"Maximum booking duration is {settings.MAX_BOOKING_NIGHTS} nights"
            )
        return self


class BookingCreate(DateRangeMixin):
    spot_id: UUID
    guest_count: int = Field(gt=0)
    cost: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("guest_count", mode="after")
    @classmethod
    def limit_guests(cls, v: int) -> int:
        if v > settings.MAX_GUESTS:
            raise ValueError(f"At most {settings.MAX_GUESTS} guests per booking")
        return v


class BlackoutCreate(DateRangeMixin):
    spot_id: UUID
    notes: str | None = Field(default=None, max_length=1000)


class BookingReschedule(DateRangeMixin):
    pass


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    id: UUID
    spot_id: UUID
    spot_owner_id: UUID
    requester_id: UUID
    start_date: date
    end_date: date
    guest_count: int
    cost: Decimal
    status: BookingStatus
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def nights(self) -> int:
        return (self.end_date - self.start_date).days

    @computed_field  # type: ignore[prop-decorator]
    @property
    def service_fee(self) -> Decimal:
        return (self.cost * settings.SERVICE_FEE_RATE).quantize(Decimal("0.01"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return self.cost + self.service_fee


class BookingSlot(BaseModel):
    """Occupied date range: reveals no user identity."""

    start_date: date
    end_date: date
    status: BookingStatus

    model_config = ConfigDict(from_attributes=True)


class AvailabilityResponse(BaseModel):
    spot_id: UUID
    start_date: date
    end_date: date
    available: bool
    conflicts: list[BookingSlot] = Field(default_factory=list)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    spot_id: UUID | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


def parse_booking_request(payload: dict[str, Any]) -> BookingCreate:
    """
    Validate a raw create-booking payload.

    Pydantic errors are re-raised as BookingValidationError so callers get
    the offending field names without depending on pydantic.
    """
    try:
        return BookingCreate.model_validate(payload)
    except ValidationError as exc:
        raise BookingValidationError.from_pydantic(exc.errors()) from None
