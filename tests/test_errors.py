"""Error taxonomy payloads and their HTTP translation."""

from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from spot_bookings.errors import (
    BookingValidationError,
    DateConflict,
    DuplicateBooking,
    InvalidRange,
    InvalidTransition,
    NotFound,
    register_exception_handlers,
)
from spot_bookings.models import BookingStatus

from .factories import booking_model


class TestPayloads:
    def test_validation_error_lists_fields(self):
        exc = BookingValidationError(
            [
                {"field": "guest_count", "message": "too many"},
                {"field": "cost", "message": "must be positive"},
            ]
        )
        body = exc.to_dict()
        assert exc.fields == ["guest_count", "cost"]
        assert body["error"] == "BookingValidationError"
        assert "guest_count, cost" in body["detail"]
        assert body["errors"][1] == {"field": "cost", "message": "must be positive"}

    def test_for_field(self):
        exc = BookingValidationError.for_field("guest_count", "Spot allows at most 6 guests")
        assert exc.fields == ["guest_count"]

    def test_from_pydantic_strips_request_location(self):
        exc = BookingValidationError.from_pydantic(
            [
                {"loc": ("body", "guest_count"), "type": "greater_than", "msg": "too few"},
                {"loc": ("body",), "type": "value_error", "msg": "end before start"},
                {"loc": ("query", "page"), "type": "int_parsing", "msg": "not a number"},
            ]
        )
        assert exc.fields == ["guest_count", "end_date", "page"]

    def test_from_pydantic_missing_body(self):
        exc = BookingValidationError.from_pydantic(
            [{"loc": ("body",), "type": "missing", "msg": "Field required"}]
        )
        assert exc.fields == ["body"]

    def test_invalid_range_is_a_validation_error_on_end_date(self):
        exc = InvalidRange(date(2025, 6, 10), date(2025, 6, 1))
        assert isinstance(exc, BookingValidationError)
        assert exc.fields == ["end_date"]
        assert exc.status_code == 422

    def test_duplicate_carries_existing_id(self):
        existing = uuid4()
        body = DuplicateBooking(existing).to_dict()
        assert body["existing_booking_id"] == str(existing)

    def test_date_conflict_lists_conflicting_ranges(self):
        booking = booking_model(status="confirmed")
        body = DateConflict([booking]).to_dict()
        assert body["conflicts"] == [
            {
                "id": str(booking.id),
                "start_date": booking.start_date.isoformat(),
                "end_date": booking.end_date.isoformat(),
                "status": "confirmed",
            }
        ]

    def test_invalid_transition_reason(self):
        exc = InvalidTransition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, "stay has ended")
        assert exc.detail == "Cannot transition from 'confirmed' to 'cancelled': stay has ended"

    def test_not_found(self):
        exc = NotFound("Booking", uuid4())
        assert exc.detail == "Booking not found"


@pytest.fixture()
def raising_client():
    app = FastAPI()
    register_exception_handlers(app)

    errors = {
        "validation": BookingValidationError.for_field("cost", "must be positive"),
        "duplicate": DuplicateBooking(uuid4()),
        "conflict": DateConflict([]),
        "transition": InvalidTransition(BookingStatus.COMPLETED, BookingStatus.CONFIRMED),
        "missing": NotFound("Booking"),
    }

    @app.get("/raise/{kind}")
    async def _raise(kind: str):
        raise errors[kind]

    return TestClient(app)


@pytest.mark.parametrize(
    "kind, status_code, error",
    [
        ("validation", 422, "BookingValidationError"),
        ("duplicate", 409, "DuplicateBooking"),
        ("conflict", 409, "DateConflict"),
        ("transition", 400, "InvalidTransition"),
        ("missing", 404, "NotFound"),
    ],
)
def test_handler_status_codes(raising_client, kind, status_code, error):
    resp = raising_client.get(f"/raise/{kind}")
    assert resp.status_code == status_code
    assert resp.json()["error"] == error
