"""
Booking error taxonomy and its translation to HTTP responses.

The engine raises these; only the exception handlers registered here know
about status codes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

_REQUEST_LOCATIONS = frozenset({"body", "query", "path", "header", "cookie"})


class BookingError(Exception):
    """Base class for every decision the booking engine can refuse."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail, "error": type(self).__name__}


class BookingValidationError(BookingError):
    """Malformed or out-of-range input, one entry per offending field."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT

    def __init__(self, errors: list[dict[str, str]]):
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Invalid booking request: {fields}")
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str) -> BookingValidationError:
        return cls([{"field": field, "message": message}])

    @classmethod
    def from_pydantic(cls, errors: Sequence[Mapping[str, Any]]) -> BookingValidationError:
        """
        Build from pydantic error dicts, request-level (body/query/...) or not.

        Errors with no field location come from the date range check and are
        reported on end_date; a missing body is reported on "body".
        """
        out = []
        for err in errors:
            loc = [str(p) for p in err["loc"]]
            if loc and loc[0] in _REQUEST_LOCATIONS:
                loc = loc[1:]
            if loc:
                field = ".".join(loc)
            elif err["type"] == "missing":
                field = "body"
            else:
                field = "end_date"
            out.append({"field": field, "message": err["msg"]})
        return cls(out)

    @property
    def fields(self) -> list[str]:
        return [e["field"] for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


class InvalidRange(BookingValidationError):
    def __init__(self, start_date, end_date):
        super().__init__(
            [
                {
                    "field": "end_date",
                    "message": f"end_date ({end_date}) must be after start_date ({start_date})",
                }
            ]
        )
        self.start_date = start_date
        self.end_date = end_date


class DuplicateBooking(BookingError):
    """Same requester, spot and dates already booked. Safe to treat as success."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, existing_booking_id: UUID):
        super().__init__("An identical booking already exists")
        self.existing_booking_id = existing_booking_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "existing_booking_id": str(self.existing_booking_id)}


class DateConflict(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, conflicts: list):
        super().__init__("The selected dates overlap with an existing booking for this spot")
        self.conflicts = conflicts

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "conflicts": [
                {
                    "id": str(c.id),
                    "start_date": c.start_date.isoformat(),
                    "end_date": c.end_date.isoformat(),
                    "status": str(c.status),
                }
                for c in self.conflicts
            ],
        }


class InvalidTransition(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, current, target, reason: str | None = None):
        detail = f"Cannot transition from '{current}' to '{target}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
        self.current = current
        self.target = target


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


async def _booking_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, BookingError)
    if isinstance(exc, InvalidTransition):
        logger.error(
            "Invalid booking transition on {} {}: {}",
            request.method,
            request.url.path,
            exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    """Malformed requests get the same body as engine validation errors."""
    assert isinstance(exc, RequestValidationError)
    return await _booking_error_handler(
        request, BookingValidationError.from_pydantic(exc.errors())
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
