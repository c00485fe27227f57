from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from spot_bookings import settings
from spot_bookings.crud import booking_crud
from spot_bookings.engine import BookingEngine
from spot_bookings.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin:scopes" in self.scopes

    def has_any(self, *scopes: str) -> bool:
        return any(s in self.scopes for s in scopes)


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by the gateway after forwardAuth validation.
    The token has already been verified upstream; we trust these headers.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_manage_booking = require_scopes(BookingScope.MANAGE)
can_admin_delete_booking = require_scopes(BookingScope.ADMIN_DELETE)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read bookings (guest/admin) OR manage bookings (owner).
    - bookings:read   → guest sees own bookings
    - bookings:manage → spot owner sees bookings for their spots
    - admin:bookings* → admin sees all
    """
    if not current_user.has_any(
        BookingScope.READ,
        BookingScope.MANAGE,
        BookingScope.ADMIN,
        BookingScope.ADMIN_READ,
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (guests), "
                f"'{BookingScope.MANAGE}' (spot owners), "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# Booking engine
# ---------------------------------------------------------------------------

_engine = BookingEngine(booking_crud)


def get_booking_engine() -> BookingEngine:
    return _engine


# ---------------------------------------------------------------------------
# Upstream service clients
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def _http_client(base_url: str) -> httpx.AsyncClient:
    """One pooled client per upstream service."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class _ServiceClient:
    """Forwards the caller's gateway headers so the upstream auth deps work normally."""

    service_name: str
    base_url: str

    @property
    def _client(self) -> httpx.AsyncClient:
        return _http_client(self.base_url)

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Scopes": " ".join(user.scopes),
        }


class SpotsClient(_ServiceClient):
    service_name = "spots-ms"
    base_url = settings.spots_ms_url

    async def get_spot(self, spot_id: UUID, user: CurrentUser) -> dict | None:
        """Returns the camping spot dict, or None on 404. Other failures become 502."""
        try:
            resp = await self._client.get(
                f"/camping-spots/{spot_id}", headers=self._headers(user)
            )
        except httpx.RequestError as exc:
            logger.warning("{} unreachable: {}", self.service_name, exc)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"{self.service_name} is unreachable",
            ) from None
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"{self.service_name} returned {resp.status_code}",
            )
        return resp.json()


class PaymentsClient(_ServiceClient):
    """
    Asks payments-ms to refund a booking's payment when the spot owner or an
    admin cancels a confirmed booking. A failed refund never blocks the
    cancellation; it is logged and reported as False.
    """

    service_name = "payments-ms"
    base_url = settings.payments_ms_url

    async def refund_booking(self, booking_id: UUID, caller: CurrentUser) -> bool:
        try:
            resp = await self._client.post(
                f"/payments/booking/{booking_id}/refund",
                headers=self._headers(caller),
            )
        except httpx.RequestError:
            logger.warning("Refund request failed for booking {}", booking_id, exc_info=True)
            return False
        if resp.status_code >= 400:
            logger.warning(
                "{} returned {} refunding booking {}",
                self.service_name,
                resp.status_code,
                booking_id,
            )
            return False
        return True


_spots_client = SpotsClient()
_payments_client = PaymentsClient()


def get_spots_client() -> SpotsClient:
    return _spots_client


def get_payments_client() -> PaymentsClient:
    return _payments_client
