"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files: pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from spot_bookings.deps import (
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
from spot_bookings.errors import register_exception_handlers
from spot_bookings.routers.booking import router

from .factories import (
    InMemoryBookingRepository,
    make_admin,
    make_guest,
    make_spot_owner,
)


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _no_redis():
    """Slots cache calls are no-ops in tests; no Redis server is assumed."""
    base = "spot_bookings.routers.booking"
    with (
        patch(f"{base}.get_slots_cache", AsyncMock(return_value=None)),
        patch(f"{base}.set_slots_cache", AsyncMock()),
        patch(f"{base}.invalidate_slots_cache", AsyncMock()),
    ):
        yield


# ---------------------------------------------------------------------------
# Default no-op client mocks: prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_spots_client():
    mock = MagicMock()
    mock.get_spot = AsyncMock(return_value=None)
    return mock


def _noop_payments_client():
    mock = MagicMock()
    mock.refund_booking = AsyncMock(return_value=True)
    return mock


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(
    current_user,
    spots_client=None,
    payments_client=None,
    engine=None,
) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `spots_client` / `payments_client` / `engine` to inject custom
    collaborators. The default engine runs over an empty in-memory repository.
    """
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router)

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_write_booking,
        can_manage_booking,
        can_admin_delete_booking,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    sc = spots_client if spots_client is not None else _noop_spots_client()
    pc = payments_client if payments_client is not None else _noop_payments_client()
    eng = engine if engine is not None else BookingEngine(InMemoryBookingRepository())
    app.dependency_overrides[get_spots_client] = lambda: sc
    app.dependency_overrides[get_payments_client] = lambda: pc
    app.dependency_overrides[get_booking_engine] = lambda: eng

    return app


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def repo():
    return InMemoryBookingRepository()


@pytest.fixture()
def engine(repo):
    return BookingEngine(repo)


@pytest.fixture()
def guest_client():
    return TestClient(build_app(make_guest()), raise_server_exceptions=True)


@pytest.fixture()
def owner_client():
    return TestClient(build_app(make_spot_owner()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router)
    return app


@pytest.fixture()
def client_factory():
    def _make(
        current_user,
        spots_client=None,
        payments_client=None,
        engine=None,
    ) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                spots_client=spots_client,
                payments_client=payments_client,
                engine=engine,
            ),
            raise_server_exceptions=True,
        )

    return _make
