"""Tests for the configurable rate limiting middleware and its counter stores."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from spot_bookings.ratelimit import (
    InMemoryCounterStore,
    RateLimitMiddleware,
    RedisCounterStore,
    client_host,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _limited_app(**options) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, **options)

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


@pytest.mark.anyio
class TestInMemoryCounterStore:
    async def test_counts_within_window(self):
        store = InMemoryCounterStore(clock=FakeClock())
        assert (await store.hit("a", 1000))[0] == 1
        assert (await store.hit("a", 1000))[0] == 2

    async def test_keys_are_independent(self):
        store = InMemoryCounterStore(clock=FakeClock())
        await store.hit("a", 1000)
        assert (await store.hit("b", 1000))[0] == 1

    async def test_window_resets_after_expiry(self):
        clock = FakeClock()
        store = InMemoryCounterStore(clock=clock)
        await store.hit("a", 1000)
        await store.hit("a", 1000)
        clock.now += 1.0
        count, reset_ms = await store.hit("a", 1000)
        assert count == 1
        assert reset_ms == 1000

    async def test_reset_ms_counts_down(self):
        clock = FakeClock()
        store = InMemoryCounterStore(clock=clock)
        await store.hit("a", 1000)
        clock.now += 0.25
        _, reset_ms = await store.hit("a", 1000)
        assert reset_ms == 750


@pytest.mark.anyio
class TestRedisCounterStore:
    async def test_first_hit_sets_expiry(self):
        redis = AsyncMock()
        redis.incr.return_value = 1
        store = RedisCounterStore(redis)
        assert await store.hit("1.2.3.4", 60_000) == (1, 60_000)
        redis.incr.assert_awaited_once_with("ratelimit:1.2.3.4")
        redis.pexpire.assert_awaited_once_with("ratelimit:1.2.3.4", 60_000)

    async def test_later_hit_reads_ttl(self):
        redis = AsyncMock()
        redis.incr.return_value = 3
        redis.pttl.return_value = 500
        store = RedisCounterStore(redis, prefix="rl")
        assert await store.hit("k", 60_000) == (3, 500)
        redis.pexpire.assert_not_awaited()

    async def test_missing_expiry_is_restored(self):
        redis = AsyncMock()
        redis.incr.return_value = 2
        redis.pttl.return_value = -1
        store = RedisCounterStore(redis)
        assert await store.hit("k", 60_000) == (2, 60_000)
        redis.pexpire.assert_awaited_once_with("ratelimit:k", 60_000)


class TestRateLimitMiddleware:
    def test_allows_up_to_limit_then_429(self):
        app = _limited_app(window_ms=60_000, max_requests=2)
        with TestClient(app) as c:
            first = c.get("/ping")
            second = c.get("/ping")
            third = c.get("/ping")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert third.status_code == 429
        assert third.headers["X-RateLimit-Remaining"] == "0"
        assert int(third.headers["Retry-After"]) >= 1
        assert "Too many requests" in third.json()["detail"]

    def test_skip_predicate_bypasses_counting(self):
        app = _limited_app(
            window_ms=60_000,
            max_requests=1,
            skip_predicate=lambda request: request.url.path == "/health",
        )
        with TestClient(app) as c:
            for _ in range(3):
                assert c.get("/health").status_code == 200
            assert c.get("/ping").status_code == 200
            assert c.get("/ping").status_code == 429

    def test_key_source_separates_clients(self):
        app = _limited_app(
            window_ms=60_000,
            max_requests=1,
            key_source=lambda request: request.headers.get("X-User-Id", "anon"),
        )
        with TestClient(app) as c:
            assert c.get("/ping", headers={"X-User-Id": "a"}).status_code == 200
            assert c.get("/ping", headers={"X-User-Id": "b"}).status_code == 200
            assert c.get("/ping", headers={"X-User-Id": "a"}).status_code == 429

    def test_store_failure_lets_requests_through(self):
        store = AsyncMock()
        store.hit.side_effect = ConnectionError("redis down")
        app = _limited_app(window_ms=60_000, max_requests=1, store=store)
        with TestClient(app) as c:
            assert c.get("/ping").status_code == 200
            resp = c.get("/ping")
        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers

    def test_window_resets_with_shared_clock(self):
        clock = FakeClock()
        store = InMemoryCounterStore(clock=clock)
        app = _limited_app(window_ms=1000, max_requests=1, store=store)
        with TestClient(app) as c:
            assert c.get("/ping").status_code == 200
            assert c.get("/ping").status_code == 429
            clock.now += 2
            assert c.get("/ping").status_code == 200


class TestClientHost:
    def test_prefers_first_forwarded_for_address(self):
        app = _limited_app(window_ms=60_000, max_requests=1)
        with TestClient(app) as c:
            first = c.get("/ping", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
            other = c.get("/ping", headers={"X-Forwarded-For": "10.0.0.2"})
            again = c.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"})
        assert first.status_code == 200
        assert other.status_code == 200
        assert again.status_code == 429

    def test_falls_back_to_peer_address(self):
        class _Req:
            headers: dict = {}

            class client:
                host = "192.0.2.7"

        assert client_host(_Req()) == "192.0.2.7"
