"""
Fixed-window rate limiting middleware.

One middleware covers every limiter the service needs; behaviour is set by
`window_ms`, `max_requests`, `key_source` and `skip_predicate`. Counters live
behind `CounterStore` so a multi-instance deployment can share them in Redis.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

KeySource = Callable[[Request], str]
SkipPredicate = Callable[[Request], bool]


class CounterStore(Protocol):
    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        """Count one request for `key`; return (count in window, ms until reset)."""
        ...


class InMemoryCounterStore:
    """Process-local counters. Not shared between workers."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        now = self._clock() * 1000
        async with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_ms
                self._prune(now)
            count += 1
            self._windows[key] = (count, reset_at)
        return count, int(reset_at - now)

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if reset_at <= now]
        for k in expired:
            del self._windows[k]


class RedisCounterStore:
    """Counters shared across instances through Redis INCR + PEXPIRE."""

    def __init__(self, redis: Redis, prefix: str = "ratelimit"):
        self._redis = redis
        self._prefix = prefix

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        redis_key = f"{self._prefix}:{key}"
        count = await self._redis.incr(redis_key)
        if count == 1:
            await self._redis.pexpire(redis_key, window_ms)
            return count, window_ms
        ttl = await self._redis.pttl(redis_key)
        if ttl < 0:
            # Key lost its expiry (e.g. crash between INCR and PEXPIRE).
            await self._redis.pexpire(redis_key, window_ms)
            ttl = window_ms
        return count, ttl


def client_host(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def never_skip(request: Request) -> bool:
    return False


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        window_ms: int,
        max_requests: int,
        store: CounterStore | None = None,
        key_source: KeySource = client_host,
        skip_predicate: SkipPredicate = never_skip,
    ):
        super().__init__(app)
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.store = store if store is not None else InMemoryCounterStore()
        self.key_source = key_source
        self.skip_predicate = skip_predicate

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method == "OPTIONS" or self.skip_predicate(request):
            return await call_next(request)

        key = self.key_source(request)
        try:
            count, reset_ms = await self.store.hit(key, self.window_ms)
        except Exception:
            # Fail open.
            logger.warning("Rate limit store failed, letting request through", exc_info=True)
            return await call_next(request)

        remaining = max(self.max_requests - count, 0)
        if count > self.max_requests:
            logger.info("Rate limit exceeded for {} on {}", key, request.url.path)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Too many requests, please try again later."},
                headers={
                    "Retry-After": str(max(math.ceil(reset_ms / 1000), 1)),
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
