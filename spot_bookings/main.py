import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from tortoise.contrib.fastapi import register_tortoise

from spot_bookings import settings
from spot_bookings.cache import get_redis
from spot_bookings.errors import register_exception_handlers
from spot_bookings.ratelimit import InMemoryCounterStore, RateLimitMiddleware, RedisCounterStore
from spot_bookings.routers.booking import router as booking_router


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def _skip_rate_limit(request: Request) -> bool:
    return request.url.path == "/health"


def create_app(*, with_db: bool = True) -> FastAPI:
    configure_logging()

    app = FastAPI(title="spot-bookings")

    store = (
        RedisCounterStore(get_redis())
        if settings.RATE_LIMIT_BACKEND == "redis"
        else InMemoryCounterStore()
    )
    app.add_middleware(
        RateLimitMiddleware,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        store=store,
        skip_predicate=_skip_rate_limit,
    )
    # Added last so it wraps the rate limiter and 429s still carry CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(booking_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    if with_db:
        register_tortoise(
            app,
            db_url=settings.db_url,
            modules={"models": ["spot_bookings.models"]},
            generate_schemas=settings.db_url.startswith("sqlite"),
        )

    logger.info("spot-bookings app created")
    return app


app = create_app()
