"""
Redis cache of a spot's held date ranges, read by the public slots endpoint.

Every booking write for a spot drops its entry. Redis being down only costs
a database round trip, so failures are logged and ignored.
"""

from uuid import UUID

from loguru import logger
from pydantic import TypeAdapter
from redis.asyncio import Redis

from spot_bookings import settings
from spot_bookings.schemas import BookingSlot

_redis: Redis | None = None
_slots_adapter = TypeAdapter(list[BookingSlot])


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


def _slots_key(spot_id: UUID) -> str:
    return f"spot-slots:{spot_id}"


async def get_slots_cache(spot_id: UUID) -> list[BookingSlot] | None:
    try:
        data = await get_redis().get(_slots_key(spot_id))
        return _slots_adapter.validate_json(data) if data else None
    except Exception:
        logger.warning("Slots cache read failed for spot {}", spot_id, exc_info=True)
        return None


async def set_slots_cache(spot_id: UUID, slots: list) -> None:
    """Cache `slots` (BookingSlot models or plain dicts) for SLOTS_CACHE_TTL seconds."""
    payload = _slots_adapter.dump_json(
        _slots_adapter.validate_python(slots, from_attributes=True)
    )
    try:
        await get_redis().setex(_slots_key(spot_id), settings.SLOTS_CACHE_TTL, payload)
    except Exception:
        logger.warning("Slots cache write failed for spot {}", spot_id, exc_info=True)


async def invalidate_slots_cache(spot_id: UUID) -> None:
    try:
        await get_redis().delete(_slots_key(spot_id))
    except Exception:
        # Stale entry lives until its TTL runs out.
        logger.warning("Slots cache invalidate failed for spot {}", spot_id, exc_info=True)
