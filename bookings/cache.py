import json
from datetime import date
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from bookings.settings import REDIS_URL

_redis: Redis | None = None
SLOTS_TTL = 60  # 1 minute


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _slots_key(provider_id: UUID, day: date) -> str:
    return f"slots:{provider_id}:{day.isoformat()}"


async def get_slots_cache(provider_id: UUID, day: date) -> list | None:
    try:
        data = await get_redis().get(_slots_key(provider_id, day))
        return json.loads(data) if data else None
    except Exception:
        logger.warning("Redis get failed — skipping slots cache", exc_info=True)
        return None


async def set_slots_cache(provider_id: UUID, day: date, slots: list) -> None:
    try:
        await get_redis().setex(
            _slots_key(provider_id, day), SLOTS_TTL, json.dumps(slots)
        )
    except Exception:
        logger.warning("Redis set failed — skipping slots cache", exc_info=True)


async def invalidate_slots_cache(provider_id: UUID, day: date) -> None:
    try:
        await get_redis().delete(_slots_key(provider_id, day))
    except Exception:
        logger.warning("Redis invalidate failed for slots cache", exc_info=True)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
