"""Process-wide async Redis connection."""
from __future__ import annotations

import redis.asyncio as aioredis

from services.shared.config import REDIS_URL

_redis: aioredis.Redis | None = None


def get_redis(url: str | None = None) -> aioredis.Redis:
    """Return the shared client, creating it on first use."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(url or REDIS_URL, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
