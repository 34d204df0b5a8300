# backend/leadrouter/redis_client.py
"""
Redis client for the duplicate lookup cache.

Disabled unless ENABLE_DUPLICATE_CACHE is set; callers treat a None client as
"no cache".
"""

import logging
from typing import Optional

import redis.asyncio as redis

from leadrouter.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client, created lazily (no connection until first command)."""
    global _redis_client

    if not settings.ENABLE_DUPLICATE_CACHE:
        return None

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        logger.info("Redis connection initialized for duplicate cache")

    return _redis_client


async def close_redis_client():
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
