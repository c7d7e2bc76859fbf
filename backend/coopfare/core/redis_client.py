"""
Redis client initialization.

Redis backs the settlement work queue: the scheduler pushes (tenant, period)
keys and workers pop them. The authoritative claim is the settlement row
lock in the database; Redis only dedupes triggers within a cycle.
"""

import redis.asyncio as redis
from backend.coopfare.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Looked up at call time so tests can swap the module-level client.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except redis.RedisError:
        return False
