"""
Settlement work queue using Redis.

The scheduler pushes "tenant:period" keys; workers pop and run them.
A short-lived claim key (SET NX EX) keeps the same period from being queued
twice while it is waiting or running. The claim only dedupes triggers: the
settlement row lock in the database decides who actually runs a period.
"""

import logging
from typing import Optional, Tuple

import redis.asyncio as redis

from backend.coopfare.core.config import settings
from backend.coopfare.core.redis_client import get_redis

logger = logging.getLogger(__name__)

# Redis key prefix for per-period claims
CLAIM_PREFIX = "coopfare:settlement_claim:"


def _job_key(tenant_id: int, period_id: str) -> str:
    return f"{tenant_id}:{period_id}"


def _parse_job(raw) -> Tuple[int, str]:
    if isinstance(raw, bytes):
        raw = raw.decode()
    tenant_id, period_id = raw.split(":", 1)
    return int(tenant_id), period_id


async def enqueue_period(tenant_id: int, period_id: str) -> bool:
    """
    Queue a settlement run unless one is already queued or running.

    Returns:
        True if queued, False if already claimed or Redis is unavailable
    """
    client = await get_redis()
    job = _job_key(tenant_id, period_id)
    try:
        claimed = await client.set(
            f"{CLAIM_PREFIX}{job}",
            "1",
            nx=True,
            ex=settings.settlement_claim_ttl_seconds,
        )
        if not claimed:
            return False
        await client.rpush(settings.settlement_queue_key, job)
        return True
    except redis.RedisError:
        logger.warning("Settlement queue unavailable, trigger skipped", extra={"job": job}, exc_info=True)
        return False


async def pop_period() -> Optional[Tuple[int, str]]:
    """
    Next queued (tenant_id, period_id), or None when the queue is empty.
    """
    client = await get_redis()
    raw = await client.lpop(settings.settlement_queue_key)
    if raw is None:
        return None
    return _parse_job(raw)


async def release_claim(tenant_id: int, period_id: str) -> None:
    """
    Drop the claim once a run finished, so a later cycle may trigger again.
    """
    client = await get_redis()
    await client.delete(f"{CLAIM_PREFIX}{_job_key(tenant_id, period_id)}")
