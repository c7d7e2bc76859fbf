"""
Period locking service.

Guards a (tenant, period) settlement so at most one run advances it.
The lock lives on the period_settlements row itself: acquiring is a
conditional UPDATE that only succeeds while locked_by is NULL, so two
workers racing for the same period cannot both win.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update

from backend.coopfare.core.config import settings
from backend.coopfare.models.period_settlement import PeriodSettlement


async def acquire_period_lock(
    db: AsyncSession,
    settlement_id: int,
    owner: str
) -> bool:
    """
    Try to take the lock for a settlement row. Never waits, never steals.

    Args:
        db: Database session (caller commits)
        settlement_id: Settlement row to lock
        owner: Identifier of the run taking the lock

    Returns:
        True if this call took the lock
    """
    result = await db.execute(
        update(PeriodSettlement)
        .where(
            PeriodSettlement.id == settlement_id,
            PeriodSettlement.locked_by.is_(None)
        )
        .values(locked_by=owner, locked_at=datetime.utcnow())
    )
    return result.rowcount == 1


async def release_period_lock(
    db: AsyncSession,
    settlement_id: int,
    owner: str
) -> bool:
    """
    Release a lock held by `owner`.

    Returns:
        True if released, False if `owner` did not hold it
    """
    result = await db.execute(
        update(PeriodSettlement)
        .where(
            PeriodSettlement.id == settlement_id,
            PeriodSettlement.locked_by == owner
        )
        .values(locked_by=None, locked_at=None)
    )
    return result.rowcount == 1


def is_lock_stale(
    settlement: PeriodSettlement,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[int] = None
) -> bool:
    """
    A held lock older than the TTL belongs to a run that died.
    """
    if settlement.locked_by is None or settlement.locked_at is None:
        return False

    now = now or datetime.utcnow()
    ttl = ttl_seconds if ttl_seconds is not None else settings.settlement_lock_ttl_seconds
    locked_at = settlement.locked_at.replace(tzinfo=None)
    return now - locked_at > timedelta(seconds=ttl)
