"""
Settlement scheduler.

Background loop started from the application lifespan when
`scheduler_enabled` is set. Each tick queues the most recently ended period
of every enabled tenant, then drains the queue, running each job in its own
session. Lost races and busy periods are skipped and retried next tick.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select

from backend.coopfare.core.config import settings
from backend.coopfare.core.exceptions import (
    AlreadyRunningError,
    AppException,
    DuplicateContributionError,
    PeriodAlreadySettledError,
)
from backend.coopfare.db.session import session_scope
from backend.coopfare.domain.settlement.controller import run_period
from backend.coopfare.domain.settlement.periods import previous_period
from backend.coopfare.domain.settlement.providers import TenantSettingsProvider
from backend.coopfare.models.period_settlement import PeriodSettlement
from backend.coopfare.models.settlement_enums import COMPLETED_STATUSES
from backend.coopfare.services import period_queue

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "scheduler"


async def enqueue_due_periods(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Queue the last fully ended period of each enabled tenant.

    Returns:
        Number of jobs queued
    """
    queued = 0
    for tenant in await TenantSettingsProvider().enabled_tenants(db):
        period = previous_period(tenant.frequency, now)

        result = await db.execute(
            select(PeriodSettlement.status).where(
                PeriodSettlement.tenant_id == tenant.tenant_id,
                PeriodSettlement.period_id == period.period_id,
            )
        )
        status = result.scalar_one_or_none()
        if status in COMPLETED_STATUSES:
            continue

        if await period_queue.enqueue_period(tenant.tenant_id, period.period_id):
            queued += 1
    return queued


async def process_job(
    tenant_id: int,
    period_id: str,
    session_factory: Optional[async_sessionmaker] = None
) -> Optional[PeriodSettlement]:
    """Run one queued period. Never raises for engine errors."""
    try:
        async with session_scope(session_factory) as db:
            return await run_period(db, tenant_id, period_id, actor=SCHEDULER_ACTOR)
    except PeriodAlreadySettledError:
        logger.debug("Period already settled", extra={"tenant_id": tenant_id, "period_id": period_id})
    except (AlreadyRunningError, DuplicateContributionError) as exc:
        logger.info(
            "Settlement skipped, retry next cycle",
            extra={"tenant_id": tenant_id, "period_id": period_id, "error_code": exc.error_code}
        )
    except AppException as exc:
        logger.error(
            "Scheduled settlement failed",
            extra={
                "tenant_id": tenant_id,
                "period_id": period_id,
                "error_code": exc.error_code,
                "error": exc.message,
            }
        )
    finally:
        await period_queue.release_claim(tenant_id, period_id)
    return None


async def run_scheduler_tick(
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None
) -> List[PeriodSettlement]:
    async with session_scope(session_factory) as db:
        queued = await enqueue_due_periods(db, now)
    if queued:
        logger.info("Settlement jobs queued", extra={"count": queued})

    settled = []
    while True:
        job = await period_queue.pop_period()
        if job is None:
            break
        tenant_id, period_id = job
        settlement = await process_job(tenant_id, period_id, session_factory)
        if settlement is not None:
            settled.append(settlement)
    return settled


async def scheduler_loop(stop_event: asyncio.Event, session_factory: Optional[async_sessionmaker] = None) -> None:
    logger.info("Settlement scheduler started", extra={"poll_seconds": settings.scheduler_poll_seconds})
    while not stop_event.is_set():
        try:
            await run_scheduler_tick(session_factory)
        except Exception:
            # Keep the loop alive; the next tick retries
            logger.exception("Settlement scheduler tick failed")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.scheduler_poll_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("Settlement scheduler stopped")
