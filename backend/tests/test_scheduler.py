"""
Scheduled settlement: Redis work queue and scheduler ticks.
"""

import pytest
from datetime import datetime

from backend.coopfare.core.config import settings
from backend.coopfare.domain.settlement import controller
from backend.coopfare.models.settlement_enums import SettlementStatus
from backend.coopfare.services import period_queue
from backend.coopfare.services.scheduler import enqueue_due_periods, process_job, run_scheduler_tick

APRIL = datetime(2024, 4, 10, 3, 0)


@pytest.mark.asyncio
async def test_enqueue_is_deduplicated(mock_redis):
    assert await period_queue.enqueue_period(7, "2024-03") is True
    assert await period_queue.enqueue_period(7, "2024-03") is False
    assert mock_redis.lists[settings.settlement_queue_key] == ["7:2024-03"]

    assert await period_queue.pop_period() == (7, "2024-03")
    assert await period_queue.pop_period() is None

    await period_queue.release_claim(7, "2024-03")
    assert await period_queue.enqueue_period(7, "2024-03") is True


@pytest.mark.asyncio
async def test_due_periods_skip_disabled_tenants(db_session, factory, mock_redis):
    await factory.dividend_settings(7)
    await factory.dividend_settings(8, enabled=False)

    assert await enqueue_due_periods(db_session, now=APRIL) == 1
    assert mock_redis.lists[settings.settlement_queue_key] == ["7:2024-03"]


@pytest.mark.asyncio
async def test_tick_settles_previous_period_once(db_session, factory, session_factory, mock_redis):
    await factory.cooperative(7)

    settled = await run_scheduler_tick(session_factory, now=APRIL)
    assert [(s.tenant_id, s.period_id, s.status) for s in settled] == [(7, "2024-03", SettlementStatus.SETTLED)]
    assert mock_redis.store == {}

    # Settled periods are not queued again
    assert await run_scheduler_tick(session_factory, now=APRIL) == []

    settlement = await controller.get_settlement_status(db_session, 7, "2024-03")
    assert settlement.attempts == 1


@pytest.mark.asyncio
async def test_failed_job_is_logged_and_claim_released(session_factory, mock_redis):
    await period_queue.enqueue_period(9, "2024-03")

    # Tenant 9 has no dividend schedule
    assert await process_job(9, "2024-03", session_factory) is None
    assert mock_redis.store == {}
