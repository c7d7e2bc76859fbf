"""
Period settlement runs: state machine, locking, recovery and idempotency.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import select, func, update

from backend.coopfare.core.exceptions import (
    AlreadyRunningError,
    DuplicateContributionError,
    InvalidPeriodError,
    PeriodAlreadySettledError,
    ResourceNotFoundError,
    SettlementFailedError,
    SettlementNotCancellableError,
)
from backend.coopfare.domain.settlement import controller, distribution, ledger
from backend.coopfare.domain.settlement.periods import parse_period
from backend.coopfare.domain.settlement.providers import MemberEligibilityProvider, TripRecordProvider
from backend.coopfare.models.audit_log import AuditLog
from backend.coopfare.models.commonwealth import CommonwealthContribution, CommonwealthDistribution
from backend.coopfare.models.enums import MemberType, SettlementFrequency
from backend.coopfare.models.flagged_trip import FlaggedTrip
from backend.coopfare.models.period_settlement import PeriodSettlement
from backend.coopfare.models.settlement_enums import DividendStatus, SettlementStatus
from backend.coopfare.models.trip_enums import TripStatus

TENANT = 7
MARCH = "2024-03"


async def count(db, column):
    result = await db.execute(select(func.count(column)))
    return result.scalar_one()


async def fund_balance(db, tenant_id):
    fund = await ledger.get_fund(db, tenant_id)
    return await ledger.get_fund_balance(db, fund.id)


async def stuck_settlement(db, period_id, status, locked_by="worker-a", locked_at=None, frequency=SettlementFrequency.MONTHLY):
    """A settlement row left behind by another run."""
    period = parse_period(period_id)
    settlement = PeriodSettlement(
        tenant_id=TENANT,
        period_id=period_id,
        frequency=frequency,
        period_start=period.start,
        period_end=period.end,
        status=status,
        locked_by=locked_by,
        locked_at=locked_at or datetime.utcnow(),
        attempts=1,
    )
    db.add(settlement)
    await db.commit()
    return settlement


@pytest.mark.asyncio
async def test_full_run_settles_period(db_session, factory):
    await factory.cooperative(TENANT)
    # Outside the half-open month and not finalized: both ignored
    await factory.trip(TENANT, completed_at=datetime(2024, 4, 1))
    await factory.trip(TENANT, completed_at=None, status=TripStatus.PLANNED)

    settlement = await controller.run_period(db_session, TENANT, MARCH, actor="ops")

    assert settlement.status == SettlementStatus.SETTLED
    assert settlement.trip_count == 4
    assert settlement.revenue == Decimal("1200.00")
    assert settlement.costs == Decimal("200.00")
    assert settlement.surplus == Decimal("1000.00")
    assert settlement.reserves_amount == Decimal("200.00")
    assert settlement.business_amount == Decimal("300.00")
    assert settlement.dividend_pool == Decimal("500.00")
    assert settlement.distributed_amount == Decimal("500.00")
    assert settlement.retained_amount == Decimal("0.00")
    assert settlement.contribution_id is not None
    assert settlement.locked_by is None
    assert settlement.attempts == 1

    dividends = await distribution.list_period_dividends(db_session, TENANT, MARCH)
    assert [(d.member_id, d.amount) for d in dividends] == [
        (1, Decimal("166.68")),
        (2, Decimal("166.66")),
        (3, Decimal("166.66")),
    ]
    assert all(d.status == DividendStatus.PENDING for d in dividends)

    assert await fund_balance(db_session, TENANT) == Decimal("500.00")


@pytest.mark.asyncio
async def test_rerun_of_settled_period_changes_nothing(db_session, factory):
    await factory.cooperative(TENANT)
    await controller.run_period(db_session, TENANT, MARCH)

    contributions = await count(db_session, CommonwealthContribution.id)
    audit_entries = await count(db_session, AuditLog.id)

    with pytest.raises(DuplicateContributionError) as exc_info:
        await controller.run_period(db_session, TENANT, MARCH)
    assert isinstance(exc_info.value, PeriodAlreadySettledError)

    assert await count(db_session, CommonwealthContribution.id) == contributions
    assert await count(db_session, AuditLog.id) == audit_entries
    assert await fund_balance(db_session, TENANT) == Decimal("500.00")


@pytest.mark.asyncio
async def test_negative_surplus_closes_without_ledger_write(db_session, factory):
    await factory.cooperative(TENANT)
    await factory.cost(TENANT, "5000.00", datetime(2024, 3, 20))

    settlement = await controller.run_period(db_session, TENANT, MARCH)

    assert settlement.status == SettlementStatus.NO_SURPLUS
    assert settlement.surplus == Decimal("-4000.00")
    assert settlement.dividend_pool == Decimal("0.00")
    assert settlement.contribution_id is None
    assert settlement.locked_by is None
    assert await count(db_session, CommonwealthContribution.id) == 0

    with pytest.raises(PeriodAlreadySettledError):
        await controller.run_period(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_unpriceable_trip_is_flagged_and_run_continues(db_session, factory):
    await factory.cooperative(TENANT)
    broken = await factory.trip(TENANT, completed_at=datetime(2024, 3, 12), passenger_count=0)

    settlement = await controller.run_period(db_session, TENANT, MARCH)

    assert settlement.status == SettlementStatus.SETTLED
    assert settlement.flagged_trip_count == 1
    assert settlement.trip_count == 4

    flagged = (await db_session.execute(select(FlaggedTrip))).scalars().all()
    assert [(f.trip_id, f.error_code) for f in flagged] == [(broken.id, "ERR_INPUT_001")]


@pytest.mark.asyncio
async def test_auto_distribute_pays_members_from_fund(db_session, factory):
    await factory.cooperative(TENANT, auto_distribute=True)

    await controller.run_period(db_session, TENANT, MARCH)

    dividends = await distribution.list_period_dividends(db_session, TENANT, MARCH)
    assert all(d.status == DividendStatus.PAID for d in dividends)
    assert all(d.distribution_id is not None for d in dividends)
    assert await count(db_session, CommonwealthDistribution.id) == 3
    assert await fund_balance(db_session, TENANT) == Decimal("0.00")


@pytest.mark.asyncio
async def test_mark_paid_is_repeatable(db_session, factory):
    await factory.cooperative(TENANT)
    await controller.run_period(db_session, TENANT, MARCH)

    paid = await distribution.mark_dividends_paid(db_session, TENANT, MARCH)
    await db_session.commit()
    assert len(paid) == 3
    assert await fund_balance(db_session, TENANT) == Decimal("0.00")

    assert await distribution.mark_dividends_paid(db_session, TENANT, MARCH) == []


@pytest.mark.asyncio
async def test_mark_paid_skips_dividends_taken_by_concurrent_call(db_session, factory, session_factory, monkeypatch):
    await factory.cooperative(TENANT)
    await controller.run_period(db_session, TENANT, MARCH)
    lock_fund = ledger.lock_fund

    async def paid_elsewhere_first(db, tenant_id):
        monkeypatch.setattr(ledger, "lock_fund", lock_fund)
        async with session_factory() as other:
            await distribution.mark_dividends_paid(other, tenant_id, MARCH)
            await other.commit()
        return await lock_fund(db, tenant_id)

    monkeypatch.setattr(ledger, "lock_fund", paid_elsewhere_first)

    assert await distribution.mark_dividends_paid(db_session, TENANT, MARCH) == []
    await db_session.commit()

    assert await count(db_session, CommonwealthDistribution.id) == 3
    assert await fund_balance(db_session, TENANT) == Decimal("0.00")


@pytest.mark.asyncio
async def test_member_below_a_cent_gets_zero_dividend(db_session, factory):
    await factory.cooperative(TENANT)
    await factory.cost(TENANT, "999.90", datetime(2024, 3, 20))
    await factory.member(TENANT, MemberType.CUSTOMER, 4, MARCH, weight="0.0001")

    settlement = await controller.run_period(db_session, TENANT, MARCH)
    assert settlement.dividend_pool == Decimal("0.05")

    dividends = await distribution.list_period_dividends(db_session, TENANT, MARCH)
    assert [(d.member_id, d.amount) for d in dividends] == [
        (1, Decimal("0.03")),
        (2, Decimal("0.01")),
        (3, Decimal("0.01")),
        (4, Decimal("0.00")),
    ]

    paid = await distribution.mark_dividends_paid(db_session, TENANT, MARCH)
    await db_session.commit()
    assert len(paid) == 4
    assert paid[-1].member_id == 4
    assert paid[-1].distribution_id is None
    assert await count(db_session, CommonwealthDistribution.id) == 3
    assert await fund_balance(db_session, TENANT) == Decimal("0.00")


@pytest.mark.asyncio
async def test_mark_paid_requires_settled_period(db_session):
    with pytest.raises(ResourceNotFoundError):
        await distribution.mark_dividends_paid(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_no_eligible_members_keeps_pool_in_fund(db_session, factory):
    await factory.fare_settings(TENANT)
    await factory.tiers(TENANT)
    await factory.dividend_settings(TENANT)
    await factory.trip(TENANT, completed_at=datetime(2024, 3, 3))

    settlement = await controller.run_period(db_session, TENANT, MARCH)

    assert settlement.status == SettlementStatus.SETTLED
    assert settlement.dividend_pool == Decimal("150.00")
    assert settlement.distributed_amount == Decimal("0.00")
    assert settlement.retained_amount == Decimal("150.00")
    assert await fund_balance(db_session, TENANT) == Decimal("150.00")


@pytest.mark.asyncio
async def test_held_lock_rejects_second_run(db_session, factory):
    await factory.cooperative(TENANT)
    await stuck_settlement(db_session, MARCH, SettlementStatus.AGGREGATING)

    with pytest.raises(AlreadyRunningError) as exc_info:
        await controller.run_period(db_session, TENANT, MARCH)
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_fresh_lock_cannot_be_released(db_session, factory):
    await factory.cooperative(TENANT)
    await stuck_settlement(db_session, MARCH, SettlementStatus.AGGREGATING)

    with pytest.raises(AlreadyRunningError):
        await controller.release_stale_lock(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_stale_lock_release_then_rerun(db_session, factory):
    await factory.cooperative(TENANT)
    locked_at = datetime(2024, 4, 1, 2, 0)
    await stuck_settlement(db_session, MARCH, SettlementStatus.AGGREGATING, locked_at=locked_at)

    released = await controller.release_stale_lock(
        db_session, TENANT, MARCH, actor="ops", now=locked_at + timedelta(hours=1)
    )
    assert released.status == SettlementStatus.FAILED
    assert released.failure_reason == "Lock expired"
    assert released.locked_by is None

    settlement = await controller.run_period(db_session, TENANT, MARCH)
    assert settlement.status == SettlementStatus.SETTLED
    assert settlement.attempts == 2
    assert await fund_balance(db_session, TENANT) == Decimal("500.00")


class FailingMembers(MemberEligibilityProvider):
    async def eligible_members(self, db, tenant_id, period_id, member_types):
        raise RuntimeError("member directory unavailable")


@pytest.mark.asyncio
async def test_failure_after_contribution_resumes_without_second_contribution(db_session, factory):
    await factory.cooperative(TENANT)

    with pytest.raises(SettlementFailedError) as exc_info:
        await controller.run_period(db_session, TENANT, MARCH, members=FailingMembers())
    assert exc_info.value.message == f"{controller.FAILED_AFTER_LEDGER_WRITE}: member directory unavailable"
    assert isinstance(exc_info.value.__cause__, RuntimeError)

    failed = await controller.get_settlement_status(db_session, TENANT, MARCH)
    assert failed.status == SettlementStatus.FAILED
    assert failed.failure_reason.startswith(controller.FAILED_AFTER_LEDGER_WRITE)
    assert failed.contribution_id is not None
    assert failed.locked_by is None
    assert await fund_balance(db_session, TENANT) == Decimal("500.00")

    settlement = await controller.run_period(db_session, TENANT, MARCH)

    assert settlement.status == SettlementStatus.SETTLED
    assert settlement.failure_reason is None
    assert await count(db_session, CommonwealthContribution.id) == 1
    assert len(await distribution.list_period_dividends(db_session, TENANT, MARCH)) == 3


class CancellingTrips(TripRecordProvider):
    """Cancels the run from the outside while it is aggregating."""

    async def total_costs(self, db, tenant_id, period):
        await controller.cancel_settlement(db, tenant_id, period.period_id, actor="ops")
        return await super().total_costs(db, tenant_id, period)


@pytest.mark.asyncio
async def test_cancel_mid_run_stops_before_ledger_write(db_session, factory):
    await factory.cooperative(TENANT)

    settlement = await controller.run_period(db_session, TENANT, MARCH, trips=CancellingTrips())

    assert settlement.status == SettlementStatus.CANCELLED
    assert settlement.contribution_id is None
    assert await count(db_session, CommonwealthContribution.id) == 0

    rerun = await controller.run_period(db_session, TENANT, MARCH)
    assert rerun.status == SettlementStatus.SETTLED


class ReclaimedTrips(TripRecordProvider):
    """Cancels the run and lets a newer run claim the row while aggregating."""

    async def total_costs(self, db, tenant_id, period):
        await controller.cancel_settlement(db, tenant_id, period.period_id, actor="ops")
        await db.execute(
            update(PeriodSettlement)
            .where(PeriodSettlement.tenant_id == tenant_id, PeriodSettlement.period_id == period.period_id)
            .values(status=SettlementStatus.AGGREGATING, locked_by="newer-run", locked_at=datetime.utcnow())
        )
        await db.commit()
        return await super().total_costs(db, tenant_id, period)


@pytest.mark.asyncio
async def test_superseded_run_does_not_write_into_newer_run(db_session, factory):
    await factory.cooperative(TENANT)

    settlement = await controller.run_period(db_session, TENANT, MARCH, trips=ReclaimedTrips())

    assert settlement.status == SettlementStatus.AGGREGATING
    assert settlement.locked_by == "newer-run"
    assert settlement.revenue is None
    assert settlement.dividend_pool is None
    assert await count(db_session, CommonwealthContribution.id) == 0


@pytest.mark.asyncio
async def test_month_settled_between_quarter_check_and_claim(db_session, factory, session_factory, monkeypatch):
    await factory.cooperative(TENANT)
    create_row = controller._get_or_create_settlement

    async def month_settles_first(db, tenant_id, period):
        if period.period_id == "2024-Q1":
            async with session_factory() as other:
                await controller.run_period(other, tenant_id, MARCH)
        return await create_row(db, tenant_id, period)

    monkeypatch.setattr(controller, "_get_or_create_settlement", month_settles_first)

    with pytest.raises(DuplicateContributionError):
        await controller.run_period(db_session, TENANT, "2024-Q1")

    quarter = await controller.get_settlement_status(db_session, TENANT, "2024-Q1")
    assert quarter.status == SettlementStatus.OPEN
    assert quarter.locked_by is None

    contributions = await db_session.execute(select(CommonwealthContribution.period_id))
    assert contributions.scalars().all() == [MARCH]
    assert await fund_balance(db_session, TENANT) == Decimal("500.00")


@pytest.mark.asyncio
async def test_cancel_allocated_run(db_session, factory):
    await factory.cooperative(TENANT)
    await stuck_settlement(db_session, MARCH, SettlementStatus.ALLOCATED)

    cancelled = await controller.cancel_settlement(db_session, TENANT, MARCH, actor="ops")

    assert cancelled.status == SettlementStatus.CANCELLED
    assert cancelled.locked_by is None
    assert cancelled.failure_reason == "Cancelled by ops"


@pytest.mark.asyncio
async def test_settled_period_cannot_be_cancelled(db_session, factory):
    await factory.cooperative(TENANT)
    await controller.run_period(db_session, TENANT, MARCH)

    with pytest.raises(SettlementNotCancellableError):
        await controller.cancel_settlement(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_quarter_overlapping_settled_month_rejected(db_session, factory):
    await factory.cooperative(TENANT)
    await controller.run_period(db_session, TENANT, MARCH)

    with pytest.raises(DuplicateContributionError):
        await controller.run_period(db_session, TENANT, "2024-Q1")

    with pytest.raises(ResourceNotFoundError):
        await controller.get_settlement_status(db_session, TENANT, "2024-Q1")


@pytest.mark.asyncio
async def test_month_inside_running_quarter_rejected(db_session, factory):
    await factory.cooperative(TENANT)
    await stuck_settlement(db_session, "2024-Q1", SettlementStatus.DISTRIBUTING, frequency=SettlementFrequency.QUARTERLY)

    with pytest.raises(AlreadyRunningError):
        await controller.run_period(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_missing_dividend_settings(db_session):
    with pytest.raises(ResourceNotFoundError):
        await controller.run_period(db_session, TENANT, MARCH)


@pytest.mark.asyncio
async def test_malformed_period(db_session):
    with pytest.raises(InvalidPeriodError):
        await controller.run_period(db_session, TENANT, "March 2024")
