"""
Period Schedule Controller.

Drives one (tenant, period) settlement through
OPEN -> AGGREGATING -> ALLOCATED -> DISTRIBUTING -> SETTLED
(or NO_SURPLUS / FAILED / CANCELLED).

Every state boundary is a commit:
1. lock + AGGREGATING
2. totals + pools + ALLOCATED
3. contribution + DISTRIBUTING
4. member dividends + distributions + SETTLED + lock release

Status moves are conditional UPDATEs on the expected current status, so a
cancellation that lands between two steps stops the run instead of being
overwritten by it.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from backend.coopfare.core.exceptions import (
    AlreadyRunningError,
    DuplicateContributionError,
    InvalidCostInputError,
    NoEligibleMembersError,
    PeriodAlreadySettledError,
    ResourceNotFoundError,
    SettlementFailedError,
    SettlementNotCancellableError,
)
from backend.coopfare.domain.fares.fare_calculator import FareCalculator
from backend.coopfare.domain.money import ZERO, to_money
from backend.coopfare.domain.settlement import distribution, ledger
from backend.coopfare.domain.settlement.aggregator import aggregate_period
from backend.coopfare.domain.settlement.allocator import allocate_surplus
from backend.coopfare.domain.settlement.periods import Period, parse_period, periods_overlap
from backend.coopfare.domain.settlement.providers import (
    MemberEligibilityProvider,
    TenantSettingsProvider,
    TripRecordProvider,
)
from backend.coopfare.domain.snapshots import DividendSettingsSnapshot
from backend.coopfare.models.flagged_trip import FlaggedTrip
from backend.coopfare.models.period_settlement import PeriodSettlement
from backend.coopfare.models.settlement_enums import (
    CANCELLABLE_STATUSES,
    COMPLETED_STATUSES,
    SettlementStatus,
)
from backend.coopfare.services import period_lock
from backend.coopfare.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

FAILED_AFTER_LEDGER_WRITE = "Settlement Failed - pending manual resume"

# Statuses of a run that currently owns (or owned, before crashing) a period
IN_FLIGHT_STATUSES = frozenset({
    SettlementStatus.AGGREGATING,
    SettlementStatus.ALLOCATED,
    SettlementStatus.DISTRIBUTING,
})


class _RunCancelled(Exception):
    """The settlement left the expected status, or this run lost its lock."""


async def _load_settlement(db: AsyncSession, tenant_id: int, period_id: str) -> Optional[PeriodSettlement]:
    result = await db.execute(
        select(PeriodSettlement).where(
            PeriodSettlement.tenant_id == tenant_id,
            PeriodSettlement.period_id == period_id,
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create_settlement(db: AsyncSession, tenant_id: int, period: Period) -> PeriodSettlement:
    settlement = await _load_settlement(db, tenant_id, period.period_id)
    if settlement:
        return settlement

    settlement = PeriodSettlement(
        tenant_id=tenant_id,
        period_id=period.period_id,
        frequency=period.frequency,
        period_start=period.start,
        period_end=period.end,
        status=SettlementStatus.OPEN,
        attempts=0,
    )
    db.add(settlement)
    try:
        await db.commit()
    except IntegrityError:
        # Another trigger created the row first
        await db.rollback()
        settlement = await _load_settlement(db, tenant_id, period.period_id)
    return settlement


async def _check_overlaps(db: AsyncSession, tenant_id: int, period: Period) -> None:
    """
    A monthly and a quarterly period of the same tenant must never both be
    settled or run at the same time.
    """
    result = await db.execute(
        select(PeriodSettlement).where(
            PeriodSettlement.tenant_id == tenant_id,
            PeriodSettlement.period_id != period.period_id,
        )
        .execution_options(populate_existing=True)
    )
    for other in result.scalars().all():
        other_period = parse_period(other.period_id)
        if not periods_overlap(period, other_period):
            continue
        if other.status in IN_FLIGHT_STATUSES:
            raise AlreadyRunningError(
                tenant_id,
                period.period_id,
                locked_by=other.locked_by,
                reason=f"Overlapping period {other.period_id} is {other.status.value}",
            )
        if other.status in COMPLETED_STATUSES or other.contribution_id is not None:
            raise DuplicateContributionError(
                tenant_id,
                period.period_id,
                message=f"Overlapping period {other.period_id} is already {other.status.value}",
            )


async def _advance(
    db: AsyncSession,
    settlement: PeriodSettlement,
    owner: str,
    expected: SettlementStatus,
    new_status: SettlementStatus,
    **values
) -> None:
    """
    Conditional status move, only while `owner` still holds the lock.

    Raises _RunCancelled if the row was cancelled, released or claimed by a
    newer run in the meantime.
    """
    result = await db.execute(
        update(PeriodSettlement)
        .where(
            PeriodSettlement.id == settlement.id,
            PeriodSettlement.status == expected,
            PeriodSettlement.locked_by == owner,
        )
        .values(status=new_status, updated_at=datetime.utcnow(), **values)
    )
    if result.rowcount != 1:
        raise _RunCancelled()
    await db.refresh(settlement)


async def _flag_trip(db: AsyncSession, tenant_id: int, trip_id: int, period_id: str, exc: InvalidCostInputError) -> None:
    existing = await db.execute(
        select(FlaggedTrip.id).where(FlaggedTrip.trip_id == trip_id, FlaggedTrip.period_id == period_id)
    )
    if existing.first():
        return

    db.add(FlaggedTrip(
        tenant_id=tenant_id,
        trip_id=trip_id,
        period_id=period_id,
        error_code=exc.error_code,
        error_message=exc.message,
    ))
    await db.flush()
    await log_event(
        db,
        AuditAction.TRIP_FLAGGED,
        tenant_id=tenant_id,
        metadata={"trip_id": trip_id, "period_id": period_id, "error_code": exc.error_code}
    )
    logger.warning(
        "Trip flagged during period run",
        extra={"tenant_id": tenant_id, "trip_id": trip_id, "period_id": period_id, "error": exc.message}
    )


async def _price_outstanding_trips(
    db: AsyncSession,
    tenant_id: int,
    period: Period,
    trips: TripRecordProvider,
    tenant_settings: TenantSettingsProvider,
    actor: str,
) -> int:
    """Price completed trips that have no fare yet. Returns the number flagged."""
    trip_ids = await trips.unpriced_trip_ids(db, tenant_id, period)
    if not trip_ids:
        return 0

    fare_settings = await tenant_settings.fare_settings(db, tenant_id)
    flagged = 0
    for trip_id in trip_ids:
        # Pricing validates before it writes, so a rejected trip leaves nothing behind
        try:
            await FareCalculator.compute_trip_fare(db, trip_id, fare_settings=fare_settings, actor=actor)
        except InvalidCostInputError as exc:
            flagged += 1
            await _flag_trip(db, tenant_id, trip_id, period.period_id, exc)
    return flagged


async def _aggregate_and_allocate(
    db: AsyncSession,
    settlement: PeriodSettlement,
    owner: str,
    period: Period,
    dividend_settings: DividendSettingsSnapshot,
    trips: TripRecordProvider,
    tenant_settings: TenantSettingsProvider,
    actor: str,
) -> bool:
    """
    Phases AGGREGATING and ALLOCATED.

    Returns False when the period closed as NO_SURPLUS.
    """
    tenant_id = settlement.tenant_id

    flagged = await _price_outstanding_trips(db, tenant_id, period, trips, tenant_settings, actor)
    totals = await aggregate_period(db, tenant_id, period, trips=trips)
    pools = allocate_surplus(totals.surplus, dividend_settings)

    aggregate_values = dict(
        revenue=totals.revenue,
        costs=totals.costs,
        surplus=totals.surplus,
        trip_count=totals.trip_count,
        flagged_trip_count=flagged,
        reserves_amount=pools.reserves,
        business_amount=pools.business,
        dividend_pool=pools.dividend,
    )

    if pools.no_surplus:
        await _advance(
            db, settlement, owner, SettlementStatus.AGGREGATING, SettlementStatus.NO_SURPLUS,
            distributed_amount=ZERO,
            retained_amount=ZERO,
            settled_at=datetime.utcnow(),
            locked_by=None,
            locked_at=None,
            **aggregate_values
        )
        await log_event(
            db,
            AuditAction.SETTLEMENT_NO_SURPLUS,
            tenant_id=tenant_id,
            actor=actor,
            metadata={"period_id": period.period_id, "surplus": str(totals.surplus)}
        )
        await db.commit()
        logger.info(
            "Period closed with no surplus",
            extra={"tenant_id": tenant_id, "period_id": period.period_id, "surplus": str(totals.surplus)}
        )
        return False

    await _advance(db, settlement, owner, SettlementStatus.AGGREGATING, SettlementStatus.ALLOCATED, **aggregate_values)
    await log_event(
        db,
        AuditAction.SETTLEMENT_ALLOCATED,
        tenant_id=tenant_id,
        actor=actor,
        metadata={
            "period_id": period.period_id,
            "revenue": str(totals.revenue),
            "costs": str(totals.costs),
            "surplus": str(totals.surplus),
            "reserves": str(pools.reserves),
            "business": str(pools.business),
            "dividend_pool": str(pools.dividend),
        }
    )
    await db.commit()
    return True


async def _record_contribution(db: AsyncSession, settlement: PeriodSettlement, owner: str, actor: str) -> None:
    """Phase DISTRIBUTING: the contribution and the status move commit together."""
    await _advance(db, settlement, owner, SettlementStatus.ALLOCATED, SettlementStatus.DISTRIBUTING)

    pool = to_money(settlement.dividend_pool)
    if pool > 0:
        contribution = await ledger.record_contribution(db, settlement.tenant_id, settlement.period_id, pool)
        settlement.contribution_id = contribution.id
        await log_event(
            db,
            AuditAction.CONTRIBUTION_RECORDED,
            tenant_id=settlement.tenant_id,
            actor=actor,
            metadata={"period_id": settlement.period_id, "amount": str(pool), "contribution_id": contribution.id}
        )
    await db.commit()


async def _distribute(
    db: AsyncSession,
    settlement: PeriodSettlement,
    owner: str,
    dividend_settings: DividendSettingsSnapshot,
    members: MemberEligibilityProvider,
    actor: str,
) -> None:
    """Phase SETTLED: dividends, payouts, status and lock release in one commit."""
    pool = to_money(settlement.dividend_pool)
    model = dividend_settings.cooperative_model

    eligible = await members.eligible_members(db, settlement.tenant_id, settlement.period_id, model.member_types)
    try:
        result = distribution.distribute_dividends(pool, model, eligible)
    except NoEligibleMembersError:
        logger.warning(
            "No eligible members, dividend pool retained in fund",
            extra={"tenant_id": settlement.tenant_id, "period_id": settlement.period_id, "pool": str(pool)}
        )
        result = distribution.DistributionResult(shares=[], distributed=ZERO, retained=pool)

    await distribution.persist_dividends(db, settlement, result, dividend_settings.auto_distribute)

    await _advance(
        db, settlement, owner, SettlementStatus.DISTRIBUTING, SettlementStatus.SETTLED,
        distributed_amount=result.distributed,
        retained_amount=result.retained,
        settled_at=datetime.utcnow(),
        failure_reason=None,
        locked_by=None,
        locked_at=None,
    )
    await log_event(
        db,
        AuditAction.SETTLEMENT_SETTLED,
        tenant_id=settlement.tenant_id,
        actor=actor,
        metadata={
            "period_id": settlement.period_id,
            "dividend_pool": str(pool),
            "distributed": str(result.distributed),
            "retained": str(result.retained),
            "members": len(result.shares),
            "auto_distribute": dividend_settings.auto_distribute,
        }
    )
    await db.commit()

    if dividend_settings.notification_email:
        # Delivery belongs to the messaging service
        logger.info(
            "Settlement notification requested",
            extra={
                "tenant_id": settlement.tenant_id,
                "period_id": settlement.period_id,
                "notification_email": dividend_settings.notification_email,
            }
        )


async def _mark_failed(
    db: AsyncSession, settlement_id: int, owner: str, actor: str, exc: Exception
) -> PeriodSettlement:
    await db.rollback()
    settlement = await db.get(PeriodSettlement, settlement_id)
    await db.refresh(settlement)

    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    if settlement.contribution_id is not None:
        reason = f"{FAILED_AFTER_LEDGER_WRITE}: {message}"
    else:
        reason = message

    await db.execute(
        update(PeriodSettlement)
        .where(PeriodSettlement.id == settlement_id, PeriodSettlement.locked_by == owner)
        .values(
            status=SettlementStatus.FAILED,
            failure_reason=reason,
            locked_by=None,
            locked_at=None,
            updated_at=datetime.utcnow(),
        )
    )
    await log_event(
        db,
        AuditAction.SETTLEMENT_FAILED,
        tenant_id=settlement.tenant_id,
        actor=actor,
        metadata={"period_id": settlement.period_id, "reason": reason}
    )
    await db.commit()
    await db.refresh(settlement)
    logger.error(
        "Settlement failed",
        extra={"tenant_id": settlement.tenant_id, "period_id": settlement.period_id, "reason": reason}
    )
    return settlement


async def run_period(
    db: AsyncSession,
    tenant_id: int,
    period_id: str,
    actor: str = "scheduler",
    trips: Optional[TripRecordProvider] = None,
    members: Optional[MemberEligibilityProvider] = None,
    tenant_settings: Optional[TenantSettingsProvider] = None,
) -> PeriodSettlement:
    """
    Settle one period for one tenant.

    A FAILED or CANCELLED period with nothing on the ledger is re-aggregated
    from scratch on the same row. A FAILED period whose contribution already
    committed resumes at DISTRIBUTING from its stored pools.

    Raises:
        InvalidPeriodError: malformed period_id
        PeriodAlreadySettledError: period is SETTLED or NO_SURPLUS (no writes)
        AlreadyRunningError: lock held, or an overlapping period is in flight
        DuplicateContributionError: an overlapping period already settled
        SettlementFailedError: failure after the contribution committed
        AppException: any other engine failure; the settlement is left FAILED
    """
    period = parse_period(period_id)
    trips = trips or TripRecordProvider()
    members = members or MemberEligibilityProvider()
    tenant_settings = tenant_settings or TenantSettingsProvider()

    existing = await _load_settlement(db, tenant_id, period.period_id)
    if existing and existing.status in COMPLETED_STATUSES:
        raise PeriodAlreadySettledError(tenant_id, period.period_id, existing.status.value)

    # Frozen for the whole run
    dividend_settings = await tenant_settings.dividend_settings(db, tenant_id)

    await _check_overlaps(db, tenant_id, period)
    settlement = await _get_or_create_settlement(db, tenant_id, period)

    # Overlap re-check and claim commit together under the tenant's fund lock,
    # so a month and its quarter cannot both pass the check
    await ledger.lock_fund(db, tenant_id)
    try:
        await _check_overlaps(db, tenant_id, period)
    except (AlreadyRunningError, DuplicateContributionError):
        await db.rollback()
        raise

    owner = f"{actor}:{uuid.uuid4().hex[:12]}"[:64]
    if not await period_lock.acquire_period_lock(db, settlement.id, owner):
        await db.rollback()
        await db.refresh(settlement)
        if settlement.status in COMPLETED_STATUSES:
            raise PeriodAlreadySettledError(tenant_id, period.period_id, settlement.status.value)
        raise AlreadyRunningError(tenant_id, period.period_id, locked_by=settlement.locked_by)

    await db.refresh(settlement)
    if settlement.status in COMPLETED_STATUSES:
        await db.rollback()
        raise PeriodAlreadySettledError(tenant_id, period.period_id, settlement.status.value)

    resume = settlement.status == SettlementStatus.FAILED and settlement.contribution_id is not None
    entry_status = SettlementStatus.DISTRIBUTING if resume else SettlementStatus.AGGREGATING

    reset = {} if resume else dict(
        revenue=None, costs=None, surplus=None, trip_count=None, flagged_trip_count=None,
        reserves_amount=None, business_amount=None, dividend_pool=None,
        distributed_amount=None, retained_amount=None,
    )
    await _advance(
        db, settlement, owner, settlement.status, entry_status,
        attempts=(settlement.attempts or 0) + 1,
        failure_reason=None,
        **reset
    )
    await log_event(
        db,
        AuditAction.SETTLEMENT_STARTED,
        tenant_id=tenant_id,
        actor=actor,
        metadata={"period_id": period.period_id, "resume": resume, "attempt": settlement.attempts}
    )
    await db.commit()
    logger.info(
        "Settlement run started",
        extra={"tenant_id": tenant_id, "period_id": period.period_id, "resume": resume, "owner": owner}
    )

    settlement_id = settlement.id
    try:
        if not resume:
            if not await _aggregate_and_allocate(
                db, settlement, owner, period, dividend_settings, trips, tenant_settings, actor
            ):
                return settlement
            await _record_contribution(db, settlement, owner, actor)
        await _distribute(db, settlement, owner, dividend_settings, members, actor)
    except _RunCancelled:
        await db.rollback()
        await period_lock.release_period_lock(db, settlement_id, owner)
        await db.commit()
        await db.refresh(settlement)
        logger.info(
            "Settlement run stopped by cancellation",
            extra={"tenant_id": tenant_id, "period_id": period.period_id, "status": settlement.status.value}
        )
        return settlement
    except Exception as exc:
        failed = await _mark_failed(db, settlement_id, owner, actor, exc)
        if failed.contribution_id is not None:
            reason = failed.failure_reason or FAILED_AFTER_LEDGER_WRITE
            raise SettlementFailedError(tenant_id, period.period_id, reason) from exc
        raise

    logger.info(
        "Settlement run finished",
        extra={"tenant_id": tenant_id, "period_id": period.period_id, "status": settlement.status.value}
    )
    return settlement


async def get_settlement_status(db: AsyncSession, tenant_id: int, period_id: str) -> PeriodSettlement:
    """
    Raises:
        InvalidPeriodError: malformed period_id
        ResourceNotFoundError: the period was never run
    """
    period = parse_period(period_id)
    settlement = await _load_settlement(db, tenant_id, period.period_id)
    if not settlement:
        raise ResourceNotFoundError("PeriodSettlement", f"{tenant_id}/{period.period_id}")
    return settlement


async def cancel_settlement(
    db: AsyncSession,
    tenant_id: int,
    period_id: str,
    actor: Optional[str] = None,
) -> PeriodSettlement:
    """
    Cancel a run that has not yet written to the ledger.

    The running worker notices at its next status move and stops.

    Raises:
        SettlementNotCancellableError: not in AGGREGATING or ALLOCATED
    """
    settlement = await get_settlement_status(db, tenant_id, period_id)
    if settlement.status not in CANCELLABLE_STATUSES:
        raise SettlementNotCancellableError(tenant_id, settlement.period_id, settlement.status.value)

    result = await db.execute(
        update(PeriodSettlement)
        .where(
            PeriodSettlement.id == settlement.id,
            PeriodSettlement.status.in_(list(CANCELLABLE_STATUSES)),
        )
        .values(
            status=SettlementStatus.CANCELLED,
            failure_reason=f"Cancelled by {actor or 'operator'}",
            locked_by=None,
            locked_at=None,
            updated_at=datetime.utcnow(),
        )
    )
    if result.rowcount != 1:
        await db.rollback()
        await db.refresh(settlement)
        raise SettlementNotCancellableError(tenant_id, settlement.period_id, settlement.status.value)

    await log_event(
        db,
        AuditAction.SETTLEMENT_CANCELLED,
        tenant_id=tenant_id,
        actor=actor,
        metadata={"period_id": settlement.period_id}
    )
    await db.commit()
    await db.refresh(settlement)
    return settlement


async def release_stale_lock(
    db: AsyncSession,
    tenant_id: int,
    period_id: str,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PeriodSettlement:
    """
    Operator recovery for a run that died holding the lock.

    A run caught mid-flight is marked FAILED so the next run_period either
    re-aggregates or resumes at DISTRIBUTING, depending on whether its
    contribution committed.

    Raises:
        AlreadyRunningError: the lock is not older than the configured TTL
    """
    settlement = await get_settlement_status(db, tenant_id, period_id)
    if settlement.locked_by is None:
        return settlement
    if not period_lock.is_lock_stale(settlement, now=now):
        raise AlreadyRunningError(
            tenant_id,
            settlement.period_id,
            locked_by=settlement.locked_by,
            reason=f"Lock held by {settlement.locked_by} has not expired",
        )

    stale_owner = settlement.locked_by
    values = dict(locked_by=None, locked_at=None, updated_at=datetime.utcnow())
    if settlement.status in IN_FLIGHT_STATUSES:
        reason = "Lock expired"
        if settlement.contribution_id is not None:
            reason = f"{FAILED_AFTER_LEDGER_WRITE}: lock expired"
        values.update(status=SettlementStatus.FAILED, failure_reason=reason)

    await db.execute(
        update(PeriodSettlement)
        .where(PeriodSettlement.id == settlement.id, PeriodSettlement.locked_by == stale_owner)
        .values(**values)
    )
    await log_event(
        db,
        AuditAction.SETTLEMENT_LOCK_RELEASED,
        tenant_id=tenant_id,
        actor=actor,
        metadata={"period_id": settlement.period_id, "stale_owner": stale_owner}
    )
    await db.commit()
    await db.refresh(settlement)
    logger.warning(
        "Stale settlement lock released",
        extra={"tenant_id": tenant_id, "period_id": settlement.period_id, "stale_owner": stale_owner}
    )
    return settlement
