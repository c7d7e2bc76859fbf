"""
Dividend Distribution Engine.

Splits a period's dividend pool across eligible members according to the
tenant's cooperative model, then persists one MemberDividend per member.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, NamedTuple, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from backend.coopfare.core.exceptions import (
    InvariantViolationError,
    NoEligibleMembersError,
    ResourceNotFoundError,
)
from backend.coopfare.domain.money import ZERO, allocate_pro_rata, percent_of, to_money
from backend.coopfare.domain.settlement import ledger
from backend.coopfare.domain.settlement.providers import EligibleMember
from backend.coopfare.domain.snapshots import HybridModel
from backend.coopfare.models.enums import MemberType
from backend.coopfare.models.member_dividend import MemberDividend
from backend.coopfare.models.period_settlement import PeriodSettlement
from backend.coopfare.models.settlement_enums import DividendStatus, SettlementStatus

logger = logging.getLogger(__name__)


class DividendShare(NamedTuple):
    member_type: MemberType
    member_id: int
    weight: Decimal
    amount: Decimal


class DistributionResult(NamedTuple):
    shares: List[DividendShare]
    distributed: Decimal
    retained: Decimal  # stays in the fund


def _group_pools(pool: Decimal, model) -> List[Tuple[MemberType, Decimal]]:
    if isinstance(model, HybridModel):
        customer_pool = percent_of(pool, model.customer_percent)
        return [
            (MemberType.CUSTOMER, customer_pool),
            (MemberType.DRIVER, pool - customer_pool),
        ]
    return [(model.member_types[0], pool)]


def distribute_dividends(pool: Decimal, model, members: Sequence[EligibleMember]) -> DistributionResult:
    """
    Worker and passenger models pay one member group. Hybrid splits the pool
    first: customers get floor(pool x customer%), drivers the rest.

    Inside a group the sub-pool is shared pro rata by weight; leftover cents
    go to the heaviest member, lowest member id on a tie. A group with no
    eligible members keeps its sub-pool in the fund. Every eligible member
    with a positive weight gets a share, possibly 0.00.

    Raises:
        NoEligibleMembersError: positive pool and nobody eligible in any group
    """
    pool = to_money(pool)
    if pool <= 0:
        return DistributionResult(shares=[], distributed=ZERO, retained=ZERO)

    by_type: Dict[MemberType, List[EligibleMember]] = {}
    for member in members:
        if member.weight > 0:
            by_type.setdefault(member.member_type, []).append(member)

    group_pools = _group_pools(pool, model)
    if not any(by_type.get(member_type) for member_type, _ in group_pools):
        raise NoEligibleMembersError(pool)

    shares = []
    retained = ZERO
    for member_type, group_pool in group_pools:
        group = by_type.get(member_type)
        if not group:
            retained += group_pool
            continue
        weights = {member.member_id: member.weight for member in group}
        if group_pool > 0:
            amounts = allocate_pro_rata(group_pool, weights.items())
        else:
            amounts = {member_id: ZERO for member_id in weights}
        # Members whose share floors to 0.00 still get a (zero) dividend row
        for member_id in sorted(amounts):
            shares.append(DividendShare(member_type, member_id, weights[member_id], amounts[member_id]))

    distributed = sum((share.amount for share in shares), ZERO)
    if distributed + retained != pool:
        raise InvariantViolationError(
            "Dividend shares do not add up to the pool",
            details={"pool": str(pool), "distributed": str(distributed), "retained": str(retained)}
        )

    return DistributionResult(shares=shares, distributed=distributed, retained=retained)


async def persist_dividends(
    db: AsyncSession,
    settlement: PeriodSettlement,
    result: DistributionResult,
    auto_distribute: bool,
) -> List[MemberDividend]:
    """
    One PENDING MemberDividend per share. With auto_distribute each one is
    paid straight away through a fund distribution.
    """
    fund = await ledger.lock_fund(db, settlement.tenant_id) if auto_distribute else None

    dividends = []
    for share in result.shares:
        dividend = MemberDividend(
            settlement_id=settlement.id,
            tenant_id=settlement.tenant_id,
            period_id=settlement.period_id,
            member_type=share.member_type,
            member_id=share.member_id,
            weight=share.weight,
            amount=share.amount,
            status=DividendStatus.PENDING,
        )
        db.add(dividend)
        dividends.append(dividend)
    await db.flush()

    if auto_distribute:
        for dividend in dividends:
            await _pay_dividend(db, fund.id, dividend)

    return dividends


async def _pay_dividend(db: AsyncSession, fund_id: int, dividend: MemberDividend) -> bool:
    """
    Claim a PENDING dividend and book its payout against the fund.

    Returns False when another payout already claimed it.
    """
    paid_at = datetime.utcnow()
    claimed = await db.execute(
        update(MemberDividend)
        .where(MemberDividend.id == dividend.id, MemberDividend.status == DividendStatus.PENDING)
        .values(status=DividendStatus.PAID, paid_at=paid_at)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        return False

    dividend.status = DividendStatus.PAID
    dividend.paid_at = paid_at
    # Zero shares are settled without moving money
    if to_money(dividend.amount) > 0:
        distribution = await ledger.record_distribution(
            db,
            fund_id,
            recipient_type=dividend.member_type.value,
            recipient_id=dividend.member_id,
            amount=dividend.amount,
            period_id=dividend.period_id,
        )
        dividend.distribution_id = distribution.id
    return True


async def mark_dividends_paid(db: AsyncSession, tenant_id: int, period_id: str) -> List[MemberDividend]:
    """
    Pay out every PENDING dividend of a settled period.

    Each payout is recorded as a commonwealth distribution. Every dividend
    is claimed with a conditional PENDING -> PAID update under the fund
    lock, so overlapping calls never pay the same dividend twice.

    Raises:
        ResourceNotFoundError: no SETTLED settlement for the period
    """
    result = await db.execute(
        select(PeriodSettlement).where(
            PeriodSettlement.tenant_id == tenant_id,
            PeriodSettlement.period_id == period_id,
        )
    )
    settlement = result.scalar_one_or_none()
    if not settlement or settlement.status != SettlementStatus.SETTLED:
        raise ResourceNotFoundError("Settled period", f"{tenant_id}/{period_id}")

    pending = await db.execute(
        select(MemberDividend)
        .where(
            MemberDividend.settlement_id == settlement.id,
            MemberDividend.status == DividendStatus.PENDING,
        )
        .order_by(MemberDividend.id)
    )
    dividends = list(pending.scalars().all())
    if not dividends:
        return []

    fund = await ledger.lock_fund(db, tenant_id)
    paid = []
    for dividend in dividends:
        if await _pay_dividend(db, fund.id, dividend):
            paid.append(dividend)
    await db.flush()

    logger.info(
        "Member dividends paid",
        extra={"tenant_id": tenant_id, "period_id": period_id, "count": len(paid), "skipped": len(dividends) - len(paid)}
    )
    return paid


async def list_period_dividends(db: AsyncSession, tenant_id: int, period_id: str) -> List[MemberDividend]:
    result = await db.execute(
        select(MemberDividend)
        .where(MemberDividend.tenant_id == tenant_id, MemberDividend.period_id == period_id)
        .order_by(MemberDividend.member_type, MemberDividend.member_id)
    )
    return list(result.scalars().all())


async def list_member_dividends(
    db: AsyncSession,
    tenant_id: int,
    member_type: MemberType,
    member_id: int,
) -> List[MemberDividend]:
    """Dividend history of one member, newest period first."""
    result = await db.execute(
        select(MemberDividend)
        .where(
            MemberDividend.tenant_id == tenant_id,
            MemberDividend.member_type == member_type,
            MemberDividend.member_id == member_id,
        )
        .order_by(MemberDividend.period_id.desc())
    )
    return list(result.scalars().all())
