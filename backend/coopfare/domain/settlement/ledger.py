"""
Commonwealth Fund Ledger.

Append-only contributions and distributions. The balance is never stored;
it is always derived from the entries, so it cannot drift from them.
"""

import logging
from decimal import Decimal
from typing import List, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backend.coopfare.core.exceptions import (
    DuplicateContributionError,
    InsufficientFundsError,
    InvalidCostInputError,
    InvariantViolationError,
)
from backend.coopfare.domain.money import to_money
from backend.coopfare.models.commonwealth import (
    CommonwealthContribution,
    CommonwealthDistribution,
    CommonwealthFund,
)
from backend.coopfare.models.settlement_enums import ContributionSource, DistributionStatus

logger = logging.getLogger(__name__)


class LedgerEntry(NamedTuple):
    kind: str  # "contribution" | "distribution"
    entry_id: int
    period_id: Optional[str]
    amount: Decimal
    created_at: object
    source: Optional[str] = None
    recipient_type: Optional[str] = None
    recipient_id: Optional[int] = None
    note: Optional[str] = None


async def get_or_create_fund(db: AsyncSession, tenant_id: int) -> CommonwealthFund:
    result = await db.execute(select(CommonwealthFund).where(CommonwealthFund.tenant_id == tenant_id))
    fund = result.scalar_one_or_none()
    if fund:
        return fund

    fund = CommonwealthFund(tenant_id=tenant_id)
    db.add(fund)
    await db.flush()
    logger.info("Commonwealth fund created", extra={"tenant_id": tenant_id, "fund_id": fund.id})
    return fund


async def lock_fund(db: AsyncSession, tenant_id: int) -> CommonwealthFund:
    """
    Row-lock the tenant's fund until the caller's transaction ends.

    Serializes settlement claims and payouts of one tenant. SQLite ignores
    FOR UPDATE but only ever has one writer.
    """
    fund = await get_or_create_fund(db, tenant_id)
    result = await db.execute(
        select(CommonwealthFund)
        .where(CommonwealthFund.id == fund.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_fund(db: AsyncSession, tenant_id: int) -> Optional[CommonwealthFund]:
    result = await db.execute(select(CommonwealthFund).where(CommonwealthFund.tenant_id == tenant_id))
    return result.scalar_one_or_none()


async def _sum_contributions(db: AsyncSession, fund_id: int, period_id: Optional[str] = None) -> Decimal:
    query = select(func.coalesce(func.sum(CommonwealthContribution.amount), 0)).where(
        CommonwealthContribution.fund_id == fund_id
    )
    if period_id is not None:
        query = query.where(CommonwealthContribution.period_id == period_id)
    result = await db.execute(query)
    return to_money(result.scalar_one())


async def _sum_distributions(db: AsyncSession, fund_id: int, period_id: Optional[str] = None) -> Decimal:
    query = select(func.coalesce(func.sum(CommonwealthDistribution.amount), 0)).where(
        CommonwealthDistribution.fund_id == fund_id
    )
    if period_id is not None:
        query = query.where(CommonwealthDistribution.period_id == period_id)
    result = await db.execute(query)
    return to_money(result.scalar_one())


async def get_fund_balance(db: AsyncSession, fund_id: int) -> Decimal:
    """sum(contributions) - sum(distributions)"""
    return await _sum_contributions(db, fund_id) - await _sum_distributions(db, fund_id)


async def get_contribution(db: AsyncSession, fund_id: int, period_id: str) -> Optional[CommonwealthContribution]:
    result = await db.execute(
        select(CommonwealthContribution).where(
            CommonwealthContribution.fund_id == fund_id,
            CommonwealthContribution.period_id == period_id,
        )
    )
    return result.scalar_one_or_none()


async def record_contribution(
    db: AsyncSession,
    tenant_id: int,
    period_id: str,
    amount: Decimal,
) -> CommonwealthContribution:
    """
    Record a period's dividend pool entering the fund.

    Raises:
        DuplicateContributionError: the period already has a contribution
        InvalidCostInputError: amount is not positive
    """
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidCostInputError(
            f"Contribution amount must be positive, got {amount}",
            details={"amount": str(amount)}
        )

    fund = await get_or_create_fund(db, tenant_id)
    if await get_contribution(db, fund.id, period_id):
        raise DuplicateContributionError(tenant_id, period_id)

    contribution = CommonwealthContribution(
        fund_id=fund.id,
        period_id=period_id,
        amount=amount,
        source=ContributionSource.SURPLUS_ALLOCATION,
    )
    try:
        # Savepoint so a lost race leaves the outer transaction usable
        async with db.begin_nested():
            db.add(contribution)
            await db.flush()
    except IntegrityError:
        raise DuplicateContributionError(tenant_id, period_id)

    logger.info(
        "Commonwealth contribution recorded",
        extra={"tenant_id": tenant_id, "period_id": period_id, "amount": str(amount)}
    )
    return contribution


async def record_correction(
    db: AsyncSession,
    tenant_id: int,
    amount: Decimal,
    note: str,
) -> CommonwealthContribution:
    """Out-of-band correction contribution, not tied to any period."""
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidCostInputError(
            f"Correction amount must be positive, got {amount}",
            details={"amount": str(amount)}
        )

    fund = await get_or_create_fund(db, tenant_id)
    contribution = CommonwealthContribution(
        fund_id=fund.id,
        period_id=None,
        amount=amount,
        source=ContributionSource.CORRECTION,
        note=note,
    )
    db.add(contribution)
    await db.flush()
    return contribution


async def record_distribution(
    db: AsyncSession,
    fund_id: int,
    recipient_type: str,
    recipient_id: int,
    amount: Decimal,
    period_id: Optional[str] = None,
) -> CommonwealthDistribution:
    """
    Record money leaving the fund.

    Raises:
        InsufficientFundsError: amount exceeds the current balance
        InvariantViolationError: the period's payouts would exceed its contribution
    """
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidCostInputError(
            f"Distribution amount must be positive, got {amount}",
            details={"amount": str(amount)}
        )

    balance = await get_fund_balance(db, fund_id)
    if amount > balance:
        raise InsufficientFundsError(fund_id, amount, balance)

    if period_id is not None:
        contributed = await _sum_contributions(db, fund_id, period_id)
        distributed = await _sum_distributions(db, fund_id, period_id)
        if distributed + amount > contributed:
            raise InvariantViolationError(
                f"Distributions for period {period_id} would exceed its contribution",
                details={
                    "fund_id": fund_id,
                    "period_id": period_id,
                    "contributed": str(contributed),
                    "distributed": str(distributed),
                    "requested": str(amount),
                }
            )

    distribution = CommonwealthDistribution(
        fund_id=fund_id,
        period_id=period_id,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        amount=amount,
        status=DistributionStatus.COMPLETED,
    )
    db.add(distribution)
    await db.flush()
    return distribution


async def get_ledger(db: AsyncSession, tenant_id: int, limit: int = 200) -> List[LedgerEntry]:
    """Contributions and distributions of a tenant's fund, oldest first."""
    fund = await get_fund(db, tenant_id)
    if not fund:
        return []

    contributions = await db.execute(
        select(CommonwealthContribution)
        .where(CommonwealthContribution.fund_id == fund.id)
        .order_by(CommonwealthContribution.id)
    )
    distributions = await db.execute(
        select(CommonwealthDistribution)
        .where(CommonwealthDistribution.fund_id == fund.id)
        .order_by(CommonwealthDistribution.id)
    )

    entries = [
        LedgerEntry(
            kind="contribution",
            entry_id=row.id,
            period_id=row.period_id,
            amount=to_money(row.amount),
            created_at=row.created_at,
            source=row.source.value,
            note=row.note,
        )
        for row in contributions.scalars().all()
    ]
    entries.extend(
        LedgerEntry(
            kind="distribution",
            entry_id=row.id,
            period_id=row.period_id,
            amount=to_money(row.amount),
            created_at=row.created_at,
            recipient_type=row.recipient_type,
            recipient_id=row.recipient_id,
        )
        for row in distributions.scalars().all()
    )
    # created_at ties within a second are common; contributions sort first
    entries.sort(key=lambda entry: (entry.created_at, entry.kind != "contribution", entry.entry_id))
    return entries[:limit]
