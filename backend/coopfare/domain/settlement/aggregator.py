"""
Period Aggregator.

Reduces a period's latest fare versions and recorded costs to totals.
Read-only: running it twice over the same data gives the same answer.
"""

from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.coopfare.domain.money import ZERO, to_money
from backend.coopfare.domain.settlement.periods import Period
from backend.coopfare.domain.settlement.providers import TripRecordProvider


class PeriodTotals(NamedTuple):
    period_id: str
    revenue: Decimal
    costs: Decimal
    surplus: Decimal  # may be negative
    trip_count: int


async def aggregate_period(
    db: AsyncSession,
    tenant_id: int,
    period: Period,
    trips: Optional[TripRecordProvider] = None,
) -> PeriodTotals:
    """
    Revenue is the sum of fare x passengers over the latest fare version of
    every trip completed in [start, end). Costs are the operating costs
    recorded in the same range.
    """
    trips = trips or TripRecordProvider()

    records = await trips.latest_fare_records(db, tenant_id, period)
    revenue = sum((to_money(record.total_revenue) for record in records), ZERO)
    costs = await trips.total_costs(db, tenant_id, period)

    return PeriodTotals(
        period_id=period.period_id,
        revenue=revenue,
        costs=costs,
        surplus=revenue - costs,
        trip_count=len(records),
    )
