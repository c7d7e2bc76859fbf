"""
Surplus Allocator.

Splits a period surplus into reserves, business and dividend pools.
"""

from decimal import Decimal
from typing import NamedTuple

from backend.coopfare.domain.money import ZERO, percent_of, to_money
from backend.coopfare.domain.snapshots import DividendSettingsSnapshot, validate_allocation_percentages


class PoolAllocation(NamedTuple):
    reserves: Decimal
    business: Decimal
    dividend: Decimal
    no_surplus: bool = False

    @property
    def total(self) -> Decimal:
        return self.reserves + self.business + self.dividend


def allocate_surplus(surplus: Decimal, dividend_settings: DividendSettingsSnapshot) -> PoolAllocation:
    """
    Reserves and business are truncated to the cent; the dividend pool takes
    whatever is left so the three always sum to the surplus exactly.

    A zero or negative surplus produces three zero pools flagged no_surplus.

    Raises:
        SettingsInvariantError: percentages do not total 100
    """
    validate_allocation_percentages(
        dividend_settings.reserves_percent,
        dividend_settings.business_percent,
        dividend_settings.dividend_percent,
    )

    surplus = to_money(surplus)
    if surplus <= 0:
        return PoolAllocation(reserves=ZERO, business=ZERO, dividend=ZERO, no_surplus=True)

    reserves = percent_of(surplus, dividend_settings.reserves_percent)
    business = percent_of(surplus, dividend_settings.business_percent)
    dividend = surplus - reserves - business

    return PoolAllocation(reserves=reserves, business=business, dividend=dividend)
