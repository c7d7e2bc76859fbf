"""
Billing periods.

A period is identified by "YYYY-MM" (monthly) or "YYYY-Qn" (quarterly) and
covers the half-open range [start, end) in UTC.
"""

import re
from datetime import datetime
from typing import NamedTuple

from backend.coopfare.core.exceptions import InvalidPeriodError
from backend.coopfare.models.enums import SettlementFrequency

_MONTHLY = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_QUARTERLY = re.compile(r"^(\d{4})-Q([1-4])$")


class Period(NamedTuple):
    period_id: str
    frequency: SettlementFrequency
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def _month_start(year: int, month: int) -> datetime:
    # month may be 13 when computing an exclusive end
    if month > 12:
        year, month = year + 1, month - 12
    return datetime(year, month, 1)


def parse_period(period_id: str) -> Period:
    """
    Raises:
        InvalidPeriodError: identifier is neither YYYY-MM nor YYYY-Qn
    """
    match = _MONTHLY.match(period_id or "")
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        return Period(
            period_id=period_id,
            frequency=SettlementFrequency.MONTHLY,
            start=_month_start(year, month),
            end=_month_start(year, month + 1),
        )

    match = _QUARTERLY.match(period_id or "")
    if match:
        year, quarter = int(match.group(1)), int(match.group(2))
        first_month = (quarter - 1) * 3 + 1
        return Period(
            period_id=period_id,
            frequency=SettlementFrequency.QUARTERLY,
            start=_month_start(year, first_month),
            end=_month_start(year, first_month + 3),
        )

    raise InvalidPeriodError(period_id)


def period_containing(frequency: SettlementFrequency, moment: datetime) -> Period:
    if frequency == SettlementFrequency.QUARTERLY:
        return parse_period(f"{moment.year:04d}-Q{(moment.month - 1) // 3 + 1}")
    return parse_period(f"{moment.year:04d}-{moment.month:02d}")


def previous_period(frequency: SettlementFrequency, now: datetime = None) -> Period:
    """The most recent period that has fully ended before `now`."""
    now = now or datetime.utcnow()
    current = period_containing(frequency, now)
    # Any day in the month before the current period's start
    if current.start.month == 1:
        anchor = datetime(current.start.year - 1, 12, 1)
    else:
        anchor = datetime(current.start.year, current.start.month - 1, 1)
    return period_containing(frequency, anchor)


def periods_overlap(first: Period, second: Period) -> bool:
    return first.start < second.end and second.start < first.end
