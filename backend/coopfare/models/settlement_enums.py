"""
Settlement and ledger enumerations.
"""

import enum


class SettlementStatus(str, enum.Enum):
    """Period settlement state machine."""
    OPEN = "OPEN"  # Created or re-opened for retry
    AGGREGATING = "AGGREGATING"  # Lock held, reading trips and costs
    ALLOCATED = "ALLOCATED"  # Pools computed, nothing on the ledger yet
    DISTRIBUTING = "DISTRIBUTING"  # Contribution committed, dividends in flight
    SETTLED = "SETTLED"  # Terminal
    NO_SURPLUS = "NO_SURPLUS"  # Terminal, surplus <= 0
    FAILED = "FAILED"  # Terminal, pending manual resume
    CANCELLED = "CANCELLED"  # Terminal, cancelled before any ledger write

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SettlementStatus.SETTLED,
    SettlementStatus.NO_SURPLUS,
    SettlementStatus.FAILED,
    SettlementStatus.CANCELLED,
})

# Terminal states that close the period for good
COMPLETED_STATUSES = frozenset({SettlementStatus.SETTLED, SettlementStatus.NO_SURPLUS})

CANCELLABLE_STATUSES = frozenset({SettlementStatus.AGGREGATING, SettlementStatus.ALLOCATED})


class DividendStatus(str, enum.Enum):
    """Member dividend payout status."""
    PENDING = "PENDING"
    PAID = "PAID"


class ContributionSource(str, enum.Enum):
    """Where money entering the commonwealth fund came from."""
    SURPLUS_ALLOCATION = "SURPLUS_ALLOCATION"  # Dividend pool of a settled period
    CORRECTION = "CORRECTION"  # Out-of-band manual correction


class DistributionStatus(str, enum.Enum):
    """Commonwealth distribution status."""
    COMPLETED = "COMPLETED"
