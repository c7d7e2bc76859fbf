"""
Fare Tier Resolver.

Maps a trip's passenger count to the tenant's discount tier.
Gaps are configuration defects and raise; overlaps resolve to the most
inclusive tier (lowest min) and are reported as a configuration warning.
"""

import logging
from typing import List, NamedTuple, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.coopfare.core.exceptions import TierGapError, TierOverlapError, InvalidCostInputError
from backend.coopfare.domain.snapshots import FareTierSnapshot
from backend.coopfare.models.fare_tier import FareTier

logger = logging.getLogger(__name__)


class TierResolution(NamedTuple):
    tier: FareTierSnapshot
    overlap_warning: Optional[str] = None


class TierResolver:

    @staticmethod
    async def load_tiers(db: AsyncSession, tenant_id: int) -> List[FareTierSnapshot]:
        """Tenant's active tier table ordered by lower bound."""
        result = await db.execute(
            select(FareTier)
            .where(FareTier.tenant_id == tenant_id, FareTier.retired_at.is_(None))
            .order_by(FareTier.min_passengers, FareTier.id)
        )
        return [FareTierSnapshot.model_validate(row) for row in result.scalars().all()]

    @staticmethod
    def validate_tier_table(tiers: Sequence[FareTierSnapshot]) -> None:
        """
        Write-time check: tiers must cover [1, infinity) exactly once.

        Raises:
            TierGapError: empty table, first tier not starting at 1, a hole
                between tiers, or no unbounded last tier.
            TierOverlapError: two tiers share a passenger count.
        """
        if not tiers:
            raise TierGapError("Fare tier table is empty", details={"missing_from": 1})

        ordered = sorted(tiers, key=lambda t: t.min_passengers)

        for tier in ordered:
            if tier.min_passengers < 1:
                raise TierGapError(
                    "Fare tiers must start at 1 passenger or more",
                    details={"min_passengers": tier.min_passengers}
                )
            if tier.max_passengers is not None and tier.max_passengers < tier.min_passengers:
                raise TierGapError(
                    f"Tier range [{tier.min_passengers}, {tier.max_passengers}] is empty",
                    details={"min_passengers": tier.min_passengers, "max_passengers": tier.max_passengers}
                )

        if ordered[0].min_passengers != 1:
            raise TierGapError(
                f"No tier covers passenger counts 1-{ordered[0].min_passengers - 1}",
                details={"missing_from": 1, "missing_to": ordered[0].min_passengers - 1}
            )

        for current, following in zip(ordered, ordered[1:]):
            if current.max_passengers is None or following.min_passengers <= current.max_passengers:
                raise TierOverlapError(
                    f"Tiers starting at {current.min_passengers} and {following.min_passengers} overlap",
                    details={
                        "first": [current.min_passengers, current.max_passengers],
                        "second": [following.min_passengers, following.max_passengers],
                    }
                )
            if following.min_passengers != current.max_passengers + 1:
                raise TierGapError(
                    f"No tier covers passenger counts {current.max_passengers + 1}-{following.min_passengers - 1}",
                    details={"missing_from": current.max_passengers + 1, "missing_to": following.min_passengers - 1}
                )

        if ordered[-1].max_passengers is not None:
            raise TierGapError(
                f"No tier covers more than {ordered[-1].max_passengers} passengers",
                details={"missing_from": ordered[-1].max_passengers + 1}
            )

    @staticmethod
    def resolve(tiers: Sequence[FareTierSnapshot], passenger_count: int) -> TierResolution:
        """
        Find the tier containing passenger_count.

        Raises:
            InvalidCostInputError: passenger_count < 1
            TierGapError: no tier contains the count
        """
        if passenger_count < 1:
            raise InvalidCostInputError(
                f"Passenger count must be at least 1, got {passenger_count}",
                details={"passenger_count": passenger_count}
            )

        matches = [tier for tier in tiers if tier.contains(passenger_count)]
        if not matches:
            raise TierGapError(
                f"No fare tier covers {passenger_count} passengers",
                details={"passenger_count": passenger_count}
            )

        matches.sort(key=lambda t: (t.min_passengers, t.id or 0))
        chosen = matches[0]

        warning = None
        if len(matches) > 1:
            warning = (
                f"Overlapping fare tiers {[t.id for t in matches]} for {passenger_count} passengers; "
                f"using tier {chosen.id} (lowest minimum)"
            )
            logger.warning(
                "Fare tier overlap",
                extra={"passenger_count": passenger_count, "tier_ids": [t.id for t in matches], "chosen": chosen.id}
            )

        return TierResolution(tier=chosen, overlap_warning=warning)
