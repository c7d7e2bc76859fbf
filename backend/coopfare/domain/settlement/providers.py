"""
Collaborator contracts for the settlement engine.

The engine does not own trips, costs, members or tenant configuration.
These providers are the seams it reads them through. The defaults query
the shared tables; tests and integrators can pass replacements to
`run_period`.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, NamedTuple, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from backend.coopfare.domain.fares.fare_calculator import FareCalculator
from backend.coopfare.domain.money import to_decimal, to_money
from backend.coopfare.domain.settlement.periods import Period
from backend.coopfare.domain.snapshots import (
    DividendSettingsSnapshot,
    FareSettingsSnapshot,
    build_cooperative_model,
)
from backend.coopfare.core.exceptions import ResourceNotFoundError
from backend.coopfare.models.cooperative_member import CooperativeMember, MemberPatronage
from backend.coopfare.models.dividend_settings import DividendScheduleSettings
from backend.coopfare.models.enums import MemberType
from backend.coopfare.models.operating_cost import OperatingCost
from backend.coopfare.models.trip import Trip
from backend.coopfare.models.trip_enums import TripStatus
from backend.coopfare.models.trip_fare_record import TripFareRecord


class EligibleMember(NamedTuple):
    member_type: MemberType
    member_id: int
    weight: Decimal


class TripRecordProvider:
    """Finalized trips, their latest fare versions and recorded costs."""

    async def unpriced_trip_ids(self, db: AsyncSession, tenant_id: int, period: Period) -> List[int]:
        """Completed trips in the period with no fare record yet."""
        priced = select(TripFareRecord.trip_id).where(TripFareRecord.tenant_id == tenant_id)
        result = await db.execute(
            select(Trip.id)
            .where(
                Trip.tenant_id == tenant_id,
                Trip.status == TripStatus.COMPLETED,
                Trip.completed_at >= period.start,
                Trip.completed_at < period.end,
                Trip.id.not_in(priced),
            )
            .order_by(Trip.id)
        )
        return list(result.scalars().all())

    async def latest_fare_records(self, db: AsyncSession, tenant_id: int, period: Period) -> List[TripFareRecord]:
        """Highest version per trip completed within the period."""
        latest = (
            select(TripFareRecord.trip_id, func.max(TripFareRecord.version).label("version"))
            .where(TripFareRecord.tenant_id == tenant_id)
            .group_by(TripFareRecord.trip_id)
            .subquery()
        )
        result = await db.execute(
            select(TripFareRecord)
            .join(
                latest,
                (TripFareRecord.trip_id == latest.c.trip_id) & (TripFareRecord.version == latest.c.version),
            )
            .where(
                TripFareRecord.trip_completed_at >= period.start,
                TripFareRecord.trip_completed_at < period.end,
            )
            .order_by(TripFareRecord.trip_id)
        )
        return list(result.scalars().all())

    async def total_costs(self, db: AsyncSession, tenant_id: int, period: Period) -> Decimal:
        result = await db.execute(
            select(func.coalesce(func.sum(OperatingCost.amount), 0))
            .where(
                OperatingCost.tenant_id == tenant_id,
                OperatingCost.incurred_at >= period.start,
                OperatingCost.incurred_at < period.end,
            )
        )
        return to_money(result.scalar_one())


class MemberEligibilityProvider:
    """Active, dividend-eligible members with their patronage weight for a period."""

    async def eligible_members(
        self,
        db: AsyncSession,
        tenant_id: int,
        period_id: str,
        member_types: Sequence[MemberType],
    ) -> List[EligibleMember]:
        result = await db.execute(
            select(CooperativeMember.member_type, CooperativeMember.member_id, MemberPatronage.weight)
            .join(
                MemberPatronage,
                (MemberPatronage.tenant_id == CooperativeMember.tenant_id)
                & (MemberPatronage.member_type == CooperativeMember.member_type)
                & (MemberPatronage.member_id == CooperativeMember.member_id),
            )
            .where(
                CooperativeMember.tenant_id == tenant_id,
                CooperativeMember.member_type.in_(list(member_types)),
                CooperativeMember.is_active.is_(True),
                CooperativeMember.dividend_eligible.is_(True),
                MemberPatronage.period_id == period_id,
                MemberPatronage.weight > 0,
            )
            .order_by(CooperativeMember.member_type, CooperativeMember.member_id)
        )
        return [
            EligibleMember(member_type=row.member_type, member_id=row.member_id, weight=to_decimal(row.weight))
            for row in result.all()
        ]


class TenantSettingsProvider:
    """Loads the frozen settings snapshots a run works from."""

    async def fare_settings(self, db: AsyncSession, tenant_id: int) -> FareSettingsSnapshot:
        return await FareCalculator.load_settings(db, tenant_id)

    async def dividend_settings(self, db: AsyncSession, tenant_id: int) -> DividendSettingsSnapshot:
        """
        Raises:
            ResourceNotFoundError: tenant has no dividend schedule
            SettingsInvariantError: stored percentages do not total 100
        """
        result = await db.execute(
            select(DividendScheduleSettings).where(DividendScheduleSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise ResourceNotFoundError("DividendScheduleSettings", tenant_id)

        return DividendSettingsSnapshot(
            tenant_id=row.tenant_id,
            enabled=row.enabled,
            frequency=row.frequency,
            reserves_percent=to_decimal(row.reserves_percent),
            business_percent=to_decimal(row.business_percent),
            dividend_percent=to_decimal(row.dividend_percent),
            auto_distribute=row.auto_distribute,
            notification_email=row.notification_email,
            cooperative_model=build_cooperative_model(
                row.cooperative_model,
                to_decimal(row.hybrid_customer_percent) if row.hybrid_customer_percent is not None else None,
            ),
            loaded_at=datetime.utcnow(),
        )

    async def enabled_tenants(self, db: AsyncSession) -> List[DividendScheduleSettings]:
        result = await db.execute(
            select(DividendScheduleSettings)
            .where(DividendScheduleSettings.enabled.is_(True))
            .order_by(DividendScheduleSettings.tenant_id)
        )
        return list(result.scalars().all())
