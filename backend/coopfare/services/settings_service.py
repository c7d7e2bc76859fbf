"""
Tenant settings service.

Write side of fare and dividend configuration. Everything is validated
here, before it reaches the database, so the engine never sees a tier
table with holes or an allocation that does not total 100.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from backend.coopfare.core.exceptions import ResourceNotFoundError
from backend.coopfare.domain.fares.tier_resolver import TierResolver
from backend.coopfare.domain.snapshots import FareTierSnapshot, validate_allocation_percentages
from backend.coopfare.models.dividend_settings import DividendScheduleSettings
from backend.coopfare.models.enums import CooperativeModel
from backend.coopfare.models.fare_settings import FareCalculationSettings
from backend.coopfare.models.fare_tier import FareTier
from backend.coopfare.schemas.dividend import DividendSettingsUpdate
from backend.coopfare.schemas.fare import FareSettingsUpdate, FareTiersUpdate
from backend.coopfare.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


class SettingsService:

    @staticmethod
    async def get_fare_settings(db: AsyncSession, tenant_id: int) -> FareCalculationSettings:
        result = await db.execute(
            select(FareCalculationSettings).where(FareCalculationSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise ResourceNotFoundError("FareCalculationSettings", tenant_id)
        return row

    @staticmethod
    async def upsert_fare_settings(
        db: AsyncSession,
        tenant_id: int,
        payload: FareSettingsUpdate,
        actor: Optional[str] = None
    ) -> FareCalculationSettings:
        result = await db.execute(
            select(FareCalculationSettings).where(FareCalculationSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = FareCalculationSettings(tenant_id=tenant_id)
            db.add(row)

        for field, value in payload.model_dump().items():
            setattr(row, field, value)
        await db.flush()

        await log_event(
            db,
            AuditAction.FARE_SETTINGS_UPDATED,
            tenant_id=tenant_id,
            actor=actor,
            metadata=payload.model_dump(mode="json")
        )
        return row

    @staticmethod
    async def get_fare_tiers(db: AsyncSession, tenant_id: int) -> List[FareTier]:
        result = await db.execute(
            select(FareTier)
            .where(FareTier.tenant_id == tenant_id, FareTier.retired_at.is_(None))
            .order_by(FareTier.min_passengers)
        )
        return list(result.scalars().all())

    @staticmethod
    async def replace_fare_tiers(
        db: AsyncSession,
        tenant_id: int,
        payload: FareTiersUpdate,
        actor: Optional[str] = None
    ) -> List[FareTier]:
        """
        Validate and swap in a complete tier table.

        Raises:
            TierGapError / TierOverlapError: table does not cover [1, inf) exactly once
        """
        TierResolver.validate_tier_table([
            FareTierSnapshot(**tier.model_dump()) for tier in payload.tiers
        ])

        # Fare records still reference the retired rows
        await db.execute(
            update(FareTier)
            .where(FareTier.tenant_id == tenant_id, FareTier.retired_at.is_(None))
            .values(retired_at=datetime.utcnow())
        )

        tiers = [FareTier(tenant_id=tenant_id, **tier.model_dump()) for tier in payload.tiers]
        db.add_all(tiers)
        await db.flush()

        await log_event(
            db,
            AuditAction.FARE_TIERS_REPLACED,
            tenant_id=tenant_id,
            actor=actor,
            metadata={"tiers": [tier.model_dump(mode="json") for tier in payload.tiers]}
        )
        logger.info("Fare tiers replaced", extra={"tenant_id": tenant_id, "count": len(tiers)})
        return sorted(tiers, key=lambda t: t.min_passengers)

    @staticmethod
    async def get_dividend_settings(db: AsyncSession, tenant_id: int) -> DividendScheduleSettings:
        result = await db.execute(
            select(DividendScheduleSettings).where(DividendScheduleSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise ResourceNotFoundError("DividendScheduleSettings", tenant_id)
        return row

    @staticmethod
    async def upsert_dividend_settings(
        db: AsyncSession,
        tenant_id: int,
        payload: DividendSettingsUpdate,
        actor: Optional[str] = None
    ) -> DividendScheduleSettings:
        """
        Raises:
            SettingsInvariantError: percentages do not total exactly 100
        """
        validate_allocation_percentages(
            payload.reserves_percent,
            payload.business_percent,
            payload.dividend_percent,
        )

        values = payload.model_dump()
        if payload.cooperative_model != CooperativeModel.HYBRID:
            values["hybrid_customer_percent"] = None

        result = await db.execute(
            select(DividendScheduleSettings).where(DividendScheduleSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = DividendScheduleSettings(tenant_id=tenant_id)
            db.add(row)

        for field, value in values.items():
            setattr(row, field, value)
        await db.flush()

        await log_event(
            db,
            AuditAction.DIVIDEND_SETTINGS_UPDATED,
            tenant_id=tenant_id,
            actor=actor,
            metadata=payload.model_dump(mode="json")
        )
        return row
