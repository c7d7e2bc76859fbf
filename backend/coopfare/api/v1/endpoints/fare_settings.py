"""
Fare Settings API Endpoints.

Tenant cost model, passenger-count tiers and the fare ladder preview.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from backend.coopfare.core.config import settings
from backend.coopfare.core.dependencies import get_actor
from backend.coopfare.db.session import get_db
from backend.coopfare.domain.fares.fare_calculator import (
    FareCalculator,
    break_even_passengers,
    build_fare_ladder,
    minimum_viable_passengers,
)
from backend.coopfare.schemas.fare import (
    FarePreviewRequest,
    FarePreviewResponse,
    FarePreviewRow,
    FareSettingsResponse,
    FareSettingsUpdate,
    FareTierResponse,
    FareTiersUpdate,
)
from backend.coopfare.services.settings_service import SettingsService

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Fare Settings"])


@router.put("/fare-settings", response_model=FareSettingsResponse)
async def update_fare_settings(
    payload: FareSettingsUpdate,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Create or replace the tenant's cost model.
    """
    row = await SettingsService.upsert_fare_settings(db, tenant_id, payload, actor=actor)
    await db.commit()
    await db.refresh(row)
    return row


@router.get("/fare-settings", response_model=FareSettingsResponse)
async def get_fare_settings(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    db: AsyncSession = Depends(get_db)
):
    return await SettingsService.get_fare_settings(db, tenant_id)


@router.put("/fare-tiers", response_model=List[FareTierResponse])
async def replace_fare_tiers(
    payload: FareTiersUpdate,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Replace the tier table.

    The table must start at 1 passenger, have no gaps or overlaps and end
    with an open-ended tier; otherwise 422 and nothing changes.
    """
    tiers = await SettingsService.replace_fare_tiers(db, tenant_id, payload, actor=actor)
    await db.commit()
    return tiers


@router.get("/fare-tiers", response_model=List[FareTierResponse])
async def list_fare_tiers(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    db: AsyncSession = Depends(get_db)
):
    return await SettingsService.get_fare_tiers(db, tenant_id)


@router.post("/fare-preview", response_model=FarePreviewResponse)
async def preview_fares(
    payload: FarePreviewRequest,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Per-seat fare of a sample trip for 1..max_passengers riders, with the
    rider counts needed to break even and to reach the target fare.
    """
    fare_settings = await FareCalculator.load_settings(db, tenant_id)
    ladder = build_fare_ladder(
        fare_settings,
        payload.distance_miles,
        payload.duration_hours,
        payload.max_passengers,
    )

    first = ladder[0]
    return FarePreviewResponse(
        components=first.components.as_dict(),
        base_cost=first.base_cost,
        currency=settings.currency_code,
        target_fare=payload.target_fare,
        break_even_passengers=break_even_passengers(ladder),
        minimum_viable_passengers=minimum_viable_passengers(first.base_cost, payload.target_fare),
        rows=[
            FarePreviewRow(
                passenger_count=quote.passenger_count,
                tier_id=quote.tier.id,
                tier_label=quote.tier.label,
                multiplier=quote.tier.multiplier,
                decrement=quote.tier.decrement,
                per_passenger_share=quote.per_passenger_share,
                fare=quote.fare,
                total_revenue=quote.total_revenue,
                is_break_even=quote.is_break_even,
                is_minimum_viable=quote.fare <= payload.target_fare,
                overlap_warning=quote.overlap_warning,
            )
            for quote in ladder
        ],
    )
