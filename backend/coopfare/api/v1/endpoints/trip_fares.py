"""
Trip Fare API Endpoints.

Prices a finalized trip and exposes its fare history.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from backend.coopfare.core.dependencies import get_actor
from backend.coopfare.core.exceptions import ResourceNotFoundError
from backend.coopfare.db.session import get_db
from backend.coopfare.domain.fares.fare_calculator import FareCalculator
from backend.coopfare.schemas.fare import TripFareResponse

router = APIRouter(prefix="/trips", tags=["Trip Fares"])


@router.post("/{trip_id}/fare", response_model=TripFareResponse)
async def compute_trip_fare(
    trip_id: int = Path(..., ge=1, description="Trip ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Price a completed trip.

    Repeating the call with unchanged inputs returns the same record;
    a changed passenger count produces the next version.
    """
    record = await FareCalculator.compute_trip_fare(db, trip_id, actor=actor)
    await db.commit()
    await db.refresh(record)
    return record


@router.get("/{trip_id}/fare", response_model=TripFareResponse)
async def get_trip_fare(
    trip_id: int = Path(..., ge=1, description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Latest fare version of a trip.
    """
    record = await FareCalculator.get_latest_record(db, trip_id)
    if not record:
        raise ResourceNotFoundError("TripFareRecord", trip_id)
    return record


@router.get("/{trip_id}/fare/versions", response_model=List[TripFareResponse])
async def list_trip_fare_versions(
    trip_id: int = Path(..., ge=1, description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    return await FareCalculator.list_versions(db, trip_id)
