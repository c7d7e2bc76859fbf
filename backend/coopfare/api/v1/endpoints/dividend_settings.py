"""
Dividend Settings API Endpoints.

Settlement frequency, surplus allocation percentages and cooperative model.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from backend.coopfare.core.dependencies import get_actor
from backend.coopfare.db.session import get_db
from backend.coopfare.schemas.dividend import DividendSettingsResponse, DividendSettingsUpdate
from backend.coopfare.services.settings_service import SettingsService

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Dividend Settings"])


@router.put("/dividend-settings", response_model=DividendSettingsResponse)
async def update_dividend_settings(
    payload: DividendSettingsUpdate,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Create or replace the tenant's dividend schedule.

    Rejected with 422 (and the offending total) unless
    reserves + business + dividend percentages equal exactly 100.
    """
    row = await SettingsService.upsert_dividend_settings(db, tenant_id, payload, actor=actor)
    await db.commit()
    await db.refresh(row)
    return row


@router.get("/dividend-settings", response_model=DividendSettingsResponse)
async def get_dividend_settings(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    db: AsyncSession = Depends(get_db)
):
    return await SettingsService.get_dividend_settings(db, tenant_id)
