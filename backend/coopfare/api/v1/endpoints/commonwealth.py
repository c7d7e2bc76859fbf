"""
Commonwealth Fund API Endpoints.

Derived balance, ledger entries and manual corrections.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.coopfare.core.config import settings
from backend.coopfare.core.dependencies import get_actor
from backend.coopfare.db.session import get_db
from backend.coopfare.domain.money import ZERO
from backend.coopfare.domain.settlement import ledger
from backend.coopfare.schemas.commonwealth import CommonwealthResponse, CorrectionCreate, LedgerEntryResponse
from backend.coopfare.services.audit import AuditAction, log_event

router = APIRouter(prefix="/tenants/{tenant_id}/commonwealth", tags=["Commonwealth Fund"])


async def _fund_view(db: AsyncSession, tenant_id: int) -> CommonwealthResponse:
    fund = await ledger.get_fund(db, tenant_id)
    entries = await ledger.get_ledger(db, tenant_id)
    return CommonwealthResponse(
        tenant_id=tenant_id,
        fund_id=fund.id if fund else None,
        currency=settings.currency_code,
        balance=await ledger.get_fund_balance(db, fund.id) if fund else ZERO,
        entries=[LedgerEntryResponse(**entry._asdict()) for entry in entries],
    )


@router.get("", response_model=CommonwealthResponse)
async def get_commonwealth_fund(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Fund balance (contributions minus distributions) with its ledger.
    """
    return await _fund_view(db, tenant_id)


@router.post("/corrections", response_model=CommonwealthResponse, status_code=status.HTTP_201_CREATED)
async def record_correction(
    payload: CorrectionCreate,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Append an out-of-band correction contribution. Entries are never edited.
    """
    contribution = await ledger.record_correction(db, tenant_id, payload.amount, payload.note)
    await log_event(
        db,
        AuditAction.CORRECTION_RECORDED,
        tenant_id=tenant_id,
        actor=actor,
        metadata={"contribution_id": contribution.id, "amount": str(payload.amount), "note": payload.note}
    )
    await db.commit()
    return await _fund_view(db, tenant_id)
