"""
Settlement API Endpoints.

Manual period runs, status, operator recovery actions and dividends.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from backend.coopfare.core.dependencies import get_actor
from backend.coopfare.db.session import get_db
from backend.coopfare.domain.money import ZERO, to_money
from backend.coopfare.domain.settlement import controller, distribution
from backend.coopfare.domain.settlement.periods import parse_period
from backend.coopfare.models.enums import MemberType
from backend.coopfare.schemas.dividend import MemberDividendResponse
from backend.coopfare.schemas.settlement import MarkPaidResponse, PeriodSettlementResponse
from backend.coopfare.services.audit import AuditAction, log_event

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Settlements"])


@router.post("/periods/{period_id}/run", response_model=PeriodSettlementResponse)
async def run_period(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Settle a period now.

    409 if the period is already settled, locked by another run or
    overlaps a period that is running or settled.
    """
    return await controller.run_period(db, tenant_id, period_id, actor=actor)


@router.get("/periods/{period_id}", response_model=PeriodSettlementResponse)
async def get_period_status(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    db: AsyncSession = Depends(get_db)
):
    return await controller.get_settlement_status(db, tenant_id, period_id)


@router.post("/periods/{period_id}/cancel", response_model=PeriodSettlementResponse)
async def cancel_period(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Cancel a run that is still AGGREGATING or ALLOCATED.
    """
    return await controller.cancel_settlement(db, tenant_id, period_id, actor=actor)


@router.post("/periods/{period_id}/release-lock", response_model=PeriodSettlementResponse)
async def release_period_lock(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Clear a lock left behind by a run that died. Only after the lock TTL.
    """
    return await controller.release_stale_lock(db, tenant_id, period_id, actor=actor)


@router.post("/periods/{period_id}/mark-paid", response_model=MarkPaidResponse)
async def mark_period_paid(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Pay every PENDING dividend of a settled period out of the fund.
    """
    period = parse_period(period_id)
    paid = await distribution.mark_dividends_paid(db, tenant_id, period.period_id)
    paid_amount = sum((to_money(dividend.amount) for dividend in paid), ZERO)

    if paid:
        await log_event(
            db,
            AuditAction.DIVIDENDS_PAID,
            tenant_id=tenant_id,
            actor=actor,
            metadata={"period_id": period.period_id, "count": len(paid), "amount": str(paid_amount)}
        )
    await db.commit()

    return MarkPaidResponse(period_id=period.period_id, paid_count=len(paid), paid_amount=paid_amount)


@router.get("/periods/{period_id}/dividends", response_model=List[MemberDividendResponse])
async def list_period_dividends(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    period_id: str = Path(..., description="YYYY-MM or YYYY-Qn"),
    db: AsyncSession = Depends(get_db)
):
    period = parse_period(period_id)
    return await distribution.list_period_dividends(db, tenant_id, period.period_id)


@router.get("/members/{member_type}/{member_id}/dividends", response_model=List[MemberDividendResponse])
async def list_member_dividends(
    member_type: MemberType,
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    member_id: int = Path(..., ge=1, description="Customer or driver ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Dividend history of one member, newest period first.
    """
    return await distribution.list_member_dividends(db, tenant_id, member_type, member_id)
