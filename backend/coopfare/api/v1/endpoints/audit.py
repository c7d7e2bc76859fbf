"""
Audit Trail API Endpoints.

Settings changes and settlement transitions recorded for a tenant.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.coopfare.db.session import get_db
from backend.coopfare.schemas.audit import AuditLogResponse, AuditTrailResponse
from backend.coopfare.services.audit import get_audit_trail

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Audit"])


@router.get("/audit-log", response_model=AuditTrailResponse)
async def get_tenant_audit_log(
    tenant_id: int = Path(..., ge=1, description="Tenant ID"),
    action: Optional[str] = Query(None, description="Filter by action"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """
    Most recent audit entries first.
    """
    logs = await get_audit_trail(db=db, tenant_id=tenant_id, action=action, limit=limit)

    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )
