"""
Audit logging service for settings changes and settlement transitions.

Provides a per-tenant trail that administrators can inspect after a run.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.coopfare.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Configuration
    FARE_SETTINGS_UPDATED = "FARE_SETTINGS_UPDATED"
    FARE_TIERS_REPLACED = "FARE_TIERS_REPLACED"
    DIVIDEND_SETTINGS_UPDATED = "DIVIDEND_SETTINGS_UPDATED"

    # Fares
    TRIP_FARE_CALCULATED = "TRIP_FARE_CALCULATED"
    TRIP_FLAGGED = "TRIP_FLAGGED"

    # Settlement lifecycle
    SETTLEMENT_STARTED = "SETTLEMENT_STARTED"
    SETTLEMENT_ALLOCATED = "SETTLEMENT_ALLOCATED"
    SETTLEMENT_SETTLED = "SETTLEMENT_SETTLED"
    SETTLEMENT_NO_SURPLUS = "SETTLEMENT_NO_SURPLUS"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"
    SETTLEMENT_CANCELLED = "SETTLEMENT_CANCELLED"
    SETTLEMENT_LOCK_RELEASED = "SETTLEMENT_LOCK_RELEASED"

    # Ledger
    CONTRIBUTION_RECORDED = "CONTRIBUTION_RECORDED"
    CORRECTION_RECORDED = "CORRECTION_RECORDED"
    DIVIDENDS_PAID = "DIVIDENDS_PAID"


async def log_event(
    db: AsyncSession,
    action: str,
    tenant_id: Optional[int] = None,
    actor: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Log an event to the audit log.

    Only flushes: the entry commits or rolls back with the caller's
    transaction, so a failed settlement step leaves no audit record of it.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        tenant_id: Tenant the event belongs to
        actor: Who triggered it ("scheduler" or an operator name)
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor=actor,
        action=action,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if tenant_id is not None:
        query = query.where(AuditLog.tenant_id == tenant_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
