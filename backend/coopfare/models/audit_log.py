"""
Audit Log Database Model.

Tracks settings changes and settlement transitions for tenant administrators.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - FARE_SETTINGS_UPDATED / FARE_TIERS_REPLACED / DIVIDEND_SETTINGS_UPDATED
    - TRIP_FARE_CALCULATED
    - SETTLEMENT_* transitions and ledger writes
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, index=True, nullable=True)

    # Who performed the action (None for the scheduler)
    actor = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', tenant={self.tenant_id})>"
