"""
Period Settlement database model.

State of one tenant-period settlement run. The row doubles as the
(tenant, period) lock.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.enums import SettlementFrequency
from backend.coopfare.models.settlement_enums import SettlementStatus


class PeriodSettlement(Base):
    """
    Period Settlement model.

    Flow: OPEN -> AGGREGATING -> ALLOCATED -> DISTRIBUTING -> SETTLED,
    with NO_SURPLUS, FAILED and CANCELLED as the other terminal states.
    One row per (tenant, period); a retry re-opens the same row.
    """
    __tablename__ = "period_settlements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, nullable=False, index=True)
    period_id = Column(String(7), nullable=False)
    frequency = Column(Enum(SettlementFrequency), nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)

    status = Column(Enum(SettlementStatus), default=SettlementStatus.OPEN, nullable=False, index=True)

    # Lock
    locked_by = Column(String(64), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)

    # Aggregation
    revenue = Column(Numeric(12, 2), nullable=True)
    costs = Column(Numeric(12, 2), nullable=True)
    surplus = Column(Numeric(12, 2), nullable=True)
    trip_count = Column(Integer, nullable=True)
    flagged_trip_count = Column(Integer, nullable=True)

    # Allocation
    reserves_amount = Column(Numeric(12, 2), nullable=True)
    business_amount = Column(Numeric(12, 2), nullable=True)
    dividend_pool = Column(Numeric(12, 2), nullable=True)

    # Distribution
    contribution_id = Column(Integer, nullable=True)
    distributed_amount = Column(Numeric(12, 2), nullable=True)
    retained_amount = Column(Numeric(12, 2), nullable=True)

    failure_reason = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "period_id", name="uq_settlement_tenant_period"),
    )

    def __repr__(self):
        return f"<PeriodSettlement(tenant_id={self.tenant_id}, period='{self.period_id}', status='{self.status.value}')>"
