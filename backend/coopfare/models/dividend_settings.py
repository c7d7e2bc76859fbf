"""
Dividend schedule settings model.

Tenant allocation policy: how often to settle and how to split surplus.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.enums import CooperativeModel, SettlementFrequency


class DividendScheduleSettings(Base):
    """
    Dividend Schedule Settings model.

    reserves% + business% + dividend% must be exactly 100. The service layer
    rejects violating writes with the offending totals; the CHECK constraint
    backs it up.
    """
    __tablename__ = "dividend_schedule_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, unique=True, index=True)

    enabled = Column(Boolean, default=True, nullable=False)
    frequency = Column(Enum(SettlementFrequency), default=SettlementFrequency.MONTHLY, nullable=False)

    # Allocation
    reserves_percent = Column(Numeric(5, 2), nullable=False)
    business_percent = Column(Numeric(5, 2), nullable=False)
    dividend_percent = Column(Numeric(5, 2), nullable=False)

    # Distribution
    cooperative_model = Column(Enum(CooperativeModel), default=CooperativeModel.PASSENGER, nullable=False)
    hybrid_customer_percent = Column(Numeric(5, 2), nullable=True)  # hybrid only
    auto_distribute = Column(Boolean, default=False, nullable=False)
    notification_email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "reserves_percent + business_percent + dividend_percent = 100",
            name="allocation_percentages_sum_100"
        ),
    )

    def __repr__(self):
        return (
            f"<DividendScheduleSettings(tenant_id={self.tenant_id}, "
            f"{self.reserves_percent}/{self.business_percent}/{self.dividend_percent})>"
        )
