"""
Commonwealth fund ledger models.

Append-only record of money entering and leaving a tenant's cooperative
commonwealth fund.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.settlement_enums import ContributionSource, DistributionStatus


class CommonwealthFund(Base):
    """
    Commonwealth Fund model.

    There is no balance column: the balance is always derived as
    sum(contributions) - sum(distributions) by the ledger.
    """
    __tablename__ = "cooperative_commonwealth_fund"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<CommonwealthFund(id={self.id}, tenant_id={self.tenant_id})>"


class CommonwealthContribution(Base):
    """
    Inflow into the fund.

    At most one per (fund, period); corrections carry no period.
    """
    __tablename__ = "cooperative_commonwealth_contributions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    fund_id = Column(Integer, ForeignKey('cooperative_commonwealth_fund.id'), nullable=False, index=True)
    period_id = Column(String(7), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    source = Column(Enum(ContributionSource), default=ContributionSource.SURPLUS_ALLOCATION, nullable=False)
    note = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("fund_id", "period_id", name="uq_contribution_fund_period"),
        CheckConstraint("amount > 0", name="contribution_positive"),
    )

    def __repr__(self):
        return f"<CommonwealthContribution(fund_id={self.fund_id}, period='{self.period_id}', amount={self.amount})>"


class CommonwealthDistribution(Base):
    """Outflow from the fund to a recipient (member payout)."""
    __tablename__ = "cooperative_commonwealth_distributions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    fund_id = Column(Integer, ForeignKey('cooperative_commonwealth_fund.id'), nullable=False, index=True)
    period_id = Column(String(7), nullable=True, index=True)

    recipient_type = Column(String(20), nullable=False)
    recipient_id = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(DistributionStatus), default=DistributionStatus.COMPLETED, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="distribution_positive"),
    )

    def __repr__(self):
        return f"<CommonwealthDistribution(fund_id={self.fund_id}, {self.recipient_type}={self.recipient_id}, amount={self.amount})>"
