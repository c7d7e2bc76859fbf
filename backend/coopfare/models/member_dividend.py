"""
Member dividend model.

Per-member payout for one settled period.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.enums import MemberType
from backend.coopfare.models.settlement_enums import DividendStatus


class MemberDividend(Base):
    """
    Member Dividend model.

    Created PENDING by the distribution engine; moves to PAID when the
    matching commonwealth distribution is recorded.
    """
    __tablename__ = "member_dividends"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    settlement_id = Column(Integer, ForeignKey('period_settlements.id'), nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    period_id = Column(String(7), nullable=False, index=True)

    member_type = Column(Enum(MemberType), nullable=False)
    member_id = Column(Integer, nullable=False, index=True)
    weight = Column(Numeric(12, 4), nullable=False)  # patronage used for the pro-rata share

    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(DividendStatus), default=DividendStatus.PENDING, nullable=False, index=True)
    distribution_id = Column(Integer, ForeignKey('cooperative_commonwealth_distributions.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("settlement_id", "member_type", "member_id", name="uq_member_dividend"),
    )

    def __repr__(self):
        return f"<MemberDividend(period='{self.period_id}', {self.member_type.value}={self.member_id}, amount={self.amount})>"
