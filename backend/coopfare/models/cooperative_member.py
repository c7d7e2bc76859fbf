"""
Cooperative member directory models.

Both tables are maintained by the external member directory. The engine
reads them through the member eligibility provider.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.enums import MemberType


class CooperativeMember(Base):
    """
    Cooperative member.

    member_id is the customer id or driver id in the owning system.
    """
    __tablename__ = "cooperative_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    member_type = Column(Enum(MemberType), nullable=False)
    member_id = Column(Integer, nullable=False)
    membership_number = Column(String(50), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    dividend_eligible = Column(Boolean, default=True, nullable=False)

    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "member_type", "member_id", name="uq_cooperative_member"),
    )

    def __repr__(self):
        return f"<CooperativeMember(tenant_id={self.tenant_id}, {self.member_type.value}={self.member_id})>"


class MemberPatronage(Base):
    """
    Patronage weight of a member for one period.

    Trips taken for customers, hours worked for drivers. Computed by the
    caller's weighting function, never by the engine.
    """
    __tablename__ = "member_patronage"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    member_type = Column(Enum(MemberType), nullable=False)
    member_id = Column(Integer, nullable=False)
    period_id = Column(String(7), nullable=False, index=True)

    weight = Column(Numeric(12, 4), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "member_type", "member_id", "period_id", name="uq_member_patronage"),
    )
