"""
Operating cost model.

Recorded costs (wages paid, fuel bought, vehicle and overhead bills) written
by the payroll and expense systems. The period aggregator sums them.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class OperatingCost(Base):
    __tablename__ = "operating_costs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)

    category = Column(String(50), nullable=False)  # wages, fuel, vehicle, overhead
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=True)

    incurred_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="amount_non_negative"),
    )

    def __repr__(self):
        return f"<OperatingCost(id={self.id}, category='{self.category}', amount={self.amount})>"
