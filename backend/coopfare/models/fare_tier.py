"""
Fare tier database model.

Discount bands by passenger count.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class FareTier(Base):
    """
    Fare Tier model.

    Covers [min_passengers, max_passengers]; max NULL means unbounded.
    A tenant's active tiers (retired_at NULL) must be contiguous from 1 with
    no overlap, checked when the tier table is written. Replaced tiers are
    retired, never deleted.
    """
    __tablename__ = "fare_tiers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)

    label = Column(String(50), nullable=True)
    min_passengers = Column(Integer, nullable=False)
    max_passengers = Column(Integer, nullable=True)

    # Adjustment applied to the per-passenger share
    multiplier = Column(Numeric(6, 4), nullable=False, default=1)
    decrement = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    # Set when a newer table replaces this one; fare records keep pointing here
    retired_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("min_passengers >= 1", name="min_passengers_positive"),
        CheckConstraint("max_passengers IS NULL OR max_passengers >= min_passengers", name="range_ordered"),
        CheckConstraint("multiplier >= 0 AND decrement >= 0", name="adjustment_non_negative"),
    )

    def __repr__(self):
        upper = self.max_passengers if self.max_passengers is not None else "inf"
        return f"<FareTier(id={self.id}, range=[{self.min_passengers}, {upper}], multiplier={self.multiplier})>"
