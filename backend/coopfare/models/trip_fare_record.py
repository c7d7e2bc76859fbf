"""
Trip Fare Record database model.

Stores the computed fare for a trip along with its full cost breakdown.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class TripFareRecord(Base):
    """
    Trip Fare Record model.

    Append-only: re-pricing a trip writes version n+1 and the aggregator
    reads the highest version. NO updates or deletions allowed.
    """
    __tablename__ = "trip_fare_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    passenger_count = Column(Integer, nullable=False)

    # Cost components
    wage_cost = Column(Numeric(12, 2), nullable=False)
    fuel_cost = Column(Numeric(12, 2), nullable=False)
    vehicle_cost = Column(Numeric(12, 2), nullable=False)
    overhead_cost = Column(Numeric(12, 2), nullable=False)
    base_cost = Column(Numeric(12, 2), nullable=False)  # sum of components

    # Tier applied
    tier_id = Column(Integer, ForeignKey('fare_tiers.id'), nullable=True)
    multiplier = Column(Numeric(6, 4), nullable=False)
    decrement = Column(Numeric(10, 2), nullable=False)

    # Financials
    per_passenger_share = Column(Numeric(12, 2), nullable=False)  # base / passengers
    computed_fare = Column(Numeric(12, 2), nullable=False)  # per passenger
    total_revenue = Column(Numeric(12, 2), nullable=False)  # fare * passengers
    fare_breakdown = Column(JSON, nullable=False)  # each component's share of the fare

    trip_completed_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("trip_id", "version", name="uq_trip_fare_version"),
    )

    def __repr__(self):
        return f"<TripFareRecord(trip_id={self.trip_id}, v={self.version}, fare={self.computed_fare})>"
