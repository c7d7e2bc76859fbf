"""
Trip database model.

Trips are owned by the external record store; the engine only reads
finalized trips to price and settle them.
"""

from sqlalchemy import Column, Integer, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base
from backend.coopfare.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.

    Carries the raw measures the cost model is applied to. Passenger count
    changes while the trip is PLANNED; once COMPLETED the trip is finalized.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    tenant_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=True, index=True)

    # Load and measures
    passenger_count = Column(Integer, nullable=False, default=0)
    distance_miles = Column(Numeric(10, 2), nullable=False)
    duration_hours = Column(Numeric(6, 2), nullable=False)

    status = Column(Enum(TripStatus), default=TripStatus.PLANNED, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self):
        return f"<Trip(id={self.id}, tenant_id={self.tenant_id}, status='{self.status.value}')>"
