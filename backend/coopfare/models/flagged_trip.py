"""
Flagged trip model.

Trips whose pricing was rejected during a period run. The run carries on
without them; an administrator fixes the inputs and re-prices.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class FlaggedTrip(Base):
    __tablename__ = "flagged_trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, nullable=False, index=True)
    trip_id = Column(Integer, nullable=False, index=True)
    period_id = Column(String(7), nullable=False, index=True)

    error_code = Column(String(50), nullable=False)
    error_message = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<FlaggedTrip(trip_id={self.trip_id}, period='{self.period_id}', code='{self.error_code}')>"
