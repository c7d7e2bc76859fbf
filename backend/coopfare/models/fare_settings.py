"""
Fare calculation settings model.

Tenant-level cost model used to turn a trip's measures into cost components.
"""

from sqlalchemy import Column, Integer, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from backend.coopfare.db.session import Base


class FareCalculationSettings(Base):
    """
    Fare Calculation Settings model.

    One active row per tenant. Written by tenant administrators,
    read-only to the engine.
    """
    __tablename__ = "fare_calculation_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, unique=True, index=True)

    # Cost rates
    driver_hourly_rate = Column(Numeric(10, 2), nullable=False)  # wage per hour
    fuel_rate_per_mile = Column(Numeric(10, 4), nullable=False)
    vehicle_depreciation_per_mile = Column(Numeric(10, 4), nullable=False)
    overhead_percent = Column(Numeric(5, 2), nullable=False)  # % of direct costs

    # Fare bounds (optional)
    minimum_fare = Column(Numeric(10, 2), nullable=True)
    maximum_fare = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "driver_hourly_rate >= 0 AND fuel_rate_per_mile >= 0 "
            "AND vehicle_depreciation_per_mile >= 0 AND overhead_percent >= 0",
            name="rates_non_negative"
        ),
    )

    def __repr__(self):
        return f"<FareCalculationSettings(tenant_id={self.tenant_id}, hourly={self.driver_hourly_rate})>"
