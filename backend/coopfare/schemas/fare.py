"""
Fare Schemas.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, List


class FareSettingsUpdate(BaseModel):
    """Schema for replacing a tenant's cost model."""
    driver_hourly_rate: Decimal = Field(..., ge=0, decimal_places=2)
    fuel_rate_per_mile: Decimal = Field(..., ge=0, decimal_places=4)
    vehicle_depreciation_per_mile: Decimal = Field(..., ge=0, decimal_places=4)
    overhead_percent: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    minimum_fare: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    maximum_fare: Optional[Decimal] = Field(None, ge=0, decimal_places=2)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.minimum_fare is not None and self.maximum_fare is not None:
            if self.minimum_fare > self.maximum_fare:
                raise ValueError("minimum_fare cannot exceed maximum_fare")
        return self


class FareSettingsResponse(BaseModel):
    """Schema for displaying a tenant's cost model."""
    tenant_id: int
    driver_hourly_rate: Decimal
    fuel_rate_per_mile: Decimal
    vehicle_depreciation_per_mile: Decimal
    overhead_percent: Decimal
    minimum_fare: Optional[Decimal]
    maximum_fare: Optional[Decimal]
    updated_at: datetime

    class Config:
        from_attributes = True


class FareTierInput(BaseModel):
    label: Optional[str] = Field(None, max_length=50)
    min_passengers: int = Field(..., ge=1)
    max_passengers: Optional[int] = Field(None, ge=1)  # None = no upper bound
    multiplier: Decimal = Field(Decimal("1"), ge=0, decimal_places=4)
    decrement: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)


class FareTiersUpdate(BaseModel):
    """Full tier table; replaces the existing one."""
    tiers: List[FareTierInput] = Field(..., min_length=1)


class FareTierResponse(BaseModel):
    id: int
    label: Optional[str]
    min_passengers: int
    max_passengers: Optional[int]
    multiplier: Decimal
    decrement: Decimal

    class Config:
        from_attributes = True


class TripFareResponse(BaseModel):
    """Schema for displaying a trip fare record."""
    id: int
    trip_id: int
    tenant_id: int
    version: int
    passenger_count: int
    wage_cost: Decimal
    fuel_cost: Decimal
    vehicle_cost: Decimal
    overhead_cost: Decimal
    base_cost: Decimal
    tier_id: Optional[int]
    multiplier: Decimal
    decrement: Decimal
    per_passenger_share: Decimal
    computed_fare: Decimal
    total_revenue: Decimal
    fare_breakdown: Dict[str, Decimal]
    trip_completed_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class FarePreviewRequest(BaseModel):
    """Sample trip to price at every passenger count."""
    distance_miles: Decimal = Field(..., ge=0)
    duration_hours: Decimal = Field(..., ge=0)
    max_passengers: int = Field(8, ge=1, le=100)
    # Per-seat fare considered affordable
    target_fare: Decimal = Field(Decimal("3.00"), gt=0, decimal_places=2)


class FarePreviewRow(BaseModel):
    passenger_count: int
    tier_id: Optional[int]
    tier_label: Optional[str]
    multiplier: Decimal
    decrement: Decimal
    per_passenger_share: Decimal
    fare: Decimal
    total_revenue: Decimal
    is_break_even: bool
    is_minimum_viable: bool
    overlap_warning: Optional[str] = None


class FarePreviewResponse(BaseModel):
    components: Dict[str, Decimal]
    base_cost: Decimal
    currency: str
    target_fare: Decimal
    break_even_passengers: Optional[int]  # None when no count up to max_passengers covers the cost
    minimum_viable_passengers: int
    rows: List[FarePreviewRow]
