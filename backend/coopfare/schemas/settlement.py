"""
Settlement Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.coopfare.models.enums import SettlementFrequency
from backend.coopfare.models.settlement_enums import SettlementStatus


class PeriodSettlementResponse(BaseModel):
    """Schema for displaying a period settlement."""
    id: int
    tenant_id: int
    period_id: str
    frequency: SettlementFrequency
    period_start: datetime
    period_end: datetime
    status: SettlementStatus
    locked_by: Optional[str]
    locked_at: Optional[datetime]

    revenue: Optional[Decimal]
    costs: Optional[Decimal]
    surplus: Optional[Decimal]
    trip_count: Optional[int]
    flagged_trip_count: Optional[int]

    reserves_amount: Optional[Decimal]
    business_amount: Optional[Decimal]
    dividend_pool: Optional[Decimal]

    contribution_id: Optional[int]
    distributed_amount: Optional[Decimal]
    retained_amount: Optional[Decimal]

    failure_reason: Optional[str]
    attempts: int
    settled_at: Optional[datetime]

    class Config:
        from_attributes = True


class MarkPaidResponse(BaseModel):
    period_id: str
    paid_count: int
    paid_amount: Decimal
