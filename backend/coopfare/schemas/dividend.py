"""
Dividend Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.coopfare.models.enums import CooperativeModel, MemberType, SettlementFrequency
from backend.coopfare.models.settlement_enums import DividendStatus


class DividendSettingsUpdate(BaseModel):
    """
    Schema for replacing a tenant's dividend schedule.

    The three percentages are checked to total 100 by the settings service
    so the rejection can report the offending total.
    """
    enabled: bool = True
    frequency: SettlementFrequency = SettlementFrequency.MONTHLY
    reserves_percent: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    business_percent: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    dividend_percent: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    cooperative_model: CooperativeModel = CooperativeModel.PASSENGER
    hybrid_customer_percent: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    auto_distribute: bool = False
    notification_email: Optional[str] = Field(None, max_length=255)


class DividendSettingsResponse(BaseModel):
    tenant_id: int
    enabled: bool
    frequency: SettlementFrequency
    reserves_percent: Decimal
    business_percent: Decimal
    dividend_percent: Decimal
    cooperative_model: CooperativeModel
    hybrid_customer_percent: Optional[Decimal]
    auto_distribute: bool
    notification_email: Optional[str]
    updated_at: datetime

    class Config:
        from_attributes = True


class MemberDividendResponse(BaseModel):
    """Schema for displaying a member dividend."""
    id: int
    period_id: str
    member_type: MemberType
    member_id: int
    weight: Decimal
    amount: Decimal
    status: DividendStatus
    distribution_id: Optional[int]
    paid_at: Optional[datetime]

    class Config:
        from_attributes = True
