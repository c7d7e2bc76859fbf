"""
Commonwealth Fund Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List


class CorrectionCreate(BaseModel):
    """Schema for an out-of-band correction contribution."""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    note: str = Field(..., min_length=1, max_length=255)


class LedgerEntryResponse(BaseModel):
    kind: str
    entry_id: int
    period_id: Optional[str]
    amount: Decimal
    created_at: datetime
    source: Optional[str] = None
    recipient_type: Optional[str] = None
    recipient_id: Optional[int] = None
    note: Optional[str] = None


class CommonwealthResponse(BaseModel):
    tenant_id: int
    fund_id: Optional[int]
    currency: str
    balance: Decimal
    entries: List[LedgerEntryResponse]
