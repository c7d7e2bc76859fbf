"""
Immutable settings snapshots.

A period run loads tenant configuration once and passes these frozen
objects into every engine call, so a settings edit mid-run cannot change
the numbers of a settlement already in flight.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.coopfare.core.config import settings as app_settings
from backend.coopfare.core.exceptions import SettingsInvariantError
from backend.coopfare.domain.money import HUNDRED
from backend.coopfare.models.enums import CooperativeModel, MemberType, SettlementFrequency


def validate_allocation_percentages(reserves: Decimal, business: Decimal, dividend: Decimal) -> None:
    """Reject any allocation that does not total exactly 100."""
    for value in (reserves, business, dividend):
        if Decimal(value) < 0:
            raise SettingsInvariantError(reserves, business, dividend)
    if Decimal(reserves) + Decimal(business) + Decimal(dividend) != HUNDRED:
        raise SettingsInvariantError(reserves, business, dividend)


class FareTierSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[int] = None
    label: Optional[str] = None
    min_passengers: int
    max_passengers: Optional[int] = None
    multiplier: Decimal = Decimal("1")
    decrement: Decimal = Decimal("0.00")

    def contains(self, passenger_count: int) -> bool:
        if passenger_count < self.min_passengers:
            return False
        return self.max_passengers is None or passenger_count <= self.max_passengers


class FareSettingsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    tenant_id: int
    driver_hourly_rate: Decimal
    fuel_rate_per_mile: Decimal
    vehicle_depreciation_per_mile: Decimal
    overhead_percent: Decimal
    minimum_fare: Optional[Decimal] = None
    maximum_fare: Optional[Decimal] = None
    tiers: Tuple[FareTierSnapshot, ...] = ()


# Cooperative models, a closed tagged variant

class WorkerModel(BaseModel):
    """Drivers are the members."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["worker"] = "worker"

    @property
    def member_types(self) -> Tuple[MemberType, ...]:
        return (MemberType.DRIVER,)


class PassengerModel(BaseModel):
    """Customers are the members."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["passenger"] = "passenger"

    @property
    def member_types(self) -> Tuple[MemberType, ...]:
        return (MemberType.CUSTOMER,)


class HybridModel(BaseModel):
    """Customers and drivers share the pool by a configured ratio."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["hybrid"] = "hybrid"
    customer_percent: Decimal = Field(default_factory=lambda: app_settings.default_hybrid_customer_percent, ge=0, le=100)

    @property
    def driver_percent(self) -> Decimal:
        return HUNDRED - self.customer_percent

    @property
    def member_types(self) -> Tuple[MemberType, ...]:
        return (MemberType.CUSTOMER, MemberType.DRIVER)


CooperativeModelVariant = Annotated[
    Union[WorkerModel, PassengerModel, HybridModel],
    Field(discriminator="kind"),
]


def build_cooperative_model(model: CooperativeModel, hybrid_customer_percent: Optional[Decimal] = None):
    """Turn the stored enum + optional ratio into the tagged variant."""
    if model == CooperativeModel.WORKER:
        return WorkerModel()
    if model == CooperativeModel.PASSENGER:
        return PassengerModel()
    if hybrid_customer_percent is None:
        return HybridModel()
    return HybridModel(customer_percent=hybrid_customer_percent)


class DividendSettingsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: int
    enabled: bool = True
    frequency: SettlementFrequency = SettlementFrequency.MONTHLY
    reserves_percent: Decimal
    business_percent: Decimal
    dividend_percent: Decimal
    auto_distribute: bool = False
    notification_email: Optional[str] = None
    cooperative_model: CooperativeModelVariant = Field(default_factory=PassengerModel)
    loaded_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _percentages_total_100(self):
        validate_allocation_percentages(self.reserves_percent, self.business_percent, self.dividend_percent)
        return self
