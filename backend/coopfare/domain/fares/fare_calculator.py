"""
Fare Calculator (Domain Logic).

Turns a finalized trip's measures into cost components, splits the base
cost across passengers and applies the passenger-count tier discount.
Trip fare records are append-only: re-pricing writes a new version.
"""

import logging
from decimal import Decimal, ROUND_CEILING
from typing import Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.coopfare.core.exceptions import (
    FareSettingsError,
    InvalidCostInputError,
    ResourceNotFoundError,
    TripNotFinalizedError,
)
from backend.coopfare.domain.fares.tier_resolver import TierResolver
from backend.coopfare.domain.money import ZERO, allocate_pro_rata, to_decimal, to_money
from backend.coopfare.domain.snapshots import FareSettingsSnapshot, FareTierSnapshot
from backend.coopfare.models.fare_settings import FareCalculationSettings
from backend.coopfare.models.trip import Trip
from backend.coopfare.models.trip_enums import TripStatus
from backend.coopfare.models.trip_fare_record import TripFareRecord
from backend.coopfare.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

COMPONENT_NAMES = ("wage", "fuel", "vehicle", "overhead")


class CostComponents(NamedTuple):
    wage: Decimal
    fuel: Decimal
    vehicle: Decimal
    overhead: Decimal

    @property
    def base(self) -> Decimal:
        return self.wage + self.fuel + self.vehicle + self.overhead

    def as_dict(self) -> Dict[str, Decimal]:
        return dict(zip(COMPONENT_NAMES, self))


class FareQuote(NamedTuple):
    passenger_count: int
    components: CostComponents
    base_cost: Decimal
    per_passenger_share: Decimal
    tier: FareTierSnapshot
    fare: Decimal
    total_revenue: Decimal
    breakdown: Dict[str, Decimal]
    is_break_even: bool  # fares collected cover the base cost
    overlap_warning: Optional[str] = None


def derive_cost_components(
    fare_settings: FareSettingsSnapshot,
    distance_miles,
    duration_hours,
) -> CostComponents:
    """
    Apply the tenant cost model to a trip's distance and duration.

    Overhead is a percentage of the three direct costs.

    Raises:
        InvalidCostInputError: negative distance or duration
    """
    distance = to_decimal(distance_miles)
    duration = to_decimal(duration_hours)
    if distance < 0 or duration < 0:
        raise InvalidCostInputError(
            "Trip distance and duration must be non-negative",
            details={"distance_miles": str(distance), "duration_hours": str(duration)}
        )

    wage = to_money(to_decimal(fare_settings.driver_hourly_rate) * duration)
    fuel = to_money(to_decimal(fare_settings.fuel_rate_per_mile) * distance)
    vehicle = to_money(to_decimal(fare_settings.vehicle_depreciation_per_mile) * distance)
    overhead = to_money((wage + fuel + vehicle) * to_decimal(fare_settings.overhead_percent) / Decimal("100"))

    return CostComponents(wage=wage, fuel=fuel, vehicle=vehicle, overhead=overhead)


def calculate_fare(
    components: CostComponents,
    passenger_count: int,
    tier: FareTierSnapshot,
    minimum_fare: Optional[Decimal] = None,
    maximum_fare: Optional[Decimal] = None,
) -> FareQuote:
    """
    Price one passenger seat.

    share = base / passengers (half-even to the cent)
    fare  = max(0, share * multiplier - decrement), then clamped to the
            tenant's optional minimum and maximum fare.

    Raises:
        InvalidCostInputError: a negative component or fewer than 1 passenger
    """
    for name, amount in components.as_dict().items():
        if amount < 0:
            raise InvalidCostInputError(
                f"Cost component '{name}' is negative ({amount})",
                details={"component": name, "amount": str(amount)}
            )
    if passenger_count < 1:
        raise InvalidCostInputError(
            f"Passenger count must be at least 1, got {passenger_count}",
            details={"passenger_count": passenger_count}
        )

    base_cost = components.base
    share = to_money(base_cost / passenger_count)

    fare = to_money(share * to_decimal(tier.multiplier) - to_decimal(tier.decrement))
    if fare < 0:
        fare = ZERO
    if minimum_fare is not None and fare < to_decimal(minimum_fare):
        fare = to_money(minimum_fare)
    if maximum_fare is not None and fare > to_decimal(maximum_fare):
        fare = to_money(maximum_fare)

    # What each component contributes to the passenger's fare
    weights = [(name, amount) for name, amount in components.as_dict().items() if amount > 0]
    breakdown = {name: ZERO for name in COMPONENT_NAMES}
    if weights:
        breakdown.update(
            allocate_pro_rata(fare, weights, tie_break=COMPONENT_NAMES.index)
        )

    return FareQuote(
        passenger_count=passenger_count,
        components=components,
        base_cost=base_cost,
        per_passenger_share=share,
        tier=tier,
        fare=fare,
        total_revenue=fare * passenger_count,
        breakdown=breakdown,
        is_break_even=fare * passenger_count >= base_cost,
    )


def build_fare_ladder(
    fare_settings: FareSettingsSnapshot,
    distance_miles,
    duration_hours,
    max_passengers: int,
) -> List[FareQuote]:
    """
    Per-seat fare for every passenger count from 1 to max_passengers.

    Lets an administrator see how the tier table plays out on a sample trip
    before saving it.
    """
    components = derive_cost_components(fare_settings, distance_miles, duration_hours)
    ladder = []
    for passenger_count in range(1, max_passengers + 1):
        resolution = TierResolver.resolve(fare_settings.tiers, passenger_count)
        quote = calculate_fare(
            components,
            passenger_count,
            resolution.tier,
            fare_settings.minimum_fare,
            fare_settings.maximum_fare,
        )
        ladder.append(quote._replace(overlap_warning=resolution.overlap_warning))
    return ladder


def break_even_passengers(ladder: Sequence[FareQuote]) -> Optional[int]:
    """Fewest riders on the ladder whose fares cover the base cost, or None."""
    for quote in ladder:
        if quote.is_break_even:
            return quote.passenger_count
    return None


def minimum_viable_passengers(base_cost, target_fare) -> int:
    """
    Riders needed before an even split of the base cost drops to target_fare.

    Raises:
        InvalidCostInputError: target_fare is not positive
    """
    target_fare = to_decimal(target_fare)
    if target_fare <= 0:
        raise InvalidCostInputError(
            f"Target fare must be positive, got {target_fare}",
            details={"target_fare": str(target_fare)}
        )
    needed = (to_decimal(base_cost) / target_fare).to_integral_value(rounding=ROUND_CEILING)
    return max(1, int(needed))


class FareCalculator:

    @staticmethod
    async def load_settings(db: AsyncSession, tenant_id: int) -> FareSettingsSnapshot:
        """
        Snapshot of the tenant cost model and tier table.

        Raises:
            FareSettingsError: tenant has no cost model configured
        """
        result = await db.execute(
            select(FareCalculationSettings).where(FareCalculationSettings.tenant_id == tenant_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise FareSettingsError(
                f"Tenant {tenant_id} has no fare calculation settings",
                details={"tenant_id": tenant_id}
            )

        tiers = await TierResolver.load_tiers(db, tenant_id)
        return FareSettingsSnapshot(
            tenant_id=row.tenant_id,
            driver_hourly_rate=row.driver_hourly_rate,
            fuel_rate_per_mile=row.fuel_rate_per_mile,
            vehicle_depreciation_per_mile=row.vehicle_depreciation_per_mile,
            overhead_percent=row.overhead_percent,
            minimum_fare=row.minimum_fare,
            maximum_fare=row.maximum_fare,
            tiers=tuple(tiers),
        )

    @staticmethod
    async def get_latest_record(db: AsyncSession, trip_id: int) -> Optional[TripFareRecord]:
        result = await db.execute(
            select(TripFareRecord)
            .where(TripFareRecord.trip_id == trip_id)
            .order_by(TripFareRecord.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_versions(db: AsyncSession, trip_id: int) -> List[TripFareRecord]:
        result = await db.execute(
            select(TripFareRecord)
            .where(TripFareRecord.trip_id == trip_id)
            .order_by(TripFareRecord.version)
        )
        return list(result.scalars().all())

    @staticmethod
    async def compute_trip_fare(
        db: AsyncSession,
        trip_id: int,
        fare_settings: Optional[FareSettingsSnapshot] = None,
        actor: Optional[str] = None,
    ) -> TripFareRecord:
        """
        Price a completed trip and persist the result.

        Flow:
        1. Validate Trip State (COMPLETED)
        2. Derive cost components from the tenant cost model
        3. Resolve the passenger-count tier
        4. Idempotency Check (latest version with identical inputs)
        5. Append a new TripFareRecord version

        Args:
            db: Database session (caller commits)
            trip_id: ID of the completed trip
            fare_settings: Snapshot to price with; loaded fresh if omitted
            actor: Recorded on the audit entry

        Returns:
            Latest TripFareRecord for the trip
        """
        trip = await db.get(Trip, trip_id)
        if not trip:
            raise ResourceNotFoundError("Trip", trip_id)

        if trip.status != TripStatus.COMPLETED or trip.completed_at is None:
            raise TripNotFinalizedError(trip_id, trip.status.value)

        if fare_settings is None:
            fare_settings = await FareCalculator.load_settings(db, trip.tenant_id)

        components = derive_cost_components(fare_settings, trip.distance_miles, trip.duration_hours)
        if trip.passenger_count < 1:
            raise InvalidCostInputError(
                f"Trip {trip_id} has no passengers",
                details={"trip_id": trip_id, "passenger_count": trip.passenger_count}
            )
        resolution = TierResolver.resolve(fare_settings.tiers, trip.passenger_count)
        quote = calculate_fare(
            components,
            trip.passenger_count,
            resolution.tier,
            fare_settings.minimum_fare,
            fare_settings.maximum_fare,
        )

        latest = await FareCalculator.get_latest_record(db, trip_id)
        if latest and _same_inputs(latest, quote):
            return latest

        record = TripFareRecord(
            trip_id=trip.id,
            tenant_id=trip.tenant_id,
            version=(latest.version + 1) if latest else 1,
            passenger_count=quote.passenger_count,
            wage_cost=components.wage,
            fuel_cost=components.fuel,
            vehicle_cost=components.vehicle,
            overhead_cost=components.overhead,
            base_cost=quote.base_cost,
            tier_id=resolution.tier.id,
            multiplier=resolution.tier.multiplier,
            decrement=resolution.tier.decrement,
            per_passenger_share=quote.per_passenger_share,
            computed_fare=quote.fare,
            total_revenue=quote.total_revenue,
            fare_breakdown={name: str(amount) for name, amount in quote.breakdown.items()},
            trip_completed_at=trip.completed_at,
        )
        db.add(record)
        await db.flush()

        await log_event(
            db,
            AuditAction.TRIP_FARE_CALCULATED,
            tenant_id=trip.tenant_id,
            actor=actor,
            metadata={
                "trip_id": trip.id,
                "version": record.version,
                "fare": str(quote.fare),
                "tier_id": resolution.tier.id,
                "overlap_warning": resolution.overlap_warning,
            }
        )
        logger.info(
            "Trip fare computed",
            extra={"trip_id": trip.id, "tenant_id": trip.tenant_id, "version": record.version, "fare": str(quote.fare)}
        )

        return record


def _same_inputs(record: TripFareRecord, quote: FareQuote) -> bool:
    return (
        record.passenger_count == quote.passenger_count
        and to_money(record.wage_cost) == quote.components.wage
        and to_money(record.fuel_cost) == quote.components.fuel
        and to_money(record.vehicle_cost) == quote.components.vehicle
        and to_money(record.overhead_cost) == quote.components.overhead
        and to_decimal(record.multiplier) == to_decimal(quote.tier.multiplier)
        and to_money(record.decrement) == to_money(quote.tier.decrement)
        and to_money(record.computed_fare) == quote.fare
    )
