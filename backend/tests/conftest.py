"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.coopfare.main import app
from backend.coopfare.db.session import get_db, Base
import backend.coopfare.core.redis_client as redis_client_module
from backend.coopfare.models.cooperative_member import CooperativeMember, MemberPatronage
from backend.coopfare.models.dividend_settings import DividendScheduleSettings
from backend.coopfare.models.enums import CooperativeModel, MemberType, SettlementFrequency
from backend.coopfare.models.fare_settings import FareCalculationSettings
from backend.coopfare.models.fare_tier import FareTier
from backend.coopfare.models.operating_cost import OperatingCost
from backend.coopfare.models.trip import Trip
from backend.coopfare.models.trip_enums import TripStatus

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.lists = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def lpop(self, key):
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.lists = {}

    async def aclose(self):
        self._closed = True
        self.store = {}
        self.lists = {}


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(mock_redis, monkeypatch):
    """Point the app at the in-memory database and the Redis double."""
    monkeypatch.setattr(redis_client_module, "redis_client", mock_redis)

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


class Factory:
    """Seeds tenant configuration and the external record tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def fare_settings(
        self,
        tenant_id,
        driver_hourly_rate="100.00",
        fuel_rate_per_mile="0",
        vehicle_depreciation_per_mile="0",
        overhead_percent="0",
        minimum_fare=None,
        maximum_fare=None,
    ):
        row = FareCalculationSettings(
            tenant_id=tenant_id,
            driver_hourly_rate=Decimal(driver_hourly_rate),
            fuel_rate_per_mile=Decimal(fuel_rate_per_mile),
            vehicle_depreciation_per_mile=Decimal(vehicle_depreciation_per_mile),
            overhead_percent=Decimal(overhead_percent),
            minimum_fare=Decimal(minimum_fare) if minimum_fare is not None else None,
            maximum_fare=Decimal(maximum_fare) if maximum_fare is not None else None,
        )
        self.session.add(row)
        await self.session.commit()
        return row

    async def tiers(self, tenant_id, bands=((1, None, "1.00", "0.00"),)):
        rows = [
            FareTier(
                tenant_id=tenant_id,
                label=f"{low}+" if high is None else f"{low}-{high}",
                min_passengers=low,
                max_passengers=high,
                multiplier=Decimal(multiplier),
                decrement=Decimal(decrement),
            )
            for low, high, multiplier, decrement in bands
        ]
        self.session.add_all(rows)
        await self.session.commit()
        return rows

    async def dividend_settings(
        self,
        tenant_id,
        reserves="20",
        business="30",
        dividend="50",
        cooperative_model=CooperativeModel.PASSENGER,
        hybrid_customer_percent=None,
        auto_distribute=False,
        frequency=SettlementFrequency.MONTHLY,
        enabled=True,
    ):
        row = DividendScheduleSettings(
            tenant_id=tenant_id,
            enabled=enabled,
            frequency=frequency,
            reserves_percent=Decimal(reserves),
            business_percent=Decimal(business),
            dividend_percent=Decimal(dividend),
            cooperative_model=cooperative_model,
            hybrid_customer_percent=Decimal(hybrid_customer_percent) if hybrid_customer_percent else None,
            auto_distribute=auto_distribute,
        )
        self.session.add(row)
        await self.session.commit()
        return row

    async def trip(
        self,
        tenant_id,
        completed_at,
        passenger_count=1,
        duration_hours="3.00",
        distance_miles="10.00",
        status=TripStatus.COMPLETED,
    ):
        trip = Trip(
            tenant_id=tenant_id,
            driver_id=1,
            passenger_count=passenger_count,
            distance_miles=Decimal(distance_miles),
            duration_hours=Decimal(duration_hours),
            status=status,
            completed_at=completed_at,
        )
        self.session.add(trip)
        await self.session.commit()
        return trip

    async def cost(self, tenant_id, amount, incurred_at, category="fuel"):
        row = OperatingCost(
            tenant_id=tenant_id,
            category=category,
            amount=Decimal(amount),
            incurred_at=incurred_at,
        )
        self.session.add(row)
        await self.session.commit()
        return row

    async def member(self, tenant_id, member_type, member_id, period_id, weight="1", is_active=True, dividend_eligible=True):
        self.session.add(CooperativeMember(
            tenant_id=tenant_id,
            member_type=member_type,
            member_id=member_id,
            is_active=is_active,
            dividend_eligible=dividend_eligible,
        ))
        self.session.add(MemberPatronage(
            tenant_id=tenant_id,
            member_type=member_type,
            member_id=member_id,
            period_id=period_id,
            weight=Decimal(weight),
        ))
        await self.session.commit()

    async def cooperative(self, tenant_id, period_id="2024-03", month_start=datetime(2024, 3, 1), **dividend_settings):
        """
        A settled-ready tenant: four single-passenger trips at 300.00 each
        and 200.00 of costs in the month, so the surplus is exactly 1,000.00.
        Three equal customer members share the dividend pool.
        """
        await self.fare_settings(tenant_id)
        await self.tiers(tenant_id)
        await self.dividend_settings(tenant_id, **dividend_settings)
        for day in (3, 9, 17, 28):
            await self.trip(tenant_id, completed_at=month_start.replace(day=day, hour=12))
        await self.cost(tenant_id, "200.00", month_start.replace(day=15))
        for member_id in (1, 2, 3):
            await self.member(tenant_id, MemberType.CUSTOMER, member_id, period_id)


@pytest.fixture
def factory(db_session):
    return Factory(db_session)
