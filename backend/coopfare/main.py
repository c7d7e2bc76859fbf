"""
FastAPI Application Entry Point.

This is the main application file for the Cooperative Fare Engine.
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.coopfare.core.config import settings
from backend.coopfare.core.observability import ObservabilityMiddleware, configure_logging, logger
from backend.coopfare.core.redis_client import ping_redis
from backend.coopfare.api.v1.router import router as api_v1_router
from backend.coopfare.db.session import engine, Base
from backend.coopfare.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.coopfare.services.scheduler import scheduler_loop

# Import models to ensure they are registered with Base
from backend.coopfare.models.trip import Trip
from backend.coopfare.models.operating_cost import OperatingCost
from backend.coopfare.models.cooperative_member import CooperativeMember, MemberPatronage
from backend.coopfare.models.fare_settings import FareCalculationSettings
from backend.coopfare.models.fare_tier import FareTier  # before trip_fare_record for FK
from backend.coopfare.models.trip_fare_record import TripFareRecord
from backend.coopfare.models.flagged_trip import FlaggedTrip
from backend.coopfare.models.dividend_settings import DividendScheduleSettings
from backend.coopfare.models.commonwealth import (
    CommonwealthFund, CommonwealthContribution, CommonwealthDistribution
)
from backend.coopfare.models.period_settlement import PeriodSettlement
from backend.coopfare.models.member_dividend import MemberDividend
from backend.coopfare.models.audit_log import AuditLog

configure_logging(settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the settlement scheduler when enabled.
    3. Stops the scheduler on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    stop_event = asyncio.Event()
    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(scheduler_loop(stop_event))

    yield

    stop_event.set()
    if scheduler_task is not None:
        await scheduler_task
    await engine.dispose()
    logger.info("Application shutdown complete")


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Cost-based fare calculation and cooperative surplus distribution",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
        "scheduler_enabled": settings.scheduler_enabled,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Cooperative Fare Engine API",
        "docs": "/docs",
        "health": "/health",
    }
