"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.coopfare.api.v1.endpoints import (
    fare_settings, trip_fares,
    dividend_settings, settlements,
    commonwealth, audit
)

router = APIRouter()

# Fare configuration and pricing
router.include_router(fare_settings.router)
router.include_router(trip_fares.router)

# Dividend configuration
router.include_router(dividend_settings.router)

# Period settlement and dividends
router.include_router(settlements.router)

# Commonwealth fund ledger
router.include_router(commonwealth.router)

# Audit trail
router.include_router(audit.router)
