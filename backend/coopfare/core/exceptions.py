"""
Custom exceptions and error handlers for consistent error responses.

Every engine failure is an AppException carrying a stable error code so the
scheduler and the HTTP layer can tell configuration, input, concurrency,
invariant and eligibility errors apart.
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Configuration errors

class SettingsInvariantError(AppException):
    """Allocation percentages do not total exactly 100."""

    def __init__(self, reserves_percent: Decimal, business_percent: Decimal, dividend_percent: Decimal):
        total = Decimal(reserves_percent) + Decimal(business_percent) + Decimal(dividend_percent)
        super().__init__(
            message=(
                f"Allocation percentages must total 100, got {total} "
                f"(reserves {reserves_percent} + business {business_percent} + dividend {dividend_percent})"
            ),
            error_code="ERR_CONFIG_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "reserves_percent": str(reserves_percent),
                "business_percent": str(business_percent),
                "dividend_percent": str(dividend_percent),
                "total": str(total),
            }
        )


class TierGapError(AppException):
    """No fare tier covers a passenger count."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFIG_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class TierOverlapError(AppException):
    """Two fare tiers claim the same passenger count."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFIG_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class FareSettingsError(AppException):
    """Fare cost model is not usable (missing or inconsistent)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFIG_004",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


# Input errors

class InvalidCostInputError(AppException):
    """Negative cost component or zero passengers."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INPUT_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class InvalidPeriodError(AppException):
    """Period identifier is not YYYY-MM or YYYY-Qn."""

    def __init__(self, period_id: str):
        super().__init__(
            message=f"Invalid period '{period_id}', expected YYYY-MM or YYYY-Qn",
            error_code="ERR_INPUT_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"period_id": period_id}
        )


class TripNotFinalizedError(AppException):
    """Trip cannot be priced before it is completed."""

    def __init__(self, trip_id: int, trip_status: str):
        super().__init__(
            message=f"Trip {trip_id} is not finalized (status {trip_status})",
            error_code="ERR_INPUT_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id, "status": trip_status}
        )


# Concurrency errors

class AlreadyRunningError(AppException):
    """Settlement lock for (tenant, period) is already held."""

    def __init__(self, tenant_id: int, period_id: str, locked_by: str = None, reason: str = None):
        super().__init__(
            message=reason or f"Settlement for tenant {tenant_id} period {period_id} is already running",
            error_code="ERR_CONCURRENCY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"tenant_id": tenant_id, "period_id": period_id, "locked_by": locked_by}
        )


class DuplicateContributionError(AppException):
    """A contribution already exists for (tenant, period)."""

    def __init__(self, tenant_id: int, period_id: str, message: str = None):
        super().__init__(
            message=message or f"Contribution already recorded for tenant {tenant_id} period {period_id}",
            error_code="ERR_CONCURRENCY_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"tenant_id": tenant_id, "period_id": period_id}
        )


class PeriodAlreadySettledError(DuplicateContributionError):
    """Period reached a terminal settled state; re-running is rejected."""

    def __init__(self, tenant_id: int, period_id: str, settlement_status: str):
        super().__init__(
            tenant_id,
            period_id,
            message=f"Period {period_id} for tenant {tenant_id} is already {settlement_status}"
        )
        self.details["status"] = settlement_status


class SettlementNotCancellableError(AppException):
    """Cancellation requested after a ledger write or outside a running state."""

    def __init__(self, tenant_id: int, period_id: str, settlement_status: str):
        super().__init__(
            message=f"Settlement in status {settlement_status} cannot be cancelled",
            error_code="ERR_CONCURRENCY_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"tenant_id": tenant_id, "period_id": period_id, "status": settlement_status}
        )


# Invariant violations

class InsufficientFundsError(AppException):
    """Distribution would take the commonwealth fund below zero."""

    def __init__(self, fund_id: int, requested: Decimal, available: Decimal):
        super().__init__(
            message=f"Fund {fund_id} balance {available} is insufficient for distribution of {requested}",
            error_code="ERR_INVARIANT_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"fund_id": fund_id, "requested": str(requested), "available": str(available)}
        )


class InvariantViolationError(AppException):
    """Ledger or allocation invariant would be broken."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INVARIANT_002",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class SettlementFailedError(AppException):
    """Run failed after its contribution committed; the period waits for a resume run."""

    def __init__(self, tenant_id: int, period_id: str, reason: str):
        super().__init__(
            message=reason,
            error_code="ERR_INVARIANT_003",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"tenant_id": tenant_id, "period_id": period_id}
        )


# Eligibility errors

class NoEligibleMembersError(AppException):
    """Positive dividend pool but nobody qualifies; the pool stays in the fund."""

    def __init__(self, pool: Decimal):
        super().__init__(
            message=f"No eligible members for dividend pool of {pool}; pool retained in fund",
            error_code="ERR_ELIGIBILITY_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"pool": str(pool)}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )


def jsonable_errors(errors) -> list:
    """Pydantic v2 puts the raised exception object in ctx; keep only its text."""
    cleaned = []
    for error in errors:
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        error.pop("url", None)
        if "input" in error:
            error["input"] = str(error["input"])
        cleaned.append(error)
    return cleaned
