"""
Observability middleware.

Every request gets a correlation ID and one structured log line carrying the
tenant, period and actor it acted for, so a settlement run can be traced from
the HTTP call through the engine's own log records.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("coopfare")

CORRELATION_HEADER = "X-Correlation-ID"


def configure_logging(debug: bool = False) -> None:
    """Root logging setup used by the application entry point."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(elapsed_ms)

        # Populated by routing once the endpoint has matched
        path_params = request.scope.get("path_params") or {}
        context = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "tenant_id": path_params.get("tenant_id"),
            "period_id": path_params.get("period_id"),
            "actor": request.headers.get("X-Actor"),
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=context)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=context)
        else:
            logger.info("Request handled", extra=context)

        return response
