"""
FastAPI middleware for observability.

- RequestLoggingMiddleware: correlation id, request logging, timing metrics
- RequestTimeoutMiddleware: 504 once a request runs past its budget
"""
import asyncio
import time
from typing import Callable
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from core.observability import (
    get_logger,
    generate_correlation_id,
    set_correlation_id,
    bind_store,
    get_correlation_id,
    metrics,
)

logger = get_logger(__name__)

# Request timeout settings (seconds)
DEFAULT_REQUEST_TIMEOUT = 30.0
SLOW_ENDPOINT_TIMEOUT = 120.0

# LLM round trips, Notion pushes and full-store scans
SLOW_PATH_PREFIXES = (
    "/assistant/",
    "/cron/",
    "/integrations/",
)

QUIET_PATHS = ("/health", "/metrics")


def _endpoint_key(request: Request) -> str:
    """``METHOD /route/{template}`` so per-customer paths share one metric."""
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    return f"{request.method} {path}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation id (``X-Request-ID``, echoed back), logs each
    request with its duration, binds ``storeId`` for every log line the
    request emits, and records per-route metrics.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or generate_correlation_id()
        set_correlation_id(correlation_id)
        bind_store(request.query_params.get("storeId"))
        start_time = time.perf_counter()

        method = request.method
        path = request.url.path
        context = {
            "method": method,
            "path": path,
            "client_ip": request.client.host if request.client else "unknown",
        }
        quiet = path in QUIET_PATHS

        if not quiet:
            logger.info(f"Request started: {method} {path}", extra=context)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {method} {path}",
                extra={**context, "duration_ms": round(duration_ms, 2), "error": str(e)}
            )
            metrics.record_error(type(e).__name__)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        if not quiet:
            level_name = "info" if response.status_code < 400 else "warning"
            getattr(logger, level_name)(
                f"Request completed: {method} {path}",
                extra={**context, "status_code": response.status_code, "duration_ms": round(duration_ms, 2)}
            )

        endpoint = _endpoint_key(request)
        metrics.record_request(endpoint)
        metrics.record_timing(endpoint, duration_ms)
        if response.status_code >= 400:
            metrics.record_error(f"HTTP_{response.status_code}")

        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Enforces a per-request time budget.

    Assistant, cron and integration routes get SLOW_ENDPOINT_TIMEOUT; health
    and metrics are never cut off.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        timeout = SLOW_ENDPOINT_TIMEOUT if path.startswith(SLOW_PATH_PREFIXES) else DEFAULT_REQUEST_TIMEOUT
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Request timeout: {request.method} {path}",
                extra={"method": request.method, "path": path, "timeout": timeout}
            )
            metrics.record_error("REQUEST_TIMEOUT")
            return JSONResponse(
                status_code=504,
                content={
                    "error": "Request Timeout",
                    "detail": f"Request exceeded {timeout}s timeout",
                    "path": path,
                    "correlation_id": get_correlation_id(),
                }
            )
