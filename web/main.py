"""
FastAPI application for the WooCommerce analytics API.
"""
import os
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from web.config import CORS_ORIGINS, VERSION
from web.routes import api
from web.routes.api._deps import limiter
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from core.duckdb_store import get_store, close_store
from core.config import validate_config, disabled_integrations, ConfigurationError
from core.ghl_client import close_ghl_client
from core.notion_client import close_notion_client
from core.observability import setup_logging, get_logger

# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
log_format = os.getenv("LOG_FORMAT", "text")
log_level = os.getenv("LOG_LEVEL", "INFO")
setup_logging(level=log_level, json_format=(log_format == "json"))
logger = get_logger(__name__)

app = FastAPI(
    title="Woo Analytics API",
    description="Analytics, customer insights and assistant API for a WooCommerce dashboard",
    version=VERSION,
    default_response_class=ORJSONResponse,
)

app.state.limiter = limiter


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Every error body is ``{"error": message}``."""
    return ORJSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return ORJSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return ORJSONResponse(
        status_code=429,
        content={"error": "Too many requests. Please try again later.", "retry_after": exc.detail},
    )


# Timeout is added first so the logging middleware wraps it and the correlation id is set
app.add_middleware(RequestTimeoutMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api.router)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Woo Analytics API {VERSION} starting...")

    try:
        validate_config()
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    for name in disabled_integrations():
        logger.warning(f"Integration disabled: {name}")

    try:
        store = await get_store()
        stats = await store.get_stats()
        logger.info(
            f"DuckDB ready: {stats['stores']} stores, "
            f"{stats['orders']} orders, "
            f"{stats['customers']} customers, "
            f"{stats['db_size_mb']} MB"
        )
    except Exception as e:
        logger.error(f"DuckDB initialization failed: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    for label, close in (("GHL client", close_ghl_client), ("Notion client", close_notion_client)):
        try:
            await close()
        except Exception as e:
            logger.warning(f"Error closing {label}: {e}")

    try:
        await close_store()
        logger.info("DuckDB closed")
    except Exception as e:
        logger.warning(f"Error closing DuckDB: {e}")
    logger.info("Woo Analytics API stopped")


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn
    from web.config import WEB_HOST, WEB_PORT

    uvicorn.run("web.main:app", host=WEB_HOST, port=WEB_PORT, log_config=None)
