"""Health check and metrics endpoints."""
import asyncio
import time

from fastapi import APIRouter, Request

from core.observability import get_correlation_id, metrics, Timer
from web.config import VERSION
from web.schemas import HealthResponse, MetricsResponse
from ._deps import limiter, get_store, get_logger, START_TIME

router = APIRouter()
logger = get_logger(__name__)

# Health check stats cache (60 second TTL)
_stats_cache: dict = {"data": None, "expires_at": 0}
_stats_cache_lock = asyncio.Lock()
_STATS_CACHE_TTL = 60


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Liveness check plus DuckDB row counts."""
    now = time.time()
    async with _stats_cache_lock:
        if _stats_cache["data"] and now < _stats_cache["expires_at"]:
            duckdb_stats = _stats_cache["data"]
            duckdb = {"status": "connected", "latency_ms": 0.0, **duckdb_stats}
        else:
            try:
                with Timer("health_check_db") as timer:
                    store = await get_store()
                    duckdb_stats = await store.get_stats()
                _stats_cache["data"] = duckdb_stats
                _stats_cache["expires_at"] = now + _STATS_CACHE_TTL
                duckdb = {"status": "connected", "latency_ms": round(timer.elapsed_ms, 2), **duckdb_stats}
            except Exception as e:
                logger.warning(f"Health check could not reach DuckDB: {e}")
                duckdb = {"status": f"error: {e}"}

    return {
        "status": "ok",
        "version": VERSION,
        "uptime_seconds": int(now - START_TIME),
        "correlation_id": get_correlation_id(),
        "duckdb": duckdb,
    }


@router.get("/metrics", response_model=MetricsResponse)
@limiter.limit("30/minute")
async def get_metrics(request: Request):
    """In-process request counters and latency percentiles."""
    return metrics.get_stats()
