"""
Cron endpoints, called by an external scheduler.

When CRON_SECRET is set every call must send ``Authorization: Bearer <secret>``.
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from core.config import config
from core.exceptions import IntegrationError
from core.observability import bind_store
from web.services import snapshot_service
from ._deps import (
    limiter, get_store, get_logger, route_errors,
    OrderFilter, require_store_id, parse_positive_int,
)

router = APIRouter(prefix="/cron")
logger = get_logger(__name__)


def require_cron_auth(request: Request) -> None:
    secret = config.cron.secret
    if not secret:
        return
    auth = request.headers.get("Authorization") or ""
    if not hmac.compare_digest(auth, f"Bearer {secret}"):
        logger.warning(f"Rejected cron call to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/notion-kpi", dependencies=[Depends(require_cron_auth)])
@limiter.limit("10/minute")
async def cron_notion_kpi(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    period_label: Optional[str] = Query(None, alias="periodLabel"),
    snapshot_date: Optional[str] = Query(None, alias="date"),
):
    """KPIs for the range (default: last 30 days) pushed to Notion as one page."""
    with route_errors("Notion KPI snapshot", logger):
        store = await get_store()
        if not store_id:
            default = await store.get_default_store()
            if not default:
                raise IntegrationError("Failed to resolve default store")
            store_id = default["id"]
            bind_store(store_id)
        f = OrderFilter.from_query(store_id, date_from, date_to)
        return await snapshot_service.notion_kpi_snapshot(
            store, f, period_label=period_label, date=snapshot_date
        )


@router.get("/idle-snapshot", dependencies=[Depends(require_cron_auth)])
@limiter.limit("10/minute")
async def cron_idle_snapshot(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    days: Optional[str] = Query(None),
):
    with route_errors("Idle snapshot", logger):
        store_id = require_store_id(store_id, "storeId is required")
        store = await get_store()
        return await snapshot_service.idle_snapshot(
            store, store_id, days=parse_positive_int(days, 30, 1, 365)
        )


@router.get("/idle-health", dependencies=[Depends(require_cron_auth)])
@limiter.limit("10/minute")
async def cron_idle_health(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    threshold_pct: Optional[str] = Query(None, alias="thresholdPct"),
):
    """Day-over-day swing in the idle customer count."""
    with route_errors("Idle health", logger):
        store_id = require_store_id(store_id, "storeId is required")
        store = await get_store()
        return await snapshot_service.idle_health(
            store, store_id, threshold_pct=parse_positive_int(threshold_pct, 50, 1, 500)
        )
