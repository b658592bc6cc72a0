"""Customer insight endpoints: idle lists, last order, win-back, profile and GHL actions."""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response

from core.config import config
from core.ghl_client import get_ghl_client
from web.schemas import GhlActionRequest
from web.services import customer_service
from ._deps import (
    limiter, get_store, get_logger, route_errors,
    require_store_id, parse_positive_int, parse_customer_id,
)

router = APIRouter(prefix="/customers")
logger = get_logger(__name__)

STORE_REQUIRED = "storeId is required"
MAX_CURSOR = 1_000_000


@router.get("/inactive")
@limiter.limit("30/minute")
async def get_inactive_customers(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    days: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    segment: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    format: Optional[str] = Query(None),
):
    """
    Customers whose last order is older than ``days``.

    ``format=csv`` returns the same page as a CSV attachment.
    """
    with route_errors("Inactive customers", logger):
        store_id = require_store_id(store_id, STORE_REQUIRED)
        days = parse_positive_int(days, 30, 1, 365)
        store = await get_store()
        result = await customer_service.inactive_customers(
            store,
            store_id,
            days=days,
            limit=parse_positive_int(limit, 100, 1, 200),
            cursor=parse_positive_int(cursor, 0, 0, MAX_CURSOR),
            segment=(segment or "").strip() or None,
            category=(category or "").strip() or None,
        )

    if (format or "").lower() == "csv":
        filename = customer_service.csv_filename(store_id, days)
        return Response(
            content=customer_service.inactive_csv(result["data"]),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return result


@router.get("/last-order")
@limiter.limit("30/minute")
async def get_last_order(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    email: Optional[str] = Query(None),
):
    with route_errors("Last order", logger):
        store_id = require_store_id(store_id, STORE_REQUIRED)
        cid = parse_customer_id(customer_id) if customer_id else None
        store = await get_store()
        result = await customer_service.last_order(store, store_id, customer_id=cid, email=email or None)
    if result is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return result


@router.get("/rfm-idle")
@limiter.limit("30/minute")
async def get_rfm_idle(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    days: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
):
    """Customers with their stored RFM segment next to the idle classification."""
    with route_errors("RFM idle", logger):
        store_id = require_store_id(store_id, STORE_REQUIRED)
        store = await get_store()
        return await customer_service.rfm_idle(
            store,
            store_id,
            days=parse_positive_int(days, 30, 1, 365),
            limit=parse_positive_int(limit, 200, 1, 500),
            cursor=parse_positive_int(cursor, 0, 0, MAX_CURSOR),
        )


@router.post("/ghl-action")
@limiter.limit("30/minute")
async def post_ghl_action(request: Request, body: GhlActionRequest):
    """Tag a GHL contact for a loyalty action (email nudge, reward unlocked)."""
    if not config.ghl.pit:
        raise HTTPException(status_code=400, detail="GHL_PIT is not configured")
    with route_errors("GHL action", logger):
        return await customer_service.apply_ghl_action(
            get_ghl_client(),
            body.contactId,
            action=body.action,
            tags=body.tags,
            location_id=body.locationId,
        )


@router.get("/{customer_id}/winback")
@limiter.limit("30/minute")
async def get_winback(
    request: Request,
    customer_id: str,
    store_id: Optional[str] = Query(None, alias="storeId"),
    days: Optional[str] = Query(None),
):
    with route_errors("Win-back suggestion", logger):
        store_id = require_store_id(store_id, STORE_REQUIRED)
        cid = parse_customer_id(customer_id)
        store = await get_store()
        result = await customer_service.winback_suggestion(
            store, store_id, cid, days=parse_positive_int(days, 30, 1, 365)
        )
    if result is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return result


@router.get("/{customer_id}/profile")
@limiter.limit("30/minute")
async def get_profile(
    request: Request,
    customer_id: str,
    store_id: Optional[str] = Query(None, alias="storeId"),
):
    """Customer, order stats, latest orders and a best-effort GHL contact match."""
    with route_errors("Customer profile", logger):
        store_id = require_store_id(store_id, STORE_REQUIRED)
        cid = parse_customer_id(customer_id)
        store = await get_store()
        result = await customer_service.customer_profile(store, store_id, cid)
    if result is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return result
