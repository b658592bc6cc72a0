"""Analytics endpoints: daily series, breakdowns, cohorts and order watch lists."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from web.services import analytics_service
from ._deps import (
    limiter, get_store, get_logger, route_errors,
    OrderFilter, ValidationError, parse_int_param,
)

router = APIRouter(prefix="/analytics")
logger = get_logger(__name__)


def order_filter(
    store_id: Optional[str] = Query(None, alias="storeId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
) -> OrderFilter:
    """Query-string order filter shared by every analytics route."""
    try:
        return OrderFilter.from_query(store_id, date_from, date_to, filter_type, category, coupon)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


# ─── Daily series ──────────────────────────────────────────────────────────────

@router.get("/aov")
@limiter.limit("30/minute")
async def get_aov(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("AOV series", logger):
        store = await get_store()
        return {"points": await analytics_service.aov_series(store, f)}


@router.get("/cumulative")
@limiter.limit("30/minute")
async def get_cumulative(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Cumulative series", logger):
        store = await get_store()
        return {"points": await analytics_service.cumulative_series(store, f)}


@router.get("/rolling")
@limiter.limit("30/minute")
async def get_rolling(request: Request, f: OrderFilter = Depends(order_filter)):
    """Revenue and orders with their trailing 7-day means."""
    with route_errors("Rolling series", logger):
        store = await get_store()
        return {"points": await analytics_service.rolling_series(store, f)}


@router.get("/shipping-tax")
@limiter.limit("30/minute")
async def get_shipping_tax(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Shipping/tax series", logger):
        store = await get_store()
        return {"points": await analytics_service.shipping_tax_series(store, f)}


@router.get("/refunds-discounts")
@limiter.limit("30/minute")
async def get_refunds_discounts(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Refunds/discounts series", logger):
        store = await get_store()
        return {"points": await analytics_service.refunds_discounts_series(store, f)}


@router.get("/new-vs-returning")
@limiter.limit("30/minute")
async def get_new_vs_returning(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("New vs returning series", logger):
        store = await get_store()
        return {"points": await analytics_service.new_vs_returning_series(store, f)}


# ─── Breakdowns ────────────────────────────────────────────────────────────────

@router.get("/retention/cohorts")
@limiter.limit("30/minute")
async def get_retention_cohorts(request: Request, f: OrderFilter = Depends(order_filter)):
    """Monthly cohorts from the precomputed cohort table."""
    with route_errors("Retention cohorts", logger):
        store = await get_store()
        return {"cohorts": await analytics_service.retention_cohorts(store, f.store_id)}


@router.get("/products/top")
@limiter.limit("30/minute")
async def get_top_products(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Top products", logger):
        store = await get_store()
        return {"products": await analytics_service.top_products(store, f.store_id, f.date_from, f.date_to)}


@router.get("/health-ratios")
@limiter.limit("30/minute")
async def get_health_ratios(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Health ratios", logger):
        store = await get_store()
        return await analytics_service.health_ratios(store, f.store_id, f.date_from, f.date_to)


@router.get("/performance-drop/products")
@limiter.limit("30/minute")
async def get_product_drops(
    request: Request,
    f: OrderFilter = Depends(order_filter),
    limit: Optional[str] = Query(None),
):
    """Products losing the most revenue against the previous equal-length window."""
    with route_errors("Product performance drop", logger):
        store = await get_store()
        products = await analytics_service.product_drops(
            store, f.store_id, f.date_from, f.date_to, limit=parse_int_param(limit, 5, 1, 20)
        )
        return {"products": products}


@router.get("/performance-drop/categories")
@limiter.limit("30/minute")
async def get_category_drops(
    request: Request,
    f: OrderFilter = Depends(order_filter),
    limit: Optional[str] = Query(None),
):
    with route_errors("Category performance drop", logger):
        store = await get_store()
        categories = await analytics_service.category_drops(
            store, f.store_id, f.date_from, f.date_to, limit=parse_int_param(limit, 5, 1, 20)
        )
        return {"categories": categories}


# ─── Insights ──────────────────────────────────────────────────────────────────

@router.get("/peaks")
@limiter.limit("30/minute")
async def get_peaks(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Peak day", logger):
        store = await get_store()
        peak = await analytics_service.peak_revenue_day(store, f.store_id, f.date_from, f.date_to)
        return {"peakRevenueDay": peak}


@router.get("/anomalies")
@limiter.limit("30/minute")
async def get_anomalies(request: Request, f: OrderFilter = Depends(order_filter)):
    """Days whose revenue or order count is 2+ standard deviations from the mean."""
    with route_errors("Anomalies", logger):
        store = await get_store()
        return {"anomalies": await analytics_service.anomalies(store, f.store_id)}


@router.get("/retention/highlights")
@limiter.limit("30/minute")
async def get_retention_highlights(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Retention highlights", logger):
        store = await get_store()
        return await analytics_service.retention_highlights(store, f.store_id)


@router.get("/repeat-purchase")
@limiter.limit("30/minute")
async def get_repeat_purchase(request: Request, f: OrderFilter = Depends(order_filter)):
    with route_errors("Repeat purchase rates", logger):
        store = await get_store()
        return await analytics_service.repeat_purchase_rates(store, f.store_id)


@router.get("/orders/high-value")
@limiter.limit("30/minute")
async def get_high_value_orders(
    request: Request,
    f: OrderFilter = Depends(order_filter),
    days: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    with route_errors("High-value orders", logger):
        store = await get_store()
        return await analytics_service.high_value_orders(
            store,
            f.store_id,
            days=parse_int_param(days, 7, 1, 90),
            limit=parse_int_param(limit, 5, 1, 25),
        )


@router.get("/orders/aging")
@limiter.limit("30/minute")
async def get_aging_orders(
    request: Request,
    f: OrderFilter = Depends(order_filter),
    days: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
):
    """Pending/processing orders older than ``days``."""
    with route_errors("Aging orders", logger):
        store = await get_store()
        return await analytics_service.aging_orders(
            store,
            f.store_id,
            days=parse_int_param(days, 3, 1, 30),
            limit=parse_int_param(limit, 20, 1, 50),
        )
