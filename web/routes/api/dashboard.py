"""
Dashboard endpoints: mock KPI widgets plus the store-backed lists the
dashboard shows next to them (RFM table, top categories, recent orders).
"""
from typing import List, Optional

from fastapi import APIRouter, Query, Request

from web.schemas import (
    KpiResponse, SalesResponse, SegmentsResponse, SegmentSummary, HeatmapCell,
)
from web.services import analytics_service, mock_data
from ._deps import (
    limiter, get_store, get_logger, route_errors,
    OrderFilter, parse_positive_int,
)

router = APIRouter()
logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# MOCK WIDGETS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/kpis", response_model=KpiResponse)
@limiter.limit("30/minute")
async def get_kpis(
    request: Request,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
):
    """Baseline KPIs scaled by the requested day count or filter."""
    return mock_data.build_kpis(filter_type, date_from, date_to, category, coupon)


@router.get("/sales", response_model=SalesResponse)
@limiter.limit("30/minute")
async def get_sales(
    request: Request,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
):
    with route_errors("Sales series", logger):
        return {"sales": mock_data.build_sales_series(filter_type, date_from, date_to, category, coupon)}


@router.get("/segments", response_model=SegmentsResponse)
@limiter.limit("30/minute")
async def get_segments(
    request: Request,
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
):
    return {"segments": mock_data.build_segments(filter_type, category, coupon)}


@router.get("/segments/summary", response_model=List[SegmentSummary])
@limiter.limit("30/minute")
async def get_segment_summary(
    request: Request,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
):
    return mock_data.build_segment_summary(filter_type, date_from, date_to, category, coupon)


@router.get("/rfm/heatmap", response_model=List[HeatmapCell])
@limiter.limit("30/minute")
async def get_rfm_heatmap(
    request: Request,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    category: Optional[str] = Query(None),
    coupon: Optional[str] = Query(None),
):
    """5x5 recency/frequency grid."""
    return mock_data.build_rfm_heatmap(filter_type, date_from, date_to, category, coupon)


@router.get("/meta/categories")
@limiter.limit("60/minute")
async def get_meta_categories(request: Request):
    return list(mock_data.META_CATEGORIES)


@router.get("/meta/coupons")
@limiter.limit("60/minute")
async def get_meta_coupons(request: Request):
    return list(mock_data.META_COUPONS)


@router.get("/products/popular")
@limiter.limit("60/minute")
async def get_popular_products(request: Request):
    return [dict(p) for p in mock_data.POPULAR_PRODUCTS]


# ═══════════════════════════════════════════════════════════════════════════════
# STORE DATA
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/rfm")
@limiter.limit("30/minute")
async def get_rfm(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
):
    """Top 100 customers by monetary value with recency and frequency."""
    with route_errors("RFM", logger):
        f = OrderFilter.from_query(store_id, date_from, date_to)
        store = await get_store()
        return await analytics_service.rfm_customers(store, f)


@router.get("/categories/top")
@limiter.limit("30/minute")
async def get_top_categories(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    filter_type: Optional[str] = Query("date", alias="type"),
    coupon: Optional[str] = Query(None),
):
    with route_errors("Top categories", logger):
        f = OrderFilter.from_query(store_id, date_from, date_to, filter_type, coupon=coupon)
        store = await get_store()
        return await analytics_service.top_categories(store, f)


@router.get("/orders/recent")
@limiter.limit("30/minute")
async def get_recent_orders(
    request: Request,
    store_id: Optional[str] = Query(None, alias="storeId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: Optional[str] = Query(None),
):
    with route_errors("Recent orders", logger):
        f = OrderFilter.from_query(store_id, date_from, date_to)
        store = await get_store()
        return await analytics_service.recent_orders(store, f, limit=parse_positive_int(limit, 10, 1, 50))
