"""
Scheduled snapshots: Notion KPI pages and idle-customer health checks.

Called by the cron routes and by scripts/push_kpi_snapshot.py. Nothing here
schedules itself; an external cron hits the routes.
"""
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

from core.config import config
from core.dates import iso, round2, utc_now, ymd
from core.duckdb_store import DuckDBStore
from core.idle import build_metrics, classify_idle
from core.notion_client import NotionClient, get_notion_client
from core.observability import get_logger
from web.services import analytics_service, mock_data
from web.services.analytics_service import OrderFilter

logger = get_logger(__name__)

IDLE_HEALTH_WINDOW_DAYS = 30
SNAPSHOT_TOP_LIMIT = 5


async def _best_effort(label: str, fn: Callable[[], Awaitable[Any]]) -> Any:
    """Run one secondary lookup; a failure is logged and becomes None."""
    try:
        return await fn()
    except Exception as e:
        logger.warning(f"KPI snapshot: {label} unavailable: {e}")
        return None


def _ranked_text(rows) -> Optional[str]:
    if not rows:
        return None
    return "; ".join(
        f"{r['name']}: {r['revenue']:.2f} ({int(r['units'] or 0)} units)" for r in rows
    )


async def collect_kpis(store: DuckDBStore, f: OrderFilter) -> Dict[str, Any]:
    """
    Headline KPIs (as served by /kpis) plus the secondary metrics a
    snapshot carries. Secondary values are None when their lookup fails.
    """
    kpis = mock_data.build_kpis("date", ymd(f.date_from), ymd(f.date_to))

    health = await _best_effort(
        "health ratios",
        lambda: analytics_service.health_ratios(store, f.store_id, f.date_from, f.date_to),
    )
    if health:
        for key in ("netRevenue", "refunds", "discounts", "shipping", "tax"):
            kpis[key] = health[key]

    products = await _best_effort(
        "top products",
        lambda: store.get_top_products(f.store_id, f.date_from, f.date_to, limit=SNAPSHOT_TOP_LIMIT),
    )
    kpis["topProducts"] = _ranked_text(products)

    categories = await _best_effort(
        "top categories",
        lambda: analytics_service.top_categories(store, f, limit=SNAPSHOT_TOP_LIMIT),
    )
    kpis["topCategories"] = _ranked_text(categories)

    segments = await _best_effort("segment counts", lambda: store.get_segment_counts(f.store_id))
    kpis["segmentCounts"] = ", ".join(f"{k}: {v}" for k, v in segments.items()) if segments else None

    points = await _best_effort(
        "new vs returning",
        lambda: analytics_service.new_vs_returning_series(store, f),
    )
    if points is not None:
        new_customers = sum(p["newCustomers"] for p in points)
        returning = sum(p["returningCustomers"] for p in points)
        kpis["newOrders"] = sum(p["newOrders"] for p in points)
        kpis["returningOrders"] = sum(p["returningOrders"] for p in points)
        kpis["newCustomers"] = new_customers
        kpis["repeatRate"] = round2(returning / (new_customers + returning) * 100) if new_customers + returning else 0
    return kpis


async def push_kpi_snapshot(
    store_id: str,
    kpis: Dict[str, Any],
    period_label: Optional[str] = None,
    date: Any = None,
    database_id: Optional[str] = None,
    client: Optional[NotionClient] = None,
) -> Dict[str, Any]:
    """
    Create the Notion page and return ``{id, url}``.

    Raises:
        IntegrationConfigError: NOTION_TOKEN or the database id is missing
        IntegrationAPIError: Notion rejected the request
    """
    client = client or get_notion_client()
    page = await client.create_kpi_snapshot(store_id, kpis, period_label, date, database_id)
    return {"id": page.get("id"), "url": page.get("url")}


async def notion_kpi_snapshot(
    store: DuckDBStore,
    f: OrderFilter,
    period_label: Optional[str] = None,
    date: Any = None,
    database_id: Optional[str] = None,
    client: Optional[NotionClient] = None,
) -> Dict[str, Any]:
    kpis = await collect_kpis(store, f)
    snapshot = await push_kpi_snapshot(f.store_id, kpis, period_label, date, database_id, client=client)
    logger.info("Notion KPI snapshot pushed", extra={"store_id": f.store_id, "page_id": snapshot["id"]})
    return {"ok": True, "snapshot": snapshot}


# ═══════════════════════════════════════════════════════════════════════════════
# IDLE CUSTOMERS
# ═══════════════════════════════════════════════════════════════════════════════

def csv_base_url() -> str:
    return (
        config.assistant.internal_api_base
        or config.cron.public_base_url
        or f"http://localhost:{config.web.port}"
    ).rstrip("/")


def _inactive_csv_url(base: str, params: Dict[str, Any]) -> str:
    return f"{base}/customers/inactive?{urlencode(params)}"


async def idle_snapshot(
    store: DuckDBStore,
    store_id: str,
    days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Idle-segment counts for customers without orders since the cutoff, with CSV export links."""
    now = now or utc_now()
    cutoff = now - timedelta(days=days)

    segments: Dict[str, int] = {}
    for row in await store.get_customer_order_stats(store_id):
        last = row["last_order_at"]
        metrics = build_metrics(int(row["orders_count"]), row["total_spend"], None, last, now, whole_days=True)
        if metrics.lastOrderAt is None or metrics.lastOrderAt >= cutoff:
            continue
        segment = classify_idle(metrics, days)
        segments[segment] = segments.get(segment, 0) + 1

    base = csv_base_url()
    query = {"storeId": store_id, "days": days, "format": "csv"}
    return {
        "storeId": store_id,
        "days": days,
        "cutoff": iso(cutoff),
        "segments": segments,
        "csv": _inactive_csv_url(base, query),
        "csvBySegment": {seg: _inactive_csv_url(base, {**query, "segment": seg}) for seg in segments},
    }


async def idle_health(
    store: DuckDBStore,
    store_id: str,
    threshold_pct: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Compare today's count of customers without a 30-day order against
    yesterday's; a swing beyond ``threshold_pct`` is unhealthy.
    """
    now = now or utc_now()
    window = timedelta(days=IDLE_HEALTH_WINDOW_DAYS)
    count_today = await store.count_customers_without_orders_since(store_id, now - window)
    count_yesterday = await store.count_customers_without_orders_since(
        store_id, now - timedelta(days=1) - window
    )

    change_pct = (count_today - count_yesterday) / count_yesterday * 100 if count_yesterday > 0 else 0
    healthy = abs(change_pct) <= threshold_pct
    if not healthy:
        logger.warning(
            "Idle customer count anomaly",
            extra={
                "store_id": store_id,
                "count_today": count_today,
                "count_yesterday": count_yesterday,
                "change_pct": round2(change_pct),
            }
        )

    return {
        "storeId": store_id,
        "countToday": count_today,
        "countYesterday": count_yesterday,
        "changePct": round2(change_pct),
        "thresholdPct": threshold_pct,
        "healthy": healthy,
    }
