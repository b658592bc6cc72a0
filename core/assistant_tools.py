"""
Assistant tools for LLM function calling.

Each tool maps 1:1 to a GET on this API. Calls go to INTERNAL_API_BASE when
set, otherwise in-process through httpx's ASGI transport so the assistant
works without knowing its own public URL.
"""
from typing import Any, Dict, List, Optional

import httpx

from core.config import config
from core.exceptions import IntegrationAPIError, IntegrationConnectionError
from core.observability import get_correlation_id, get_logger, Timer

logger = get_logger(__name__)

INACTIVE_MAX_PAGES = 5


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL DEFINITIONS (for Anthropic API)
# ═══════════════════════════════════════════════════════════════════════════════

def _schema(*extra: str, required: tuple = ("storeId",), **typed: str) -> Dict[str, Any]:
    """JSON schema with string ``storeId`` plus the named string/number props."""
    properties: Dict[str, Any] = {"storeId": {"type": "string"}}
    for name in extra:
        properties[name] = {"type": "string"}
    for name, kind in typed.items():
        properties[name] = {"type": kind}
    return {"type": "object", "properties": properties, "required": list(required)}


RANGE = ("from", "to")

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_kpis",
        "description": "Fetch KPI summary (revenue, orders, AOV, units, customers) for a date range (YYYY-MM-DD)",
        "input_schema": _schema(*RANGE, "category", "coupon"),
    },
    {"name": "get_sales", "description": "Fetch daily sales timeseries", "input_schema": _schema(*RANGE)},
    {"name": "get_aov", "description": "Fetch daily average order value timeseries", "input_schema": _schema(*RANGE)},
    {"name": "get_cumulative", "description": "Fetch cumulative revenue/orders", "input_schema": _schema(*RANGE)},
    {"name": "get_rolling", "description": "Fetch 7-day rolling revenue/orders", "input_schema": _schema(*RANGE)},
    {"name": "get_refunds_discounts", "description": "Fetch refunds and discounts trend", "input_schema": _schema(*RANGE)},
    {"name": "get_shipping_tax", "description": "Fetch shipping and tax trend", "input_schema": _schema(*RANGE)},
    {"name": "get_new_vs_returning", "description": "Fetch new vs returning customers trend", "input_schema": _schema(*RANGE)},
    {"name": "get_top_products", "description": "Fetch top products by revenue", "input_schema": _schema(*RANGE, limit="number")},
    {"name": "get_top_categories", "description": "Fetch top categories by revenue", "input_schema": _schema(*RANGE, limit="number")},
    {"name": "get_segments", "description": "Fetch customer segments", "input_schema": _schema()},
    {"name": "get_rfm", "description": "Fetch top customers with recency, frequency and monetary values", "input_schema": _schema()},
    {"name": "get_retention_cohorts", "description": "Fetch monthly retention cohorts", "input_schema": _schema()},
    {
        "name": "get_performance_drop_products",
        "description": "Fetch worst-performing products vs the previous period",
        "input_schema": _schema(*RANGE, limit="number"),
    },
    {
        "name": "get_performance_drop_categories",
        "description": "Fetch worst-performing categories vs the previous period",
        "input_schema": _schema(*RANGE, limit="number"),
    },
    {
        "name": "get_health_ratios",
        "description": "Fetch refund/discount rates and net/gross revenue",
        "input_schema": _schema(*RANGE),
    },
    {"name": "get_recent_orders", "description": "Fetch recent orders", "input_schema": _schema(limit="number")},
    {"name": "get_peak_day", "description": "Fetch the peak revenue day in the range", "input_schema": _schema(*RANGE)},
    {"name": "get_anomalies", "description": "Fetch recent revenue/order anomalies", "input_schema": _schema()},
    {"name": "get_retention_highlights", "description": "Best and worst cohort retention", "input_schema": _schema()},
    {
        "name": "get_repeat_purchase_rates",
        "description": "Repeat purchase rates for the last 30/60/90/120 days",
        "input_schema": _schema(),
    },
    {"name": "get_high_value_orders", "description": "Recent high-value orders", "input_schema": _schema(days="number", limit="number")},
    {
        "name": "get_aging_orders",
        "description": "Orders stuck in pending/processing beyond a threshold",
        "input_schema": _schema(days="number", limit="number"),
    },
    {
        "name": "get_last_order_for_customer",
        "description": "Fetch last order for a customer by email or customerId",
        "input_schema": _schema("email", "customerId"),
    },
    {
        "name": "get_inactive_customers",
        "description": "List customers whose last order is older than N days (default 30)",
        "input_schema": _schema("segment", days="number", limit="number"),
    },
    {
        "name": "get_winback_suggestion",
        "description": "Win-back offer and product recommendation for one idle customer",
        "input_schema": _schema("customerId", required=("storeId", "customerId"), days="number"),
    },
]

TOOL_NAMES = frozenset(t["name"] for t in TOOLS)

# tool name -> (path, error label, default args)
ENDPOINTS: Dict[str, tuple] = {
    "get_kpis": ("/kpis", "kpis", {}),
    "get_sales": ("/sales", "sales", {}),
    "get_aov": ("/analytics/aov", "aov", {}),
    "get_cumulative": ("/analytics/cumulative", "cumulative", {}),
    "get_rolling": ("/analytics/rolling", "rolling", {}),
    "get_refunds_discounts": ("/analytics/refunds-discounts", "refunds-discounts", {}),
    "get_shipping_tax": ("/analytics/shipping-tax", "shipping-tax", {}),
    "get_new_vs_returning": ("/analytics/new-vs-returning", "new-vs-returning", {}),
    "get_top_products": ("/analytics/products/top", "products/top", {}),
    "get_top_categories": ("/categories/top", "categories", {"limit": 10}),
    "get_segments": ("/segments", "segments", {}),
    "get_rfm": ("/rfm", "rfm", {}),
    "get_retention_cohorts": ("/analytics/retention/cohorts", "retention/cohorts", {}),
    "get_performance_drop_products": (
        "/analytics/performance-drop/products", "performance-drop/products", {}),
    "get_performance_drop_categories": (
        "/analytics/performance-drop/categories", "performance-drop/categories", {}),
    "get_health_ratios": ("/analytics/health-ratios", "health-ratios", {}),
    "get_recent_orders": ("/orders/recent", "orders", {"limit": 10}),
    "get_peak_day": ("/analytics/peaks", "peaks", {}),
    "get_anomalies": ("/analytics/anomalies", "anomalies", {}),
    "get_retention_highlights": ("/analytics/retention/highlights", "retention/highlights", {}),
    "get_repeat_purchase_rates": ("/analytics/repeat-purchase", "repeat-purchase", {}),
    "get_high_value_orders": ("/analytics/orders/high-value", "orders/high-value", {}),
    "get_aging_orders": ("/analytics/orders/aging", "orders/aging", {}),
    "get_last_order_for_customer": ("/customers/last-order", "customers/last-order", {}),
    "get_last_order": ("/customers/last-order", "customers/last-order", {}),
}


def clean_params(params: Dict[str, Any]) -> Dict[str, str]:
    """Drop None/empty values and stringify the rest, as query params."""
    cleaned = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = str(value)
    return cleaned


class ToolExecutor:
    """
    Runs assistant tools as GET requests against this API.

    Usage:
        async with ToolExecutor() as tools:
            kpis = await tools.execute("get_kpis", {"storeId": "s1"})
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = None,
    ):
        self.base_url = base_url if base_url is not None else config.assistant.internal_api_base
        self.timeout = timeout or config.assistant.tool_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        transport = self._transport
        base_url = self.base_url
        if transport is None and not base_url:
            # Imported here: web.main imports the routes that import this module
            from web.main import app
            transport = httpx.ASGITransport(app=app)
            base_url = "http://assistant.internal"
        return httpx.AsyncClient(base_url=base_url.rstrip("/"), transport=transport, timeout=self.timeout)

    async def connect(self) -> None:
        if self._client is None:
            self._client = self._build_client()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ToolExecutor":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def get_json(self, path: str, params: Dict[str, Any], label: str) -> Any:
        """
        GET ``path`` and decode JSON.

        Raises:
            IntegrationAPIError: "{label} {status}" on a non-2xx answer
        """
        if not self._client:
            await self.connect()
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        try:
            with Timer(f"tool GET {path}", logger):
                response = await self._client.get(path, params=clean_params(params), headers=headers or None)
        except httpx.RequestError as e:
            raise IntegrationConnectionError(f"{label} request failed", str(e)) from e
        if not response.is_success:
            raise IntegrationAPIError(
                f"{label} {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationAPIError(
                f"{label} returned a non-JSON body",
                details=str(e),
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        """
        Run one tool.

        Raises:
            KeyError: Unknown tool name
            ValueError: get_winback_suggestion without customerId
            IntegrationAPIError: The API answered with an error status
        """
        if name == "get_inactive_customers":
            return await self._inactive_customers(args)
        if name == "get_winback_suggestion":
            return await self._winback_suggestion(args)

        path, label, defaults = ENDPOINTS[name]
        params = {**args}
        for key, value in defaults.items():
            if params.get(key) is None:
                params[key] = value
        return await self.get_json(path, params, label)

    async def _inactive_customers(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Follow nextCursor for up to INACTIVE_MAX_PAGES pages and merge them."""
        days = args.get("days") or 30
        limit = args.get("limit") or 200
        cursor = args.get("cursor") or 0

        merged: Dict[str, Any] = {
            "storeId": args.get("storeId"),
            "days": days,
            "cutoff": None,
            "count": 0,
            "segmentCounts": {},
            "data": [],
        }
        for _ in range(INACTIVE_MAX_PAGES):
            page = await self.get_json(
                "/customers/inactive",
                {**args, "days": days, "limit": limit, "cursor": cursor},
                "customers/inactive",
            )
            merged["cutoff"] = merged["cutoff"] or page.get("cutoff")
            merged["data"].extend(page.get("data") or [])
            merged["count"] += page.get("count") or 0
            for segment, count in (page.get("segmentCounts") or {}).items():
                merged["segmentCounts"][segment] = merged["segmentCounts"].get(segment, 0) + count
            if not page.get("nextCursor"):
                break
            cursor = page["nextCursor"]
        return merged

    async def _winback_suggestion(self, args: Dict[str, Any]) -> Dict[str, Any]:
        params = dict(args)
        customer_id = params.pop("customerId", None)
        if not customer_id:
            raise ValueError("customerId is required")
        return await self.get_json(f"/customers/{customer_id}/winback", params, "customers/winback")
