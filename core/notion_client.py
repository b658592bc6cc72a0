"""
Notion KPI snapshots.

Maps a flat KPI summary onto page properties of a Notion database and
creates one page per snapshot. Number and text properties the database
does not have yet are added first (best effort); anything the database
still does not know about is dropped before the page is created.
"""
import math
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from core.config import config
from core.dates import iso, utc_now, UTC
from core.exceptions import (
    IntegrationAPIError,
    IntegrationConfigError,
    IntegrationConnectionError,
)
from core.observability import get_logger, Timer

logger = get_logger(__name__)

# Summary key -> Notion property name
KPI_NUMBER_FIELDS = {
    "revenue": "Revenue",
    "orders": "Orders",
    "aov": "AOV",
    "units": "Units",
    "customers": "Customers",
    "netRevenue": "Net Revenue",
    "refunds": "Refunds",
    "discounts": "Discounts",
    "shipping": "Shipping",
    "tax": "Tax",
    "avgItemsPerOrder": "Avg Items/Order",
    "newCustomers": "New Customers",
    "leadCouponRedemptionRate": "Lead Coupon %",
    "leadCouponsCreated": "Lead Coupons Created",
    "leadCouponsRedeemed": "Lead Coupons Redeemed",
    "leadCouponUses": "Lead Coupon Uses",
    "leadCouponOrders": "Lead Coupon Orders",
    "newOrders": "New Orders",
    "returningOrders": "Returning Orders",
    "repeatRate": "Repeat Rate",
}

# kpis.previous key -> Notion property name
PREVIOUS_NUMBER_FIELDS = {
    "revenue": "Prev Revenue",
    "orders": "Prev Orders",
    "aov": "Prev AOV",
    "units": "Prev Units",
    "customers": "Prev Customers",
    "netRevenue": "Prev Net Revenue",
    "refunds": "Prev Refunds",
    "discounts": "Prev Discounts",
    "shipping": "Prev Shipping",
    "tax": "Prev Tax",
    "avgItemsPerOrder": "Prev Avg Items/Order",
    "newCustomers": "Prev New Customers",
}

KPI_TEXT_FIELDS = {
    "topProducts": "Top Products",
    "topCategories": "Top Categories",
    "segmentCounts": "Segment Counts",
}

ALWAYS_KEPT = ("Name", "Date", "Store")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def build_number_properties(values: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """{property: value} -> Notion number properties, skipping None/NaN/non-numbers."""
    return {name: {"number": value} for name, value in values.items() if _is_number(value)}


def build_text_properties(values: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {
        name: {"rich_text": [{"text": {"content": value.strip()}}]}
        for name, value in values.items()
        if isinstance(value, str) and value.strip()
    }


def parse_snapshot_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if value:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return utc_now()


def build_snapshot_properties(
    store_id: str,
    kpis: Dict[str, Any],
    period_label: Optional[str] = None,
    date: Any = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Page properties for one snapshot, grouped as
    ``{"base": Name/Date/Store, "numbers": ..., "text": ...}``.
    """
    snapshot_date = parse_snapshot_date(date)
    label = period_label or iso(snapshot_date)[:10]
    previous = kpis.get("previous") or {}

    numbers = build_number_properties(
        {prop: kpis.get(key) for key, prop in KPI_NUMBER_FIELDS.items()}
    )
    prev_values = {prop: previous.get(key) for key, prop in PREVIOUS_NUMBER_FIELDS.items()}
    prev_values["Prev Lead Coupon %"] = kpis.get("leadCouponRedemptionRatePrev")
    numbers.update(build_number_properties(prev_values))

    text = build_text_properties(
        {prop: kpis.get(key) for key, prop in KPI_TEXT_FIELDS.items()}
    )

    base = {
        "Name": {"title": [{"text": {"content": f"KPI Snapshot – {label}"}}]},
        "Date": {"date": {"start": iso(snapshot_date)}},
        "Store": {"rich_text": [{"text": {"content": store_id}}]},
    }
    return {"base": base, "numbers": numbers, "text": text}


class NotionClient:
    """Minimal Notion REST client (databases + pages)."""

    def __init__(
        self,
        token: str = None,
        base_url: str = None,
        version: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token or config.notion.token
        self.base_url = (base_url or config.notion.api_base).rstrip("/")
        self.version = version or config.notion.version
        self.timeout = timeout or config.notion.request_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.token:
            raise IntegrationConfigError("NOTION_TOKEN is required to push KPI snapshots to Notion")

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.version,
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "NotionClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, json: Dict[str, Any] = None) -> Dict[str, Any]:
        if not self._client:
            await self.connect()
        try:
            with Timer(f"notion {method} {path}", logger):
                response = await self._client.request(method, path, json=json)
        except httpx.RequestError as e:
            raise IntegrationConnectionError(f"Notion request failed: {method} {path}", str(e)) from e

        if response.status_code >= 400:
            text = response.text[:500]
            try:
                message = response.json().get("message") or text
            except ValueError:
                message = text
            raise IntegrationAPIError(
                f"Notion API returned {response.status_code}",
                details=message,
                status_code=response.status_code,
                body=text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationAPIError(
                f"Notion returned a non-JSON body for {method} {path}",
                details=str(e),
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    async def retrieve_database(self, database_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/databases/{database_id}")

    async def update_database(self, database_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/databases/{database_id}", {"properties": properties})

    async def create_page(self, database_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/pages", {
            "parent": {"database_id": database_id},
            "properties": properties,
        })

    async def create_kpi_snapshot(
        self,
        store_id: str,
        kpis: Dict[str, Any],
        period_label: Optional[str] = None,
        date: Any = None,
        database_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a KPI snapshot page.

        Raises:
            IntegrationConfigError: No database id configured
            IntegrationAPIError: Notion rejected the retrieve or create call
        """
        database_id = database_id or config.notion.kpi_database_id
        if not database_id:
            raise IntegrationConfigError(
                "NOTION_DB_ID_KPIS (or NOTION_DB_ID) is required to push KPI snapshots to Notion"
            )

        props = build_snapshot_properties(store_id, kpis, period_label, date)
        database = await self.retrieve_database(database_id)
        known = set((database.get("properties") or {}).keys())

        missing = {
            name: {"number": {"format": "number"}}
            for name in props["numbers"] if name not in known
        }
        missing.update({
            name: {"rich_text": {}} for name in props["text"] if name not in known
        })
        if missing:
            try:
                await self.update_database(database_id, missing)
                known.update(missing)
            except IntegrationAPIError as e:
                logger.warning(
                    "Notion schema update failed; continuing with existing properties",
                    extra={"error": str(e), "missing": sorted(missing)}
                )

        properties = dict(props["base"])
        for name, value in {**props["numbers"], **props["text"]}.items():
            if name in known:
                properties[name] = value

        page = await self.create_page(database_id, properties)
        logger.info(
            "Created Notion KPI snapshot",
            extra={"store_id": store_id, "page_id": page.get("id"), "properties": len(properties)}
        )
        return page


_client_instance: Optional[NotionClient] = None


def get_notion_client() -> NotionClient:
    global _client_instance
    if _client_instance is None:
        _client_instance = NotionClient()
    return _client_instance


async def close_notion_client() -> None:
    global _client_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
