"""
Integration tests for core/notion_client.py and the snapshot service.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from core.exceptions import IntegrationAPIError, IntegrationConfigError
from core.notion_client import (
    NotionClient,
    build_number_properties,
    build_snapshot_properties,
    build_text_properties,
)
from web.services import snapshot_service
from web.services.analytics_service import OrderFilter


class FakeNotion:
    """Records Notion requests; the database knows ``known`` properties."""

    def __init__(self, known=("Name", "Date", "Store", "Revenue"), schema_status=200):
        self.known = set(known)
        self.schema_status = schema_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        if request.method == "GET":
            return httpx.Response(200, json={"properties": {k: {} for k in self.known}})
        if request.method == "PATCH":
            if self.schema_status >= 400:
                return httpx.Response(self.schema_status, json={"message": "Insufficient permissions"})
            self.known.update(body["properties"])
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"id": "page-1", "url": "https://notion.so/page-1"})

    @property
    def page_properties(self):
        return [b for m, p, b in self.requests if m == "POST"][-1]["properties"]


def notion_client(fake: FakeNotion) -> NotionClient:
    return NotionClient(token="secret", base_url="https://notion.test/v1", transport=httpx.MockTransport(fake))


class TestPropertyBuilders:
    """Tests for Notion property builders."""

    def test_numbers_skip_non_numeric(self):
        props = build_number_properties({"A": 1, "B": None, "C": float("nan"), "D": True, "E": "3"})
        assert props == {"A": {"number": 1}}

    def test_text_skips_blank(self):
        props = build_text_properties({"A": " hi ", "B": "  ", "C": None})
        assert props == {"A": {"rich_text": [{"text": {"content": "hi"}}]}}

    def test_snapshot_properties(self):
        props = build_snapshot_properties(
            "store-1",
            {"revenue": 100.5, "orders": 3, "previous": {"revenue": 80}, "topProducts": "Paddle: 10.00 (1 units)"},
            period_label="2025-W01",
            date="2025-01-07",
        )
        assert props["base"]["Name"]["title"][0]["text"]["content"].endswith("2025-W01")
        assert props["base"]["Date"] == {"date": {"start": "2025-01-07T00:00:00.000Z"}}
        assert props["numbers"]["Revenue"] == {"number": 100.5}
        assert props["numbers"]["Prev Revenue"] == {"number": 80}
        assert "Prev Orders" not in props["numbers"]
        assert "Top Products" in props["text"]

    def test_label_defaults_to_date(self):
        props = build_snapshot_properties("s", {}, date=datetime(2025, 3, 1, tzinfo=timezone.utc))
        assert props["base"]["Name"]["title"][0]["text"]["content"].endswith("2025-03-01")


class TestNotionClient:
    """Tests for NotionClient.create_kpi_snapshot."""

    def test_requires_token(self):
        with pytest.raises(IntegrationConfigError):
            NotionClient(token="")

    @pytest.mark.asyncio
    async def test_requires_database_id(self):
        async with notion_client(FakeNotion()) as client:
            with pytest.raises(IntegrationConfigError):
                await client.create_kpi_snapshot("s", {"revenue": 1})

    @pytest.mark.asyncio
    async def test_adds_missing_properties(self):
        fake = FakeNotion()
        async with notion_client(fake) as client:
            page = await client.create_kpi_snapshot("s", {"revenue": 10, "orders": 2}, database_id="db1")

        methods = [m for m, _, _ in fake.requests]
        assert methods == ["GET", "PATCH", "POST"]
        patch_body = fake.requests[1][2]
        assert patch_body["properties"] == {"Orders": {"number": {"format": "number"}}}
        assert fake.page_properties["Orders"] == {"number": 2}
        assert page["id"] == "page-1"

    @pytest.mark.asyncio
    async def test_schema_update_failure_drops_unknown(self):
        fake = FakeNotion(schema_status=403)
        async with notion_client(fake) as client:
            await client.create_kpi_snapshot("s", {"revenue": 10, "orders": 2}, database_id="db1")

        assert "Revenue" in fake.page_properties
        assert "Orders" not in fake.page_properties

    @pytest.mark.asyncio
    async def test_page_error_raises(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"properties": {}})
            return httpx.Response(400, json={"message": "body failed validation"})

        client = NotionClient(token="secret", transport=httpx.MockTransport(handler))
        with pytest.raises(IntegrationAPIError) as exc_info:
            await client.create_kpi_snapshot("s", {}, database_id="db1")
        await client.close()
        assert exc_info.value.details == "body failed validation"

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        client = NotionClient(token="secret", transport=httpx.MockTransport(handler))
        with pytest.raises(IntegrationAPIError) as exc_info:
            await client.retrieve_database("db1")
        await client.close()
        assert exc_info.value.message == "Notion returned a non-JSON body for GET /databases/db1"


class TestSnapshotService:
    """Tests for collect_kpis / notion_kpi_snapshot / idle reports on the seeded store."""

    @pytest.mark.asyncio
    async def test_collect_kpis(self, seeded):
        f = OrderFilter.from_query(seeded.store_id)
        kpis = await snapshot_service.collect_kpis(seeded.store, f)

        assert kpis["aov"] == 201.71
        assert kpis["refunds"] == 15.0
        assert kpis["discounts"] == 10.0
        assert kpis["topProducts"].startswith("Court Shoes")
        assert kpis["topCategories"] == "Footwear: 180.00 (2 units); Accessories: 85.00 (5 units)"
        assert "Loyal" in kpis["segmentCounts"] or "Champions" in kpis["segmentCounts"]
        assert kpis["newOrders"] + kpis["returningOrders"] == 4

    @pytest.mark.asyncio
    async def test_notion_kpi_snapshot(self, seeded):
        fake = FakeNotion(known=("Name", "Date", "Store", "Revenue", "Refunds"))
        f = OrderFilter.from_query(seeded.store_id)
        client = notion_client(fake)
        try:
            result = await snapshot_service.notion_kpi_snapshot(
                seeded.store, f, period_label="Last 30 days", database_id="kpi-db", client=client
            )
        finally:
            await client.close()

        assert result == {"ok": True, "snapshot": {"id": "page-1", "url": "https://notion.so/page-1"}}
        assert fake.page_properties["Refunds"] == {"number": 15.0}
        assert fake.page_properties["Store"]["rich_text"][0]["text"]["content"] == "store-1"
        assert fake.requests[0][1] == "/v1/databases/kpi-db"
        top_categories = fake.page_properties["Top Categories"]["rich_text"][0]["text"]["content"]
        assert top_categories.startswith("Footwear: 180.00")

    @pytest.mark.asyncio
    async def test_idle_snapshot(self, seeded):
        report = await snapshot_service.idle_snapshot(seeded.store, seeded.store_id, days=30, now=seeded.now)

        # Only bob has not ordered in 30 days
        assert report["segments"] == {"ONE_TIME_LAPSED": 1}
        assert report["csv"].endswith("/customers/inactive?storeId=store-1&days=30&format=csv")
        assert report["csvBySegment"]["ONE_TIME_LAPSED"].endswith("&segment=ONE_TIME_LAPSED")

    @pytest.mark.asyncio
    async def test_idle_health(self, seeded):
        report = await snapshot_service.idle_health(seeded.store, seeded.store_id, threshold_pct=50, now=seeded.now)

        # bob and dave have no order in either 30-day window
        assert report["countToday"] == 2
        assert report["countYesterday"] == 2
        assert report["changePct"] == 0
        assert report["healthy"] is True
