"""
Tests for the pure helpers in web.services.customer_service.
"""
import dataclasses

import pytest

from core.config import GHLConfig, config
from core.exceptions import ValidationError
from web.services.customer_service import (
    CSV_COLUMNS,
    apply_ghl_action,
    csv_filename,
    filter_idle_rows,
    inactive_csv,
    merge_tags,
    summarize_orders,
)


def _row(segment, top=None, item_categories=()):
    return {
        "customerId": 1,
        "email": "ann@example.com",
        "segment": segment,
        "topCategory": top,
        "lastItems": [{"name": "Paddle", "quantity": 1, "categories": list(item_categories)}],
    }


class TestFilterIdleRows:
    """Tests for filter_idle_rows."""

    def test_no_filters(self):
        rows = [_row("ONE_TIME_LAPSED"), _row("LOYAL_LAPSED")]
        assert filter_idle_rows(rows) == rows

    def test_segment_exact(self):
        rows = [_row("ONE_TIME_LAPSED"), _row("LOYAL_LAPSED")]
        assert [r["segment"] for r in filter_idle_rows(rows, segment="LOYAL_LAPSED")] == ["LOYAL_LAPSED"]

    def test_category_matches_top_or_item(self):
        """Category is case-insensitive against topCategory or any last-order item."""
        by_top = _row("ONE_TIME_LAPSED", top="Paddles")
        by_item = _row("ONE_TIME_LAPSED", item_categories=("Balls", "PADDLES"))
        neither = _row("ONE_TIME_LAPSED", top="Shoes", item_categories=("Shoes",))

        kept = filter_idle_rows([by_top, by_item, neither], category="paddles")
        assert kept == [by_top, by_item]


class TestInactiveCsv:
    """Tests for inactive_csv / csv_filename."""

    def test_header_only(self):
        assert inactive_csv([]) == ",".join(CSV_COLUMNS)

    def test_row(self):
        row = {
            "customerId": 7,
            "email": "ann@example.com",
            "name": "Ann Lee",
            "phone": None,
            "ordersCount": 2,
            "lastOrderCoupons": ["save10", "ship"],
            "lastItems": [
                {"name": "Paddle", "quantity": 1, "categories": ["Paddles", "Gear"]},
                {"name": "Balls", "quantity": 3, "categories": []},
            ],
            "metrics": {"daysSinceLastOrder": 40.5, "ltv": 210.0, "avgDaysBetweenOrders": 12.0},
            "segment": "REPEAT_LAPSED",
            "offer": {"offer": "comeback_discount"},
            "churnRisk": 84,
            "tags": ["idle_30", "repeat_buyer"],
        }
        lines = inactive_csv([row]).split("\n")
        assert len(lines) == 2
        cells = lines[1].split(",")
        assert cells[:5] == ["7", "ann@example.com", "Ann Lee", "", "2"]
        assert "save10|ship" in cells
        assert "Paddle x1 [Paddles|Gear]; Balls x3" in cells
        assert cells[-4:] == ["REPEAT_LAPSED", "comeback_discount", "84", "idle_30|repeat_buyer"]

    def test_filename(self):
        assert csv_filename("store-1", 45) == "inactive-customers-store-1-45d.csv"


class TestMergeTags:
    """Tests for merge_tags."""

    def test_case_insensitive_append(self):
        assert merge_tags(["VIP", "winback"], ["vip", "loyalty_nudge_email", "LOYALTY_NUDGE_EMAIL"]) == [
            "VIP", "winback", "loyalty_nudge_email",
        ]


class TestSummarizeOrders:
    """Tests for summarize_orders."""

    def test_ranks_products_and_categories(self):
        orders = [
            {"coupons": ["save10"], "items": [
                {"productId": 1, "name": "Paddle", "quantity": 1, "lineTotal": 90.0, "categories": ["Paddles"]},
                {"productId": 2, "name": "Balls", "quantity": 2, "lineTotal": 10.0, "categories": ["Balls"]},
            ]},
            {"coupons": ["save10", "vip"], "items": [
                {"productId": 2, "name": "Balls", "quantity": 4, "lineTotal": 20.0, "categories": ["Balls"]},
                {"productId": None, "name": None, "quantity": 1, "lineTotal": None, "categories": []},
            ]},
        ]
        summary = summarize_orders(orders)

        assert [p["name"] for p in summary["topProducts"]] == ["Paddle", "Balls", "Item"]
        assert summary["topProducts"][1] == {"name": "Balls", "quantity": 6, "revenue": 30.0, "categories": ["Balls"]}
        assert summary["topCategories"] == [
            {"name": "Paddles", "quantity": 1, "revenue": 90.0},
            {"name": "Balls", "quantity": 6, "revenue": 30.0},
        ]
        assert summary["coupons"] == ["save10", "vip"]


class FakeGHL:
    """Just enough of GHLClient for apply_ghl_action."""

    def __init__(self, contact):
        self.contact = contact
        self.upserts = []

    async def fetch_contact(self, contact_id):
        return self.contact

    async def upsert_contact_with_tags(self, location_id, tags, **fields):
        self.upserts.append((location_id, tags, fields))
        return {"contact": {"id": fields.get("contact_id")}}


class TestApplyGhlAction:
    """Tests for apply_ghl_action."""

    @pytest.mark.asyncio
    async def test_action_tag_merged(self):
        ghl = FakeGHL({"email": "ann@example.com", "firstName": "Ann", "tags": ["vip"]})

        result = await apply_ghl_action(ghl, " c1 ", action="email_nudge", tags=["Spring"], location_id="loc")

        assert result == {"ok": True, "tags": ["vip", "loyalty_nudge_email", "Spring"]}
        location, tags, fields = ghl.upserts[0]
        assert location == "loc"
        assert fields["contact_id"] == "c1"
        assert fields["email"] == "ann@example.com"

    @pytest.mark.asyncio
    async def test_location_falls_back_to_config(self, monkeypatch):
        monkeypatch.setattr(
            "web.services.customer_service.config",
            dataclasses.replace(config, ghl=GHLConfig(pit="pit", location_id="loc-env")),
        )
        ghl = FakeGHL({})
        await apply_ghl_action(ghl, "c1", action="reward_unlocked")
        assert ghl.upserts[0][0] == "loc-env"
        assert ghl.upserts[0][1] == ["loyalty_reward_unlocked"]

    @pytest.mark.asyncio
    async def test_validation(self):
        ghl = FakeGHL({})
        with pytest.raises(ValidationError, match="GHL_LOCATION_ID is required"):
            await apply_ghl_action(ghl, "c1", action="email_nudge")
        with pytest.raises(ValidationError, match="contactId is required"):
            await apply_ghl_action(ghl, "  ", action="email_nudge", location_id="loc")
        with pytest.raises(ValidationError, match="action or tags are required"):
            await apply_ghl_action(ghl, "c1", action="unknown", tags=[], location_id="loc")
        assert ghl.upserts == []
