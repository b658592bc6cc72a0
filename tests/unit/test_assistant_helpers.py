"""
Tests for the assistant's request shaping helpers.
"""
from datetime import date

from core.assistant_tools import TOOLS, clean_params
from core.llm_client import tool_use_blocks
from web.services.assistant_service import (
    filters_message,
    is_known_tool,
    merge_args,
    resolve_date_range,
    sanitize_answer,
    select_tools,
)


def _span(date_range):
    start, end = (date.fromisoformat(d) for d in date_range)
    return (end - start).days + 1


class TestResolveDateRange:
    """Tests for resolve_date_range."""

    def test_filters_win(self):
        assert resolve_date_range("last week?", {"from": "2025-01-01", "to": "2025-01-31"}) == (
            "2025-01-01", "2025-01-31",
        )

    def test_one_sided_filter_ignored(self):
        assert _span(resolve_date_range("revenue", {"from": "2025-01-01"})) == 30

    def test_short_window_phrases(self):
        for message in ("Revenue LAST WEEK", "orders in the past 7 days", "previous week please"):
            assert _span(resolve_date_range(message)) == 7

    def test_default_thirty_days(self):
        assert _span(resolve_date_range("How is revenue trending?")) == 30


class TestSelectTools:
    """Tests for select_tools."""

    def test_product_question_drops_categories(self):
        names = {t["name"] for t in select_tools("Top products this month")}
        assert "get_top_products" in names
        assert "get_top_categories" not in names

    def test_category_question_drops_products(self):
        names = {t["name"] for t in select_tools("Best category?")}
        assert "get_top_products" not in names

    def test_both_or_neither_keep_everything(self):
        assert len(select_tools("product and category mix")) == len(TOOLS)
        assert len(select_tools("revenue")) == len(TOOLS)


class TestSanitizeAnswer:
    """Tests for sanitize_answer."""

    def test_strips_bold_and_headings(self):
        assert sanitize_answer("## Summary\n**Revenue** was 10.") == "Summary\nRevenue was 10."

    def test_empty(self):
        assert sanitize_answer(None) is None
        assert sanitize_answer("") == ""


class TestMergeArgs:
    """Tests for merge_args."""

    def test_request_filters_override_model(self):
        base = {"storeId": "s1", "from": "2025-01-01", "to": "2025-01-07"}
        merged = merge_args({"storeId": "other", "limit": 3, "category": "Paddles"}, base)
        assert merged == {"storeId": "s1", "from": "2025-01-01", "to": "2025-01-07", "limit": 3}

    def test_request_category_kept(self):
        base = {"storeId": "s1", "from": "a", "to": "b", "coupon": "save10"}
        assert merge_args({"coupon": "other"}, base)["coupon"] == "save10"


def test_filters_message_mentions_none():
    message = filters_message({"storeId": "s1", "from": "2025-01-01", "to": "2025-01-07"})
    assert "storeId=s1" in message
    assert "category=none, coupon=none" in message


def test_known_tools_include_aliases():
    assert is_known_tool("get_kpis")
    assert is_known_tool("get_last_order")
    assert not is_known_tool("drop_tables")


def test_clean_params():
    assert clean_params({"a": None, "b": "", "c": 3, "d": True, "e": "x"}) == {"c": "3", "d": "true", "e": "x"}


def test_tool_use_blocks():
    blocks = tool_use_blocks({
        "content": "Checking",
        "tool_calls": [{"id": "t1", "name": "get_kpis", "input": {"storeId": "s1"}}],
    })
    assert blocks == [
        {"type": "text", "text": "Checking"},
        {"type": "tool_use", "id": "t1", "name": "get_kpis", "input": {"storeId": "s1"}},
    ]
