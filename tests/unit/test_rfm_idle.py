"""
Tests for core.rfm scoring and core.idle classification.
"""
import pytest
from datetime import datetime, timedelta, timezone

from core import rfm
from core.idle import (
    IdleMetrics,
    build_metrics,
    build_tags,
    classify_idle,
    compute_churn_risk,
    compute_top_category,
    customer_label,
    coupon_codes,
    map_items,
    LONG_DORMANT,
    LOYAL_LAPSED,
    HIGH_VALUE_LAPSED,
    ONE_TIME_LAPSED,
    REPEAT_LAPSED,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestRfmScores:
    """Tests for the fixed-threshold RFM scores."""

    @pytest.mark.parametrize("days,expected", [(0, 5), (7, 5), (8, 4), (30, 4), (90, 3), (180, 2), (181, 1)])
    def test_recency(self, days, expected):
        assert rfm.recency_score(days) == expected

    @pytest.mark.parametrize("orders,expected", [(1, 1), (2, 2), (3, 3), (5, 4), (10, 5), (40, 5)])
    def test_frequency(self, orders, expected):
        assert rfm.frequency_score(orders) == expected

    @pytest.mark.parametrize("total,expected", [(0, 1), (99.99, 1), (100, 2), (200, 3), (500, 4), (1000, 5)])
    def test_monetary(self, total, expected):
        assert rfm.monetary_score(total) == expected

    def test_score_concatenates(self):
        """rfm_score reads as three digits."""
        r, f, m, total, segment = rfm.score(3, 12, 1500)
        assert (r, f, m) == (5, 5, 5)
        assert total == 555
        assert segment == rfm.CHAMPIONS


class TestSegmentFor:
    """Tests for segment selection."""

    def test_champions_need_all_three(self):
        assert rfm.segment_for(4, 4, 4) == rfm.CHAMPIONS
        assert rfm.segment_for(4, 4, 3) == rfm.LOYAL

    def test_promising_is_recent_but_infrequent(self):
        assert rfm.segment_for(5, 1, 5) == rfm.PROMISING

    def test_at_risk(self):
        assert rfm.segment_for(2, 5, 5) == rfm.AT_RISK


class TestBuildMetrics:
    """Tests for build_metrics."""

    def test_single_order(self):
        last = NOW - timedelta(days=45, hours=12)
        metrics = build_metrics(1, 60.0, last, last, NOW)
        assert metrics.ordersCount == 1
        assert metrics.avgDaysBetweenOrders is None
        assert metrics.daysSinceLastOrder == 45.5
        assert metrics.ltv == 60.0

    def test_average_gap(self):
        first = NOW - timedelta(days=100)
        last = NOW - timedelta(days=40)
        metrics = build_metrics(4, 300.0, first, last, NOW)
        assert metrics.avgDaysBetweenOrders == 20.0

    def test_whole_days(self):
        """Snapshot views round to whole days and keep an int."""
        last = NOW - timedelta(days=10, hours=13)
        metrics = build_metrics(2, None, None, last, NOW, whole_days=True)
        assert metrics.daysSinceLastOrder == 11
        assert isinstance(metrics.daysSinceLastOrder, int)
        assert metrics.ltv is None

    def test_naive_timestamps_are_utc(self):
        """DuckDB hands back naive UTC values."""
        last = (NOW - timedelta(days=2)).replace(tzinfo=None)
        metrics = build_metrics(1, 10.0, last, last, NOW)
        assert metrics.daysSinceLastOrder == 2.0
        assert metrics.to_dict()["lastOrderAt"] == "2025-05-30T12:00:00.000Z"


class TestClassifyIdle:
    """Tests for idle segment codes."""

    def test_long_dormant_wins(self):
        metrics = IdleMetrics(ordersCount=8, ltv=2000, daysSinceLastOrder=95)
        assert classify_idle(metrics, 30) == LONG_DORMANT

    def test_loyal(self):
        assert classify_idle(IdleMetrics(ordersCount=3, ltv=50, daysSinceLastOrder=40), 30) == LOYAL_LAPSED

    def test_high_value(self):
        assert classify_idle(IdleMetrics(ordersCount=2, ltv=650, daysSinceLastOrder=40), 30) == HIGH_VALUE_LAPSED

    def test_one_time(self):
        assert classify_idle(IdleMetrics(ordersCount=1, ltv=60, daysSinceLastOrder=45), 30) == ONE_TIME_LAPSED

    def test_repeat(self):
        assert classify_idle(IdleMetrics(ordersCount=2, ltv=120, daysSinceLastOrder=45), 30) == REPEAT_LAPSED


class TestChurnRisk:
    """Tests for compute_churn_risk."""

    def test_no_orders(self):
        assert compute_churn_risk(IdleMetrics()) is None

    def test_one_time_buyer_uses_window(self):
        metrics = IdleMetrics(ordersCount=1, daysSinceLastOrder=60)
        assert compute_churn_risk(metrics, days=30) == 50

    def test_capped_at_100(self):
        metrics = IdleMetrics(ordersCount=3, avgDaysBetweenOrders=10, daysSinceLastOrder=90)
        assert compute_churn_risk(metrics) == 100


class TestHelpers:
    """Tests for tag, label and item helpers."""

    def test_tags(self):
        metrics = IdleMetrics(ordersCount=4)
        assert build_tags(metrics, 60, LOYAL_LAPSED) == ["idle_60", "repeat_buyer", "loyal"]
        assert build_tags(IdleMetrics(ordersCount=1), 30, ONE_TIME_LAPSED) == ["idle_30", "one_time_buyer"]

    def test_customer_label_fallbacks(self):
        assert customer_label({"first_name": "Ann", "last_name": None}) == "Ann"
        assert customer_label({"email": "a@b.co"}) == "a@b.co"
        assert customer_label({}) == "Guest"

    def test_top_category_first_seen_wins_ties(self):
        items = [
            {"categories": ["Shoes", "Sale"]},
            {"categories": ["Sale", "Shoes"]},
            {"categories": ["Balls"]},
        ]
        assert compute_top_category(items) == "Shoes"
        assert compute_top_category([{"categories": []}]) is None

    def test_map_items_and_coupons(self):
        items = map_items([{"product_id": 3, "name": "Tape", "sku": None, "quantity": 2,
                            "line_total": 19.999, "categories": ["Accessories"]}])
        assert items == [{"productId": 3, "name": "Tape", "sku": None, "quantity": 2,
                          "lineTotal": 20.0, "categories": ["Accessories"]}]
        assert coupon_codes({"coupons": [{"code": "A"}, {"code": None}]}) == ["A"]
