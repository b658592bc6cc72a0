"""
Integration tests for core/observability.py and the request middleware.
"""
import json
import logging
import time as time_module

from core.observability import (
    bind_store,
    correlation_context,
    get_bound_store,
    generate_correlation_id,
    set_correlation_id,
    get_correlation_id,
    Timer,
    MetricsCollector,
    StructuredFormatter,
    HumanReadableFormatter,
)


def _record(msg: str = "Test", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generate_is_short_hex(self):
        cid = generate_correlation_id()
        assert len(cid) == 8
        int(cid, 16)

    def test_set_and_get(self):
        set_correlation_id("req-123")
        assert get_correlation_id() == "req-123"

    def test_context_restores_previous(self):
        """Leaving the context restores the outer id."""
        set_correlation_id("outer")
        with correlation_context("cron-notion"):
            assert get_correlation_id() == "cron-notion"
        assert get_correlation_id() == "outer"

    def test_context_binds_store(self):
        with correlation_context("sync", store_id="store-1"):
            assert get_bound_store() == "store-1"
            parsed = json.loads(StructuredFormatter().format(_record("Store sync completed")))
        assert parsed["store_id"] == "store-1"
        assert get_bound_store() is None

    def test_explicit_store_extra_wins(self):
        bind_store("bound")
        try:
            parsed = json.loads(StructuredFormatter().format(_record("x", store_id="explicit")))
        finally:
            bind_store(None)
        assert parsed["store_id"] == "explicit"


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer("duckdb.rebuild") as timer:
            time_module.sleep(0.05)
        assert timer.elapsed_ms >= 45
        assert timer.name == "duckdb.rebuild"

    def test_logs_duration_when_logger_given(self, caplog):
        logger = logging.getLogger("test.timer")
        with caplog.at_level(logging.DEBUG, logger="test.timer"):
            with Timer("notion.create_page", logger):
                pass
        assert any(r.getMessage() == "notion.create_page completed" for r in caplog.records)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_counts_requests_and_errors(self):
        metrics = MetricsCollector()
        metrics.record_request("GET /analytics/aov")
        metrics.record_request("GET /analytics/aov")
        metrics.record_error("HTTP_400")

        stats = metrics.get_stats()
        assert stats["requests"]["GET /analytics/aov"] == 2
        assert stats["errors"]["HTTP_400"] == 1

    def test_timing_summary(self):
        metrics = MetricsCollector()
        for ms in (100.0, 200.0, 150.0):
            metrics.record_timing("GET /kpis", ms)

        timing = metrics.get_stats()["timing"]["GET /kpis"]
        assert timing["count"] == 3
        assert timing["avg_ms"] == 150.0
        assert timing["max_ms"] == 200.0
        assert timing["p50_ms"] == 150.0
        # Too few samples for a p95
        assert timing["p95_ms"] is None

    def test_samples_are_capped(self):
        metrics = MetricsCollector(max_samples=5)
        for ms in range(10):
            metrics.record_timing("op", float(ms))
        timing = metrics.get_stats()["timing"]["op"]
        assert timing["count"] == 5
        assert timing["avg_ms"] == 7.0

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_request("x")
        metrics.record_timing("x", 1.0)
        metrics.reset()
        assert metrics.get_stats() == {"requests": {}, "errors": {}, "timing": {}}


class TestFormatters:
    """Tests for the log formatters."""

    def test_json_includes_extras_and_correlation(self):
        set_correlation_id("abc12345")
        parsed = json.loads(StructuredFormatter().format(_record("Request completed", store_id="s1")))

        assert parsed["message"] == "Request completed"
        assert parsed["level"] == "INFO"
        assert parsed["correlation_id"] == "abc12345"
        assert parsed["store_id"] == "s1"
        assert parsed["timestamp"].endswith("Z")

    def test_human_readable_appends_extras(self):
        set_correlation_id("abc12345")
        line = HumanReadableFormatter().format(_record("Sync done", orders=3))
        assert "[abc12345]" in line
        assert "Sync done" in line
        assert "'orders': 3" in line


class TestRequestMiddleware:
    """Correlation and timing headers on API responses."""

    def test_echoes_request_id(self, client):
        response = client.get("/stores/default", headers={"X-Request-ID": "fixed-id"})
        assert response.headers["X-Request-ID"] == "fixed-id"
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_generates_request_id(self, client):
        response = client.get("/kpis")
        assert len(response.headers["X-Request-ID"]) == 8

    def test_metrics_keyed_by_route_template(self, client):
        client.get("/customers/999999/winback")
        stats = client.get("/metrics").json()
        assert "GET /customers/{customer_id}/winback" in stats["requests"]
