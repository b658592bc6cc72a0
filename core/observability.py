"""
Structured logging, request correlation IDs and in-process metrics.

Every log line carries the correlation id and, when one is bound, the
store the request or job is working on.

Usage:
    from core.observability import setup_logging, get_logger, correlation_context

    setup_logging(level="INFO", json_format=False)
    logger = get_logger(__name__)

    with correlation_context("cron-notion", store_id=store_id):
        logger.info("Pushing KPI snapshot")
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_store_id: ContextVar[Optional[str]] = ContextVar("store_id", default=None)

# LogRecord attributes that are not user-supplied `extra` fields
_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
})

NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "uvicorn.access", "watchfiles")


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def get_bound_store() -> Optional[str]:
    return _store_id.get()


def bind_store(store_id: Optional[str]) -> None:
    """Attach ``store_id`` to every later log line in this context."""
    _store_id.set(store_id or None)


class correlation_context:
    """
    Binds a correlation ID (and optionally a store) for scripts and cron
    jobs; both are restored on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None, store_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.store_id = store_id
        self._tokens = ()

    def __enter__(self):
        self._tokens = (
            _correlation_id.set(self.correlation_id),
            _store_id.set(self.store_id) if self.store_id else None,
        )
        return self.correlation_id

    def __exit__(self, *args):
        cid_token, store_token = self._tokens
        _correlation_id.reset(cid_token)
        if store_token is not None:
            _store_id.reset(store_token)


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras = {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }
    store_id = get_bound_store()
    if store_id and not extras.get("store_id"):
        extras["store_id"] = store_id
    return extras


class StructuredFormatter(logging.Formatter):
    """JSON formatter: one object per line with correlation_id and extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        entry.update(_extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Format: TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE | extras
    """

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        correlation_str = f" [{correlation_id}]" if correlation_id else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        line = f"{timestamp} - {record.levelname:8} - {record.name}{correlation_str} - {record.getMessage()}"
        extras = _extras(record)
        if extras:
            line += f" | {extras}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Configure root logging.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of human-readable text
        include_libs: Keep third-party HTTP client loggers at the root level
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not include_libs:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class Timer:
    """
    Context manager for timing operations.

    Usage:
        with Timer("notion.create_page", logger) as t:
            await client.create_page(...)
        t.elapsed_ms
    """

    SLOW_MS = 1000

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if self.logger:
            level = logging.WARNING if self.elapsed_ms > self.SLOW_MS else logging.DEBUG
            self.logger.log(
                level,
                f"{self.name} completed",
                extra={"duration_ms": round(self.elapsed_ms, 2)}
            )


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS COLLECTOR (in-memory)
# ═══════════════════════════════════════════════════════════════════════════════

class MetricsCollector:
    """Request counts, error counts and recent timing samples per endpoint."""

    def __init__(self, max_samples: int = 100):
        self._request_counts: Dict[str, int] = {}
        self._error_counts: Dict[str, int] = {}
        self._timing_samples: Dict[str, list] = {}
        self._max_samples = max_samples

    def record_request(self, endpoint: str) -> None:
        self._request_counts[endpoint] = self._request_counts.get(endpoint, 0) + 1

    def record_error(self, error_type: str) -> None:
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

    def record_timing(self, operation: str, duration_ms: float) -> None:
        samples = self._timing_samples.setdefault(operation, [])
        samples.append(duration_ms)
        if len(samples) > self._max_samples:
            del samples[:-self._max_samples]

    def get_stats(self) -> Dict[str, Any]:
        """Get current metrics snapshot."""
        timing = {}
        for operation, samples in self._timing_samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            timing[operation] = {
                "count": len(samples),
                "avg_ms": round(sum(samples) / len(samples), 2),
                "max_ms": round(ordered[-1], 2),
                "p50_ms": round(ordered[len(ordered) // 2], 2),
                "p95_ms": round(ordered[int(len(ordered) * 0.95)], 2) if len(ordered) >= 20 else None,
            }
        return {
            "requests": dict(self._request_counts),
            "errors": dict(self._error_counts),
            "timing": timing,
        }

    def reset(self) -> None:
        self._request_counts.clear()
        self._error_counts.clear()
        self._timing_samples.clear()


# Global metrics instance
metrics = MetricsCollector()
