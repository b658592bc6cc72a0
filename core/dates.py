"""
Analytics calendar helpers.

Orders are stored in UTC; every report buckets them by calendar day in
``ANALYTICS_TIMEZONE``. A range ``from=2025-01-01&to=2025-01-31`` means
local midnight on the 1st through 23:59:59.999 local on the 31st.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
from zoneinfo import ZoneInfo

from core.config import config

T = TypeVar("T")

UTC = timezone.utc
END_OF_DAY = time(23, 59, 59, 999000)


def analytics_tz() -> ZoneInfo:
    return ZoneInfo(config.analytics.timezone)


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from DuckDB."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db(dt: datetime) -> datetime:
    """Naive UTC datetime for DuckDB TIMESTAMP parameters."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def iso(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    if dt is None:
        return None
    value = as_utc(dt)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def local_date(dt: datetime) -> date:
    return as_utc(dt).astimezone(analytics_tz()).date()


def ymd(dt: datetime) -> str:
    """Calendar day of ``dt`` in the analytics timezone."""
    return local_date(dt).isoformat()


def round2(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return round(float(value), 2)


def zoned_day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=analytics_tz()).astimezone(UTC)


def zoned_day_end(day: date) -> datetime:
    return datetime.combine(day, END_OF_DAY, tzinfo=analytics_tz()).astimezone(UTC)


def _parse_day(value: str) -> date:
    return date.fromisoformat(str(value).strip()[:10])


def parse_date_range(
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    default_days: int = 30,
) -> Tuple[datetime, datetime]:
    """
    Resolve query ``from``/``to`` into aware UTC bounds.

    Both must be present to be honoured; otherwise the last ``default_days``
    local days ending today are used.

    Raises:
        ValueError: "Invalid from/to date"
    """
    if date_from and date_to:
        try:
            start_day = _parse_day(date_from)
            end_day = _parse_day(date_to)
        except ValueError:
            raise ValueError("Invalid from/to date")
    else:
        end_day = utc_now().astimezone(analytics_tz()).date()
        start_day = end_day - timedelta(days=default_days - 1)
    return zoned_day_start(start_day), zoned_day_end(end_day)


def iter_days(from_dt: datetime, to_dt: datetime) -> List[str]:
    """Local calendar days covered by [from_dt, to_dt], inclusive."""
    start = local_date(from_dt)
    end = local_date(to_dt)
    days = []
    cursor = start
    while cursor <= end:
        days.append(cursor.isoformat())
        cursor += timedelta(days=1)
    return days


def build_continuous_series(
    from_dt: datetime,
    to_dt: datetime,
    buckets: Dict[str, Any],
    fn: Callable[[str, Optional[Any]], T],
) -> List[T]:
    """One point per local day, gaps filled by calling ``fn(day, None)``."""
    return [fn(day, buckets.get(day)) for day in iter_days(from_dt, to_dt)]


def previous_range(from_dt: datetime, to_dt: datetime) -> Tuple[datetime, datetime]:
    """Equal-length window ending one millisecond before ``from_dt``."""
    span = to_dt - from_dt
    prev_to = from_dt - timedelta(milliseconds=1)
    return prev_to - span, prev_to
