"""
Idle-customer classification shared by the customer, cron and assistant code.

A customer is "idle" for a window of N days when they ordered before the
cutoff (now - N days) and not since. Idle customers are bucketed into
segments, each with a win-back offer from SEGMENT_PLAYBOOK.
"""
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.dates import as_utc, iso, round2

DAY_SECONDS = 86400

LONG_DORMANT = "LONG_DORMANT"
LOYAL_LAPSED = "LOYAL_LAPSED"
HIGH_VALUE_LAPSED = "HIGH_VALUE_LAPSED"
ONE_TIME_LAPSED = "ONE_TIME_LAPSED"
REPEAT_LAPSED = "REPEAT_LAPSED"

HIGH_VALUE_LTV = 500
LOYAL_MIN_ORDERS = 3
DORMANT_MULTIPLIER = 3

SEGMENT_PLAYBOOK: Dict[str, Dict[str, Any]] = {
    LONG_DORMANT: {"offer": "deep_discount", "value": 25, "channel": "email"},
    LOYAL_LAPSED: {"offer": "loyalty_reward", "value": 15, "channel": "email"},
    HIGH_VALUE_LAPSED: {"offer": "vip_discount", "value": 20, "channel": "email"},
    ONE_TIME_LAPSED: {"offer": "second_order_discount", "value": 10, "channel": "email"},
    REPEAT_LAPSED: {"offer": "comeback_discount", "value": 15, "channel": "email"},
}


@dataclass
class IdleMetrics:
    ordersCount: int = 0
    firstOrderAt: Optional[datetime] = None
    lastOrderAt: Optional[datetime] = None
    ltv: Optional[float] = None
    avgDaysBetweenOrders: Optional[float] = None
    daysSinceLastOrder: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["firstOrderAt"] = iso(self.firstOrderAt)
        data["lastOrderAt"] = iso(self.lastOrderAt)
        return data


def days_between(later: datetime, earlier: datetime) -> float:
    return (as_utc(later) - as_utc(earlier)).total_seconds() / DAY_SECONDS


def build_metrics(
    count: int,
    total: Optional[float],
    first: Optional[datetime],
    last: Optional[datetime],
    now: datetime,
    whole_days: bool = False,
) -> IdleMetrics:
    """
    Metrics from an order aggregate.

    daysSinceLastOrder keeps two decimals; ``whole_days`` rounds it
    to whole days (used by the cheaper snapshot and RFM views).
    """
    avg_gap = None
    if count > 1 and first and last:
        avg_gap = round2(days_between(last, first) / (count - 1))
    since = None
    if last:
        since = days_between(now, last)
        since = round(since) if whole_days else round2(since)
    return IdleMetrics(
        ordersCount=count,
        firstOrderAt=as_utc(first),
        lastOrderAt=as_utc(last),
        ltv=round2(total) if total is not None else None,
        avgDaysBetweenOrders=avg_gap,
        daysSinceLastOrder=since,
    )


def classify_idle(metrics: IdleMetrics, days: int) -> str:
    """Pick the idle segment code for a customer idle for at least ``days``."""
    since = metrics.daysSinceLastOrder or 0
    if since >= days * DORMANT_MULTIPLIER:
        return LONG_DORMANT
    if metrics.ordersCount >= LOYAL_MIN_ORDERS:
        return LOYAL_LAPSED
    if (metrics.ltv or 0) >= HIGH_VALUE_LTV:
        return HIGH_VALUE_LAPSED
    if metrics.ordersCount <= 1:
        return ONE_TIME_LAPSED
    return REPEAT_LAPSED


def compute_churn_risk(metrics: IdleMetrics, days: int = 30) -> Optional[int]:
    """
    0-100 risk score: days since the last order against the customer's own
    ordering cadence (or ``days`` for one-time buyers).
    """
    if metrics.daysSinceLastOrder is None:
        return None
    cadence = metrics.avgDaysBetweenOrders or days
    if cadence <= 0:
        cadence = days
    ratio = metrics.daysSinceLastOrder / cadence
    # ratio 1 -> 25, ratio 4+ -> 100
    return int(min(100, max(0, round(ratio * 25))))


def build_tags(metrics: IdleMetrics, days: int, segment: str) -> List[str]:
    tags = [f"idle_{days}"]
    tags.append("repeat_buyer" if metrics.ordersCount >= 2 else "one_time_buyer")
    if "LOYAL" in segment:
        tags.append("loyal")
    return tags


def full_name(first: Optional[str], last: Optional[str]) -> str:
    return " ".join(p for p in (first, last) if p).strip()


def customer_label(row: Dict[str, Any]) -> str:
    """Display name for an order's customer: name, email, or "Guest"."""
    return full_name(row.get("first_name"), row.get("last_name")) or row.get("email") or "Guest"


def map_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order items as returned to clients, with their category names."""
    return [
        {
            "productId": item.get("product_id"),
            "name": item.get("name"),
            "sku": item.get("sku"),
            "quantity": item.get("quantity"),
            "lineTotal": round2(item.get("line_total") or 0),
            "categories": list(item.get("categories") or []),
        }
        for item in items
    ]


def coupon_codes(order: Dict[str, Any]) -> List[str]:
    return [c["code"] for c in order.get("coupons") or [] if c.get("code")]


def compute_top_category(items: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Most frequent category among the items; first seen wins ties."""
    counts = Counter()
    for item in items:
        for cat in item.get("categories") or []:
            counts[cat] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]
