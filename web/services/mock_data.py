"""
Demo numbers for the dashboard endpoints that are not backed by synced data yet.

Everything here is deterministic arithmetic on fixed baselines: a 30-day
baseline scaled by the requested day count, or a flat multiplier when a
category / coupon filter is active.
"""
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from core.dates import analytics_tz, round2, utc_now
from core.exceptions import ValidationError

BASELINE_DAYS = 30

KPI_BASE = {
    "revenue": 14724.86,
    "orders": 73,
    "aov": 201.71,
    "units": 296,
    "customers": 65,
}

# KPI/heatmap filter scales and the (milder) sales/segment multipliers
KPI_FILTER_SCALE = {"category": 0.6, "coupon": 0.5}
SERIES_FILTER_SCALE = {"category": 0.7, "coupon": 0.5}

SALES_BASE_REVENUE = 400
SALES_WEEKLY_SPIKE = 600

SEGMENT_BASE = [
    ("Champions", 65, 6240.0),
    ("Loyal", 40, 3180.0),
    ("Promising", 28, 1150.0),
    ("At Risk", 15, 520.0),
]

# Customers per (recency score, frequency score); row = recency 1..5
HEATMAP_BASE = [
    [9, 4, 2, 1, 0],
    [11, 6, 3, 1, 1],
    [14, 9, 5, 3, 1],
    [12, 10, 8, 5, 3],
    [8, 9, 10, 9, 7],
]

META_CATEGORIES = ["Paddles", "Balls", "Apparel", "Shoes", "Accessories"]
META_COUPONS = ["WELCOME10", "SUMMER-SALE", "BF-2024", "LOYALTY-VIP"]

POPULAR_PRODUCTS = [
    {"id": 1, "name": "Pro Carbon Paddle", "sku": "P-PRO-CARBON", "price": 129.99, "total_sales": 184},
    {"id": 2, "name": "Control Paddle Lite", "sku": "P-CONTROL-LITE", "price": 99.5, "total_sales": 143},
    {"id": 3, "name": "Tournament Ball Pack (12)", "sku": "BALL-PACK-12", "price": 34.99, "total_sales": 310},
    {"id": 4, "name": "Court Shoes All-Court", "sku": "SHOES-AC", "price": 89.0, "total_sales": 76},
    {"id": 5, "name": "Performance Tee", "sku": "TEE-PERF", "price": 29.99, "total_sales": 210},
]


def round_half_up(value: float) -> int:
    """Half-up integer rounding (2.5 -> 3), unlike Python's banker's round."""
    return int(math.floor(value + 0.5))


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def day_count(date_from: Optional[str], date_to: Optional[str]) -> Optional[int]:
    """Inclusive days between two YYYY-MM-DD strings, at least 1; None if either is unusable."""
    start, end = _parse_day(date_from), _parse_day(date_to)
    if start is None or end is None:
        return None
    return max(1, (end - start).days + 1)


def _active_filter(filter_type: Optional[str], category: Optional[str], coupon: Optional[str]) -> Optional[str]:
    if filter_type == "category" and category:
        return "category"
    if filter_type == "coupon" and coupon:
        return "coupon"
    return None


def kpi_scale(
    filter_type: Optional[str] = "date",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> float:
    filter_type = filter_type or "date"
    if filter_type == "date":
        days = day_count(date_from, date_to)
        return days / BASELINE_DAYS if days is not None else 1.0
    active = _active_filter(filter_type, category, coupon)
    return KPI_FILTER_SCALE[active] if active else 1.0


def series_multiplier(filter_type: Optional[str], category: Optional[str], coupon: Optional[str]) -> float:
    active = _active_filter(filter_type, category, coupon)
    return SERIES_FILTER_SCALE[active] if active else 1.0


def build_kpis(
    filter_type: Optional[str] = "date",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> Dict[str, Any]:
    """Baseline KPIs scaled to the request; AOV stays fixed."""
    scale = kpi_scale(filter_type, date_from, date_to, category, coupon)
    return {
        "revenue": round2(KPI_BASE["revenue"] * scale),
        "orders": round_half_up(KPI_BASE["orders"] * scale),
        "aov": KPI_BASE["aov"],
        "units": round_half_up(KPI_BASE["units"] * scale),
        "customers": round_half_up(KPI_BASE["customers"] * scale),
    }


def build_sales_series(
    filter_type: Optional[str] = "date",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    One point per day: 400 revenue with a 600 spike every 7th day.

    Raises:
        ValidationError: from/to given but not YYYY-MM-DD
    """
    if date_from and date_to:
        start, end = _parse_day(date_from), _parse_day(date_to)
        if start is None or end is None:
            raise ValidationError("from", "Invalid from/to date", f"{date_from}..{date_to}")
    else:
        end = utc_now().astimezone(analytics_tz()).date()
        start = end - timedelta(days=BASELINE_DAYS - 1)

    multiplier = series_multiplier(filter_type, category, coupon)
    points = []
    cursor = start
    while cursor <= end:
        index = len(points)
        base = SALES_BASE_REVENUE + (SALES_WEEKLY_SPIKE if index % 7 == 0 else 0)
        revenue = base * multiplier
        points.append({
            "date": cursor.isoformat(),
            "revenue": round2(revenue),
            "orders": max(1, round_half_up(revenue / 200)),
        })
        cursor += timedelta(days=1)
    return points


def build_segments(
    filter_type: Optional[str] = "date",
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> List[Dict[str, Any]]:
    multiplier = series_multiplier(filter_type, category, coupon)
    return [
        {"segment": name, "customers": max(0, round_half_up(customers * multiplier))}
        for name, customers, _ in SEGMENT_BASE
    ]


def build_segment_summary(
    filter_type: Optional[str] = "date",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Segments with revenue and average value; date ranges scale by days/30."""
    filter_type = filter_type or "date"
    if filter_type == "date":
        days = day_count(date_from, date_to)
        scale = days / BASELINE_DAYS if days is not None else 1.0
    else:
        scale = series_multiplier(filter_type, category, coupon)

    summary = []
    for name, customers, revenue in SEGMENT_BASE:
        scaled_customers = max(0, round_half_up(customers * scale))
        scaled_revenue = round2(revenue * scale)
        summary.append({
            "segment": name,
            "customers": scaled_customers,
            "revenue": scaled_revenue,
            "avgValue": round2(scaled_revenue / scaled_customers) if scaled_customers else 0,
        })
    return summary


def build_rfm_heatmap(
    filter_type: Optional[str] = "date",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """25 cells, recency-major; ``score`` is recency + frequency."""
    scale = kpi_scale(filter_type, date_from, date_to, category, coupon)
    cells = []
    for r_index, row in enumerate(HEATMAP_BASE):
        for f_index, count in enumerate(row):
            recency, frequency = r_index + 1, f_index + 1
            cells.append({
                "recency": recency,
                "frequency": frequency,
                "count": max(0, round_half_up(count * scale)),
                "score": recency + frequency,
            })
    return cells
