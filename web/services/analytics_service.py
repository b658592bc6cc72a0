"""
Analytics service: daily series, breakdowns and insights built on DuckDB.

Every series covers the requested range with one point per local day in
ANALYTICS_TIMEZONE; days without orders are filled with zeros.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import fmean, pstdev
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.config import config
from core.dates import (
    as_utc, build_continuous_series, iso, local_date, parse_date_range,
    previous_range, round2, utc_now, ymd, zoned_day_end, zoned_day_start,
)
from core.duckdb_store import DuckDBStore
from core.exceptions import ValidationError
from core.idle import customer_label
from core.validators import require_store_id, validate_filter_type

ANOMALY_Z = 2.0
ANOMALY_KEEP = 10
REPEAT_WINDOWS = (30, 60, 90, 120)


@dataclass(frozen=True)
class OrderFilter:
    """Store, resolved UTC bounds and the optional category/coupon filter."""
    store_id: str
    date_from: datetime
    date_to: datetime
    filter_type: str = "date"
    category: Optional[str] = None
    coupon: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        store_id: Optional[str],
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        filter_type: Optional[str] = None,
        category: Optional[str] = None,
        coupon: Optional[str] = None,
        store_message: str = "Missing storeId",
    ) -> "OrderFilter":
        """
        Raises:
            ValidationError: Missing store, bad filter type or unparsable dates
        """
        store_id = require_store_id(store_id, store_message)
        filter_type = validate_filter_type(filter_type)
        try:
            start, end = parse_date_range(date_from, date_to)
        except ValueError as e:
            raise ValidationError("from", str(e), f"{date_from}..{date_to}")
        return cls(store_id, start, end, filter_type, category or None, coupon or None)

    @property
    def sql_args(self) -> Tuple:
        return (self.store_id, self.date_from, self.date_to, self.filter_type, self.category, self.coupon)


def _by_day(rows: Iterable[Dict[str, Any]], **fields: Callable[[Dict[str, Any]], float]) -> Dict[str, Dict[str, float]]:
    """Sum per local day: ``fields`` maps output name -> row accessor."""
    buckets: Dict[str, Dict[str, float]] = {}
    for row in rows:
        bucket = buckets.setdefault(ymd(row["created_at"]), {name: 0 for name in fields})
        for name, getter in fields.items():
            bucket[name] += getter(row) or 0
    return buckets


def _one(row: Dict[str, Any]) -> int:
    return 1


def _revenue_orders(rows) -> Dict[str, Dict[str, float]]:
    return _by_day(rows, revenue=lambda r: r["total"], orders=_one)


# ═══════════════════════════════════════════════════════════════════════════════
# DAILY SERIES
# ═══════════════════════════════════════════════════════════════════════════════

async def aov_series(store: DuckDBStore, f: OrderFilter) -> List[Dict[str, Any]]:
    buckets = _revenue_orders(await store.get_order_rows(*f.sql_args))

    def point(day, bucket):
        revenue = bucket["revenue"] if bucket else 0
        orders = int(bucket["orders"]) if bucket else 0
        return {
            "date": day,
            "aov": round2(revenue / orders) if orders else 0,
            "revenue": round2(revenue),
            "orders": orders,
        }

    return build_continuous_series(f.date_from, f.date_to, buckets, point)


async def cumulative_series(store: DuckDBStore, f: OrderFilter) -> List[Dict[str, Any]]:
    buckets = _revenue_orders(await store.get_order_rows(*f.sql_args))
    running = {"revenue": 0.0, "orders": 0}

    def point(day, bucket):
        revenue = bucket["revenue"] if bucket else 0
        orders = int(bucket["orders"]) if bucket else 0
        running["revenue"] += revenue
        running["orders"] += orders
        return {
            "date": day,
            "revenue": round2(revenue),
            "orders": orders,
            "revenueCumulative": round2(running["revenue"]),
            "ordersCumulative": running["orders"],
        }

    return build_continuous_series(f.date_from, f.date_to, buckets, point)


async def rolling_series(store: DuckDBStore, f: OrderFilter, window: int = 7) -> List[Dict[str, Any]]:
    """Daily totals with a trailing mean over up to ``window`` days."""
    buckets = _revenue_orders(await store.get_order_rows(*f.sql_args))
    daily = build_continuous_series(
        f.date_from, f.date_to, buckets,
        lambda day, b: {"date": day, "revenue": b["revenue"] if b else 0, "orders": int(b["orders"]) if b else 0},
    )
    points = []
    for idx, day in enumerate(daily):
        span = daily[max(0, idx - window + 1):idx + 1]
        points.append({
            "date": day["date"],
            "revenue": round2(day["revenue"]),
            "orders": day["orders"],
            "revenue7d": round2(fmean(p["revenue"] for p in span)),
            "orders7d": round2(fmean(p["orders"] for p in span)),
        })
    return points


async def shipping_tax_series(store: DuckDBStore, f: OrderFilter) -> List[Dict[str, Any]]:
    buckets = _by_day(
        await store.get_order_rows(*f.sql_args),
        shipping=lambda r: r["shipping_total"],
        tax=lambda r: r["tax_total"],
    )
    return build_continuous_series(
        f.date_from, f.date_to, buckets,
        lambda day, b: {
            "date": day,
            "shipping": round2(b["shipping"] if b else 0),
            "tax": round2(b["tax"] if b else 0),
        },
    )


async def refunds_discounts_series(store: DuckDBStore, f: OrderFilter) -> List[Dict[str, Any]]:
    """Refunds by refund date (store-wide); discounts from the filtered orders."""
    refunds = _by_day(await store.get_refund_rows(f.store_id, f.date_from, f.date_to),
                      amount=lambda r: r["amount"])
    discounts = _by_day(await store.get_order_rows(*f.sql_args),
                        amount=lambda r: r["discount_total"])

    def point(day, _):
        refund = refunds.get(day, {}).get("amount", 0)
        discount = discounts.get(day, {}).get("amount", 0)
        return {
            "date": day,
            "refunds": round2(refund),
            "discounts": round2(discount),
            "totalImpact": round2(refund + discount),
        }

    return build_continuous_series(f.date_from, f.date_to, {}, point)


async def new_vs_returning_series(store: DuckDBStore, f: OrderFilter) -> List[Dict[str, Any]]:
    """
    An order is "new" when its customer was acquired inside the range and on
    the same local day; everything else, guest orders included, is returning.
    """
    orders = await store.get_order_rows(*f.sql_args)
    customer_ids = {o["customer_id"] for o in orders if o["customer_id"] is not None}
    first_orders = await store.get_acquisition_dates(f.store_id, customer_ids, f.date_to)

    buckets: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        bucket = buckets.setdefault(ymd(order["created_at"]), {
            "newOrders": 0, "returningOrders": 0, "new": set(), "returning": set(),
        })
        customer_id = order["customer_id"]
        first = as_utc(first_orders.get(customer_id)) if customer_id is not None else None
        is_new = (
            first is not None
            and f.date_from <= first <= f.date_to
            and ymd(first) == ymd(order["created_at"])
        )
        kind = "new" if is_new else "returning"
        bucket[f"{kind}Orders"] += 1
        if customer_id is not None:
            bucket[kind].add(customer_id)

    def point(day, bucket):
        unique_new = len(bucket["new"]) if bucket else 0
        unique_returning = len(bucket["returning"]) if bucket else 0
        total = unique_new + unique_returning
        return {
            "date": day,
            "newOrders": bucket["newOrders"] if bucket else 0,
            "returningOrders": bucket["returningOrders"] if bucket else 0,
            "newCustomers": unique_new,
            "returningCustomers": unique_returning,
            "repeatRate": round2(unique_returning / total * 100) if total else 0,
        }

    return build_continuous_series(f.date_from, f.date_to, buckets, point)


# ═══════════════════════════════════════════════════════════════════════════════
# BREAKDOWNS
# ═══════════════════════════════════════════════════════════════════════════════

async def retention_cohorts(store: DuckDBStore, store_id: str) -> List[Dict[str, Any]]:
    cohorts: Dict[str, Dict[str, Any]] = {}
    for row in await store.get_cohort_rows(store_id):
        key = row["cohort_month"].isoformat()
        cohort = cohorts.setdefault(key, {
            "cohortMonth": key,
            "customersInCohort": int(row["customers_in_cohort"] or 0),
            "periods": [],
        })
        cohort["periods"].append({
            "periodMonth": int(row["period_month"]),
            "activeCustomers": int(row["active_customers"] or 0),
            "retentionRate": round2(row["retention_rate"]),
        })
    return list(cohorts.values())


async def top_products(store: DuckDBStore, store_id: str, date_from: datetime, date_to: datetime) -> List[Dict[str, Any]]:
    rows = await store.get_top_products(store_id, date_from, date_to, limit=10)
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "sku": r["sku"],
            "price": r["price"],
            "revenue": round2(r["revenue"]),
            "units": int(r["units"] or 0),
        }
        for r in rows
    ]


def _pct(part: float, whole: float) -> float:
    return round2(part / whole * 100) if whole else 0


async def health_ratios(store: DuckDBStore, store_id: str, date_from: datetime, date_to: datetime) -> Dict[str, Any]:
    totals = await store.get_health_totals(store_id, date_from, date_to)
    gross = totals["gross"]
    net = gross - totals["refunds"] - totals["discounts"]
    return {
        "grossRevenue": round2(gross),
        "netRevenue": round2(net),
        "refunds": round2(totals["refunds"]),
        "discounts": round2(totals["discounts"]),
        "shipping": round2(totals["shipping"]),
        "tax": round2(totals["tax"]),
        "refundRatePct": _pct(totals["refunds"], gross),
        "discountRatePct": _pct(totals["discounts"], gross),
        "grossMarginPct": _pct(gross - totals["shipping"] - totals["tax"], gross),
        "netMarginPct": _pct(net, gross),
        "range": {"from": iso(date_from), "to": iso(date_to)},
    }


def _compare(current: Dict[Any, Dict[str, Any]], previous: Dict[Any, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Revenue change per key, worst first. Keys only in the previous window
    are reported at -100 %.
    """
    drops = []
    for key, cur in current.items():
        prev = previous.get(key, {"revenue": 0, "units": 0})
        delta = cur["revenue"] - prev["revenue"]
        if prev["revenue"]:
            pct = delta / prev["revenue"] * 100
        else:
            pct = 100 if cur["revenue"] else 0
        drops.append({
            "key": key,
            "name": cur.get("name"),
            "revenue": round2(cur["revenue"]),
            "revenuePrev": round2(prev["revenue"]),
            "revenueChange": round2(delta),
            "revenueChangePct": round2(pct),
            "units": int(cur["units"] or 0),
            "unitsPrev": int(prev["units"] or 0),
        })
    for key, prev in previous.items():
        if key in current:
            continue
        drops.append({
            "key": key,
            "name": prev.get("name"),
            "revenue": 0,
            "revenuePrev": round2(prev["revenue"]),
            "revenueChange": round2(-prev["revenue"]),
            "revenueChangePct": -100 if prev["revenue"] else 0,
            "units": 0,
            "unitsPrev": int(prev["units"] or 0),
        })
    drops.sort(key=lambda d: d["revenueChange"])
    return drops


async def product_drops(
    store: DuckDBStore,
    store_id: str,
    date_from: datetime,
    date_to: datetime,
    limit: int = 5,
) -> List[Dict[str, Any]]:
    prev_from, prev_to = previous_range(date_from, date_to)
    current = {r["product_id"]: r for r in await store.get_product_revenue(store_id, date_from, date_to)}
    previous = {r["product_id"]: r for r in await store.get_product_revenue(store_id, prev_from, prev_to)}
    worst = _compare(current, previous)[:limit]
    names = await store.get_product_names(d["key"] for d in worst)
    result = []
    for drop in worst:
        product_id = drop.pop("key")
        drop["name"] = names.get(product_id, "Unknown product")
        result.append({"productId": product_id, **drop})
    return result


async def category_drops(
    store: DuckDBStore,
    store_id: str,
    date_from: datetime,
    date_to: datetime,
    limit: int = 5,
) -> List[Dict[str, Any]]:
    prev_from, prev_to = previous_range(date_from, date_to)
    current = {r["category_id"]: r for r in await store.get_category_revenue(store_id, date_from, date_to)}
    previous = {r["category_id"]: r for r in await store.get_category_revenue(store_id, prev_from, prev_to)}
    result = []
    for drop in _compare(current, previous)[:limit]:
        category_id = drop.pop("key")
        result.append({"categoryId": category_id, **drop})
    return result


async def top_categories(store: DuckDBStore, f: OrderFilter, limit: int = 10) -> List[Dict[str, Any]]:
    coupon = f.coupon if f.filter_type == "coupon" else None
    rows = await store.get_category_sales(f.store_id, f.date_from, f.date_to, coupon=coupon, limit=limit)
    return [
        {"name": r["name"], "units": int(r["units"] or 0), "revenue": round2(r["revenue"])}
        for r in rows
    ]


async def recent_orders(store: DuckDBStore, f: OrderFilter, limit: int = 10) -> List[Dict[str, Any]]:
    rows = await store.get_recent_orders(f.store_id, f.date_from, f.date_to, limit)
    return [
        {
            "id": r["id"],
            "date": iso(r["created_at"]),
            "status": r["status"] or "unknown",
            "total": round2(r["total"]),
            "customer": customer_label(r),
        }
        for r in rows
    ]


async def rfm_customers(store: DuckDBStore, f: OrderFilter, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utc_now()
    rows = await store.get_rfm_customers(f.store_id, f.date_from, f.date_to, limit=100)
    result = []
    for r in rows:
        last = as_utc(r["last_order_date"])
        result.append({
            "id": r["id"],
            "name": " ".join([r["first_name"] or "", r["last_name"] or ""]).strip(),
            "email": r["email"],
            "phone": r["phone"],
            "last_order_date": iso(last),
            "recency_days": int((now - last).total_seconds() // 86400),
            "frequency": int(r["frequency"]),
            "monetary": float(r["monetary"] or 0),
        })
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# INSIGHTS (daily summaries, cohorts, watch lists)
# ═══════════════════════════════════════════════════════════════════════════════

def _recent_window(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Last ``days`` local days ending at the end of today."""
    today = local_date(now or utc_now())
    return zoned_day_start(today - timedelta(days=days - 1)), zoned_day_end(today)


async def peak_revenue_day(store: DuckDBStore, store_id: str, date_from: datetime, date_to: datetime) -> Optional[Dict[str, Any]]:
    peak = await store.get_peak_day(store_id, local_date(date_from), local_date(date_to))
    if not peak:
        return None
    return {
        "date": peak["day"].isoformat(),
        "revenue": round2(peak["revenue"]),
        "orders": int(peak["orders_count"] or 0),
        "aov": round2(peak["aov"]),
    }


async def anomalies(store: DuckDBStore, store_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Days whose revenue or order count is at least 2 standard deviations from the mean."""
    start, end = _recent_window(config.analytics.anomaly_lookback_days, now)
    rows = await store.get_daily_summaries(store_id, local_date(start), local_date(end))
    if not rows:
        return []

    revenues = [float(r["revenue"] or 0) for r in rows]
    orders = [int(r["orders_count"] or 0) for r in rows]
    rev_mean, ord_mean = fmean(revenues), fmean(orders)
    rev_std, ord_std = pstdev(revenues, rev_mean), pstdev(orders, ord_mean)

    found = []
    for row, revenue, count in zip(rows, revenues, orders):
        rev_z = (revenue - rev_mean) / rev_std if rev_std else 0
        ord_z = (count - ord_mean) / ord_std if ord_std else 0
        if abs(rev_z) >= ANOMALY_Z or abs(ord_z) >= ANOMALY_Z:
            found.append({
                "date": row["day"].isoformat(),
                "revenue": round2(revenue),
                "orders": count,
                "revenueZ": round2(rev_z),
                "ordersZ": round2(ord_z),
            })
    return found[-ANOMALY_KEEP:]


def _cohort_cell(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "cohortMonth": row["cohort_month"].isoformat(),
        "periodMonth": int(row["period_month"]),
        "retentionRate": round2(row["retention_rate"]),
        "customersInCohort": int(row["customers_in_cohort"]),
    }


async def retention_highlights(store: DuckDBStore, store_id: str) -> Dict[str, Any]:
    cells = await store.get_ranked_cohort_cells(store_id)
    if not cells:
        return {"best": None, "worst": None}
    return {"best": _cohort_cell(cells[0]), "worst": _cohort_cell(cells[-1])}


async def repeat_purchase_rates(
    store: DuckDBStore,
    store_id: str,
    windows: Iterable[int] = REPEAT_WINDOWS,
    now: Optional[datetime] = None,
) -> Dict[str, Dict[str, Any]]:
    rates = {}
    for days in windows:
        start, end = _recent_window(days, now)
        total, repeat = await store.get_repeat_purchase_counts(store_id, start, end)
        rates[f"last{days}"] = {
            "days": days,
            "from": ymd(start),
            "to": ymd(end),
            "totalCustomers": total,
            "repeatCustomers": repeat,
            "rate": _pct(repeat, total),
        }
    return rates


def _watch_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "createdAt": iso(row["created_at"]),
        "total": round2(row["total"]),
        "status": row["status"],
        "customer": customer_label(row),
    }


async def high_value_orders(
    store: DuckDBStore,
    store_id: str,
    days: int = 7,
    limit: int = 5,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    start, end = _recent_window(days, now)
    rows = await store.get_high_value_orders(store_id, start, end, limit)
    return {"orders": [_watch_row(r) for r in rows], "from": ymd(start), "to": ymd(end)}


async def aging_orders(
    store: DuckDBStore,
    store_id: str,
    days: int = 3,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Pending/processing orders placed ``days`` or more local days ago."""
    now = now or utc_now()
    cutoff = zoned_day_end(local_date(now) - timedelta(days=days))
    rows = await store.get_aging_orders(store_id, cutoff, limit)
    orders = []
    for row in rows:
        age = (now - as_utc(row["created_at"])).total_seconds() / 86400
        orders.append({**_watch_row(row), "ageDays": int(-(-age // 1))})
    return {"orders": orders, "cutoff": ymd(cutoff)}
