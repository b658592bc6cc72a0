"""
Customer insight service: idle customers, last orders, win-back offers,
RFM-vs-idle listings, profiles and GoHighLevel tag actions.
"""
import csv
import io
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.config import config
from core.dates import as_utc, iso, round2, utc_now
from core.duckdb_store import DuckDBStore
from core.exceptions import IntegrationError, ValidationError
from core.ghl_client import GHLClient, get_ghl_client
from core.idle import (
    SEGMENT_PLAYBOOK, build_metrics, build_tags, classify_idle, compute_churn_risk,
    compute_top_category, coupon_codes, full_name, map_items,
)
from core.observability import get_logger

logger = get_logger(__name__)

SCAN_BATCH = 200
PROFILE_ORDER_LIMIT = 12
PROFILE_TOP_LIMIT = 6
CROSS_SELL_LIMIT = 5

ACTION_TAGS = {
    "email_nudge": "loyalty_nudge_email",
    "reward_unlocked": "loyalty_reward_unlocked",
}

CSV_COLUMNS = [
    "customerId", "email", "name", "phone", "ordersCount", "firstOrderAt",
    "lastActiveAt", "lastOrderAt", "daysSinceLastOrder", "ltv",
    "avgDaysBetweenOrders", "lastOrderTotal", "lastOrderDiscount",
    "lastOrderShipping", "lastOrderTax", "lastOrderCoupons", "lastItems",
    "topCategory", "segment", "offer", "churnRisk", "tags",
]


def idle_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)


def _money(value: Optional[float]) -> Optional[float]:
    return round2(value) if value is not None else None


def map_order(order: Dict[str, Any]) -> Dict[str, Any]:
    """A stored order (with items and coupons) as returned to clients."""
    return {
        "id": order["id"],
        "createdAt": iso(order.get("created_at")),
        "status": order.get("status"),
        "currency": order.get("currency"),
        "total": _money(order.get("total")),
        "subtotal": _money(order.get("subtotal")),
        "discountTotal": _money(order.get("discount_total")),
        "shippingTotal": _money(order.get("shipping_total")),
        "taxTotal": _money(order.get("tax_total")),
        "paymentMethod": order.get("payment_method"),
        "shipping": {"city": order.get("shipping_city"), "country": order.get("shipping_country")},
        "coupons": coupon_codes(order),
        "items": map_items(order.get("items") or []),
    }


def _history_entry(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "orderId": order["id"],
        "createdAt": iso(order.get("created_at")),
        "total": _money(order.get("total")),
        "discountTotal": _money(order.get("discount_total")),
        "shippingTotal": _money(order.get("shipping_total")),
        "taxTotal": _money(order.get("tax_total")),
        "coupons": coupon_codes(order),
        "items": map_items(order.get("items") or []),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# INACTIVE CUSTOMERS
# ═══════════════════════════════════════════════════════════════════════════════

async def map_idle_rows(
    store: DuckDBStore,
    store_id: str,
    customers: List[Dict[str, Any]],
    days: int,
    now: datetime,
) -> List[Dict[str, Any]]:
    """Attach last order, history, metrics, segment and offer to idle customers."""
    ids = [c["id"] for c in customers]
    aggregates = await store.get_order_aggregates(store_id, ids)
    histories = await store.get_customer_orders(store_id, ids)

    rows = []
    for customer in customers:
        orders = histories.get(customer["id"], [])
        last = orders[0] if orders else None
        agg = aggregates.get(customer["id"])
        metrics = build_metrics(
            agg["count"] if agg else 0,
            agg["total"] if agg else None,
            agg["first"] if agg else None,
            (agg["last"] if agg else None) or (last["created_at"] if last else None),
            now,
        )
        segment = classify_idle(metrics, days)
        last_items = map_items(last["items"]) if last else []
        rows.append({
            "customerId": customer["id"],
            "email": customer["email"],
            "name": full_name(customer.get("first_name"), customer.get("last_name")) or None,
            "phone": customer.get("phone"),
            "ordersCount": metrics.ordersCount,
            "firstOrderAt": iso(metrics.firstOrderAt),
            "lastActiveAt": iso(customer.get("last_active_at")),
            "lastOrderAt": iso(metrics.lastOrderAt),
            "lastOrderId": last["id"] if last else None,
            "lastOrderTotal": round2(last.get("total")) if last else None,
            "lastOrderDiscount": round2(last.get("discount_total")) if last else None,
            "lastOrderShipping": round2(last.get("shipping_total")) if last else None,
            "lastOrderTax": round2(last.get("tax_total")) if last else None,
            "lastOrderCoupons": coupon_codes(last) if last else [],
            "lastItems": last_items,
            "orderHistory": [_history_entry(o) for o in orders],
            "topCategory": compute_top_category(last_items),
            "metrics": metrics.to_dict(),
            "tags": build_tags(metrics, days, segment),
            "segment": segment,
            "churnRisk": compute_churn_risk(metrics),
            "offer": SEGMENT_PLAYBOOK[segment],
        })
    return rows


def filter_idle_rows(
    rows: Iterable[Dict[str, Any]],
    segment: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Exact segment match; category matches topCategory or any last-order item (case-insensitive)."""
    rows = [r for r in rows if not segment or r["segment"] == segment]
    if not category:
        return rows
    target = category.lower()
    kept = []
    for row in rows:
        item_categories = {
            (c or "").lower()
            for item in row.get("lastItems") or []
            for c in item.get("categories") or []
        }
        if (row.get("topCategory") or "").lower() == target or target in item_categories:
            kept.append(row)
    return kept


async def _count_filtered(
    store: DuckDBStore,
    store_id: str,
    cutoff: datetime,
    days: int,
    now: datetime,
    segment: Optional[str],
    category: Optional[str],
) -> int:
    """Scan every idle customer in id order and count the filter matches."""
    total = 0
    last_id = None
    while True:
        batch = await store.get_inactive_customers(store_id, cutoff, limit=SCAN_BATCH, after_id=last_id)
        if not batch:
            break
        last_id = batch[-1]["id"]
        rows = await map_idle_rows(store, store_id, batch, days, now)
        total += len(filter_idle_rows(rows, segment, category))
        if len(batch) < SCAN_BATCH:
            break
    return total


async def inactive_customers(
    store: DuckDBStore,
    store_id: str,
    days: int = 30,
    limit: int = 100,
    cursor: int = 0,
    segment: Optional[str] = None,
    category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    One page of customers with orders before the cutoff and none since.

    ``count`` is the page size after filters; ``totalCount`` counts every
    match, which needs a full scan when a segment or category filter is set.
    """
    now = now or utc_now()
    cutoff = idle_cutoff(days, now)
    customers = await store.get_inactive_customers(store_id, cutoff, offset=cursor, limit=limit)
    rows = filter_idle_rows(
        await map_idle_rows(store, store_id, customers, days, now), segment, category
    )

    segment_counts: Dict[str, int] = {}
    for row in rows:
        segment_counts[row["segment"]] = segment_counts.get(row["segment"], 0) + 1

    if segment or category:
        total = await _count_filtered(store, store_id, cutoff, days, now, segment, category)
    else:
        total = await store.count_inactive_customers(store_id, cutoff)

    return {
        "storeId": store_id,
        "days": days,
        "cutoff": iso(cutoff),
        "count": len(rows),
        "totalCount": total,
        "nextCursor": cursor + limit if len(customers) == limit else None,
        "segmentCounts": segment_counts,
        "data": rows,
    }


def _items_cell(items: List[Dict[str, Any]]) -> str:
    parts = []
    for item in items:
        text = f"{item.get('name') or ''} x{item.get('quantity')}"
        if item.get("categories"):
            text += f" [{'|'.join(item['categories'])}]"
        parts.append(text)
    return "; ".join(parts)


def inactive_csv(rows: Iterable[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        metrics = row.get("metrics") or {}
        writer.writerow([
            row["customerId"],
            row["email"],
            row.get("name"),
            row.get("phone"),
            row["ordersCount"],
            row.get("firstOrderAt"),
            row.get("lastActiveAt"),
            row.get("lastOrderAt"),
            metrics.get("daysSinceLastOrder"),
            metrics.get("ltv"),
            metrics.get("avgDaysBetweenOrders"),
            row.get("lastOrderTotal"),
            row.get("lastOrderDiscount"),
            row.get("lastOrderShipping"),
            row.get("lastOrderTax"),
            "|".join(row.get("lastOrderCoupons") or []),
            _items_cell(row.get("lastItems") or []),
            row.get("topCategory"),
            row["segment"],
            (row.get("offer") or {}).get("offer"),
            row.get("churnRisk"),
            "|".join(row.get("tags") or []),
        ])
    return buffer.getvalue().rstrip("\n")


def csv_filename(store_id: str, days: int) -> str:
    return f"inactive-customers-{store_id}-{days}d.csv"


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLE CUSTOMER
# ═══════════════════════════════════════════════════════════════════════════════

def _customer_summary(customer: Dict[str, Any], with_phone: bool = True) -> Dict[str, Any]:
    summary = {
        "id": customer["id"],
        "email": customer["email"],
        "name": full_name(customer.get("first_name"), customer.get("last_name")) or None,
    }
    if with_phone:
        summary["phone"] = customer.get("phone")
    return summary


async def _last_order(store: DuckDBStore, store_id: str, customer_id: int) -> Optional[Dict[str, Any]]:
    orders = await store.get_customer_orders(store_id, [customer_id], per_customer=1)
    history = orders.get(customer_id) or []
    return history[0] if history else None


async def last_order(
    store: DuckDBStore,
    store_id: str,
    customer_id: Optional[int] = None,
    email: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    ``{customer, lastOrder}`` or None when no customer matches.

    Raises:
        ValidationError: Neither customerId nor email given
    """
    if not customer_id and not email:
        raise ValidationError("customerId", "customerId or email is required")
    customer = await store.find_customer(store_id, customer_id=customer_id, email=email)
    if customer is None:
        return None

    order = await _last_order(store, store_id, customer["id"])
    if order is None:
        return {"customer": _customer_summary(customer), "lastOrder": None}

    items = map_items(order["items"])
    categories = list(dict.fromkeys(c for item in items for c in item["categories"]))
    return {
        "customer": _customer_summary(customer),
        "lastOrder": {
            "id": order["id"],
            "createdAt": iso(order["created_at"]),
            "total": round2(order.get("total")),
            "discount": round2(order.get("discount_total")),
            "shipping": round2(order.get("shipping_total")),
            "tax": round2(order.get("tax_total")),
            "coupons": coupon_codes(order),
            "items": items,
            "categories": categories,
        },
    }


async def winback_suggestion(
    store: DuckDBStore,
    store_id: str,
    customer_id: int,
    days: int = 30,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Offer and product recommendation for an idle customer.

    Returns None for an unknown customer and ``{eligible: False, reason}``
    when the customer has no orders or ordered since the cutoff.
    """
    now = now or utc_now()
    cutoff = idle_cutoff(days, now)
    customer = await store.find_customer(store_id, customer_id=customer_id)
    if customer is None:
        return None

    order = await _last_order(store, store_id, customer_id)
    if order is None:
        return {"eligible": False, "reason": "no_orders"}

    ordered_before, ordered_since = await store.get_order_window_flags(store_id, customer_id, cutoff)
    if not ordered_before or ordered_since:
        return {"eligible": False, "reason": "not_idle"}

    items = order["items"]
    primary = next((i for i in items if i.get("product_id")), items[0] if items else None)
    primary_id = primary.get("product_id") if primary else None

    cross_sell = []
    if primary_id:
        for row in await store.get_co_purchased_products(store_id, primary_id, CROSS_SELL_LIMIT):
            cross_sell.append({"productId": row["product_id"], "times": row["times"], "name": row["name"]})

    agg = (await store.get_order_aggregates(store_id, [customer_id])).get(customer_id)
    metrics = build_metrics(
        agg["count"] if agg else 0,
        agg["total"] if agg else None,
        agg["first"] if agg else None,
        (agg["last"] if agg else None) or order["created_at"],
        now,
    )
    segment = classify_idle(metrics, days)
    offer = SEGMENT_PLAYBOOK[segment]
    if primary:
        hint = f"We thought you might like more {primary['name']}. Here is {offer['value']}% off your next order."
    else:
        hint = f"Here is {offer['value']}% off your next order. Come back and see what is new."

    return {
        "eligible": True,
        "segment": f"IDLE_{days}",
        "segmentCode": segment,
        "offer": offer,
        "churnRisk": compute_churn_risk(metrics),
        "cutoff": iso(cutoff),
        "customer": _customer_summary(customer, with_phone=False),
        "lastOrder": {
            "id": order["id"],
            "createdAt": iso(order["created_at"]),
            "total": round2(order.get("total")),
            "items": map_items(items),
        },
        "recommendation": {
            "offer": offer,
            "primary": {"productId": primary_id, "name": primary["name"]} if primary else None,
            "crossSell": cross_sell,
            "messageHint": hint,
        },
    }


async def rfm_idle(
    store: DuckDBStore,
    store_id: str,
    days: int = 30,
    limit: int = 200,
    cursor: int = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Every customer of the store (by id) with stored RFM score next to the idle segment."""
    now = now or utc_now()
    customers = await store.get_scored_customers(store_id, offset=cursor, limit=limit)
    data = []
    for c in customers:
        last = as_utc(c["last_order_at"])
        metrics = build_metrics(int(c["orders_count"] or 0), None, None, last, now, whole_days=True)
        data.append({
            "customerId": c["id"],
            "email": c["email"],
            "name": full_name(c.get("first_name"), c.get("last_name")) or None,
            "rfmSegment": c.get("rfm_segment"),
            "rfmScore": c.get("rfm_score"),
            "idleSegment": classify_idle(metrics, days),
            "lastOrderAt": iso(last),
            "daysSinceLastOrder": metrics.daysSinceLastOrder,
        })
    return {
        "storeId": store_id,
        "days": days,
        "cutoff": iso(idle_cutoff(days, now)),
        "count": len(data),
        "nextCursor": cursor + limit if len(customers) == limit else None,
        "data": data,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# PROFILE
# ═══════════════════════════════════════════════════════════════════════════════

def summarize_orders(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Top products / categories by item revenue and distinct coupon codes of mapped orders."""
    products: Dict[str, Dict[str, Any]] = {}
    categories: Dict[str, Dict[str, Any]] = {}
    coupons: Dict[str, None] = {}

    for order in orders:
        coupons.update(dict.fromkeys(order["coupons"]))
        for item in order["items"]:
            key = str(item["productId"]) if item["productId"] is not None else (item["name"] or "item")
            revenue = item["lineTotal"] or 0
            entry = products.setdefault(key, {
                "name": item["name"] or "Item", "quantity": 0, "revenue": 0.0, "categories": [],
            })
            entry["quantity"] += item["quantity"] or 0
            entry["revenue"] += revenue
            for cat in item["categories"]:
                if cat not in entry["categories"]:
                    entry["categories"].append(cat)
                bucket = categories.setdefault(cat, {"name": cat, "quantity": 0, "revenue": 0.0})
                bucket["quantity"] += item["quantity"] or 0
                bucket["revenue"] += revenue

    def top(values):
        ranked = sorted(values, key=lambda v: v["revenue"], reverse=True)[:PROFILE_TOP_LIMIT]
        return [{**v, "revenue": round2(v["revenue"])} for v in ranked]

    return {
        "topProducts": top(products.values()),
        "topCategories": top(categories.values()),
        "coupons": list(coupons),
    }


async def _find_ghl_contact(email: Optional[str], client: Optional[GHLClient]) -> Optional[Dict[str, Any]]:
    """Best-effort GHL match by email; None when GHL is not configured or the lookup fails."""
    if not email or not config.ghl.pit or not config.ghl.location_id:
        return None
    try:
        client = client or get_ghl_client()
        found = await client.search_contacts(config.ghl.location_id, query=email, page_limit=5)
    except IntegrationError as e:
        logger.warning(f"GHL contact lookup failed for {email}: {e}")
        return None
    for contact in found["contacts"]:
        if (contact.get("email") or "").lower() == email.lower():
            return {
                "id": contact["id"],
                "email": contact.get("email"),
                "tags": contact.get("tags") or [],
                "dateAdded": contact.get("dateAdded"),
                "dateUpdated": contact.get("dateUpdated"),
            }
    return None


async def customer_profile(
    store: DuckDBStore,
    store_id: str,
    customer_id: int,
    now: Optional[datetime] = None,
    ghl_client: Optional[GHLClient] = None,
) -> Optional[Dict[str, Any]]:
    """Customer, order stats, the latest orders and their summaries; None if unknown."""
    now = now or utc_now()
    customer = await store.find_customer(store_id, customer_id=customer_id)
    if customer is None:
        return None

    agg = (await store.get_order_aggregates(store_id, [customer_id])).get(customer_id)
    history = (await store.get_customer_orders(store_id, [customer_id], per_customer=PROFILE_ORDER_LIMIT)).get(customer_id, [])
    orders = [map_order(o) for o in history]

    count = agg["count"] if agg else 0
    total = float(agg["total"] or 0) if agg else 0.0
    metrics = build_metrics(
        count, total, agg["first"] if agg else None, agg["last"] if agg else None, now
    )
    stats = {
        "ordersCount": count,
        "totalSpend": round2(total),
        "avgOrderValue": round2(total / count) if count else None,
        "firstOrderAt": iso(metrics.firstOrderAt),
        "lastOrderAt": iso(metrics.lastOrderAt),
        "avgDaysBetweenOrders": metrics.avgDaysBetweenOrders,
        "daysSinceLastOrder": metrics.daysSinceLastOrder,
    }

    return {
        "customer": {
            **_customer_summary(customer),
            "firstName": customer.get("first_name"),
            "lastName": customer.get("last_name"),
            "wooId": customer.get("woo_id"),
            "createdAt": iso(customer.get("created_at")),
            "lastActiveAt": iso(customer.get("last_active_at")),
        },
        "stats": stats,
        "orders": orders,
        **summarize_orders(orders),
        "ghl": await _find_ghl_contact(customer.get("email"), ghl_client),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# GHL ACTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def merge_tags(current: Iterable[str], additions: Iterable[str]) -> List[str]:
    """Append tags not already present (case-insensitive), keeping existing order."""
    merged = list(current)
    seen = {t.lower() for t in merged}
    for tag in additions:
        if tag.lower() not in seen:
            seen.add(tag.lower())
            merged.append(tag)
    return merged


async def apply_ghl_action(
    client: GHLClient,
    contact_id: Any,
    action: Any = None,
    tags: Any = None,
    location_id: Any = None,
) -> Dict[str, Any]:
    """
    Tag a GHL contact for a loyalty action.

    Raises:
        ValidationError: Missing location, contact id, or both action and tags
        IntegrationError: GHL fetch or upsert failed
    """
    location_id = location_id.strip() if isinstance(location_id, str) and location_id.strip() else config.ghl.location_id
    if not location_id:
        raise ValidationError("locationId", "GHL_LOCATION_ID is required")
    contact_id = contact_id.strip() if isinstance(contact_id, str) else ""
    if not contact_id:
        raise ValidationError("contactId", "contactId is required")

    action_tag = ACTION_TAGS.get(action.strip() if isinstance(action, str) else "")
    extra = [str(t) for t in tags if t] if isinstance(tags, list) else []
    if not action_tag and not extra:
        raise ValidationError("action", "action or tags are required")

    contact = await client.fetch_contact(contact_id) or {}
    next_tags = merge_tags(contact.get("tags") or [], ([action_tag] if action_tag else []) + extra)

    await client.upsert_contact_with_tags(
        location_id,
        next_tags,
        contact_id=contact_id,
        email=contact.get("email"),
        phone=contact.get("phone"),
        first_name=contact.get("firstName"),
        last_name=contact.get("lastName"),
    )
    logger.info("GHL action applied", extra={"contact_id": contact_id, "action": action, "tags": len(next_tags)})
    return {"ok": True, "tags": next_tags}
