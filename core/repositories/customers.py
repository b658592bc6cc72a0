"""DuckDBStore customer methods (idle customers, order history, win-back)."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.dates import to_db
from core.duckdb_constants import placeholders

CUSTOMER_COLUMNS = "c.id, c.email, c.first_name, c.last_name, c.phone, c.woo_id, c.last_active_at, c.created_at"


def _dicts(cursor) -> List[Dict[str, Any]]:
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _idle_where(store_id: str, cutoff: datetime) -> Tuple[str, list]:
    """Customers with an email, an order before ``cutoff`` and none since."""
    cutoff = to_db(cutoff)
    sql = """
        c.store_id = ?
        AND c.email IS NOT NULL AND c.email <> ''
        AND EXISTS (
            SELECT 1 FROM orders io
            WHERE io.customer_id = c.id AND io.created_at < ?
        )
        AND NOT EXISTS (
            SELECT 1 FROM orders ro
            WHERE ro.customer_id = c.id AND ro.created_at >= ?
        )
    """
    return sql, [store_id, cutoff, cutoff]


class CustomersMixin:

    # ─── Idle customers ──────────────────────────────────────────────────────

    async def get_inactive_customers(
        self,
        store_id: str,
        cutoff: datetime,
        offset: int = 0,
        limit: int = 100,
        after_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        One page of idle customers ordered by id.

        Pages either by ``offset`` (API cursor) or by ``after_id`` (batch scans).
        """
        where, params = _idle_where(store_id, cutoff)
        if after_id is not None:
            where += " AND c.id > ?"
            params.append(after_id)
        return await self._fetch_dicts(f"""
            SELECT {CUSTOMER_COLUMNS}
            FROM customers c
            WHERE {where}
            ORDER BY c.id ASC
            LIMIT ? OFFSET ?
        """, [*params, limit, offset])

    async def count_inactive_customers(self, store_id: str, cutoff: datetime) -> int:
        where, params = _idle_where(store_id, cutoff)
        row = await self._fetch_one(f"SELECT COUNT(*) FROM customers c WHERE {where}", params)
        return int(row[0]) if row else 0

    async def count_customers_without_orders_since(self, store_id: str, since: datetime) -> int:
        """Customers (with or without any orders) who have not ordered since ``since``."""
        row = await self._fetch_one("""
            SELECT COUNT(*) FROM customers c
            WHERE c.store_id = ?
              AND NOT EXISTS (
                  SELECT 1 FROM orders o
                  WHERE o.customer_id = c.id AND o.created_at >= ?
              )
        """, [store_id, to_db(since)])
        return int(row[0]) if row else 0

    async def get_customer_order_stats(self, store_id: str) -> List[Dict[str, Any]]:
        """Order count, spend and last order per customer of a store."""
        return await self._fetch_dicts("""
            SELECT customer_id,
                   COUNT(*) AS orders_count,
                   COALESCE(SUM(total), 0) AS total_spend,
                   MAX(created_at) AS last_order_at
            FROM orders
            WHERE store_id = ? AND customer_id IS NOT NULL
            GROUP BY customer_id
        """, [store_id])

    async def get_scored_customers(
        self,
        store_id: str,
        offset: int = 0,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        """Customers by id with order count, last order and stored RFM score."""
        return await self._fetch_dicts("""
            SELECT c.id, c.email, c.first_name, c.last_name,
                   (SELECT COUNT(*) FROM orders o WHERE o.customer_id = c.id) AS orders_count,
                   (SELECT MAX(o.created_at) FROM orders o WHERE o.customer_id = c.id) AS last_order_at,
                   s.segment AS rfm_segment,
                   s.rfm_score
            FROM customers c
            LEFT JOIN customer_scores s ON s.store_id = c.store_id AND s.customer_id = c.id
            WHERE c.store_id = ?
            ORDER BY c.id ASC
            LIMIT ? OFFSET ?
        """, [store_id, limit, offset])

    # ─── Orders per customer ─────────────────────────────────────────────────

    async def get_order_aggregates(
        self,
        store_id: str,
        customer_ids: Iterable[int],
    ) -> Dict[int, Dict[str, Any]]:
        """count / total / first / last order per customer."""
        customer_ids = list(customer_ids)
        if not customer_ids:
            return {}
        rows = await self._fetch_dicts(f"""
            SELECT customer_id,
                   COUNT(*) AS count,
                   SUM(total) AS total,
                   MIN(created_at) AS first,
                   MAX(created_at) AS last
            FROM orders
            WHERE store_id = ? AND customer_id IN ({placeholders(customer_ids)})
            GROUP BY customer_id
        """, [store_id, *customer_ids])
        return {r.pop("customer_id"): r for r in rows}

    async def get_customer_orders(
        self,
        store_id: str,
        customer_ids: Iterable[int],
        per_customer: Optional[int] = None,
    ) -> Dict[int, List[Dict[str, Any]]]:
        """
        Orders per customer, newest first, each with ``items`` and ``coupons``.

        Items carry their product's category names; ``per_customer`` caps the
        history length (None keeps every order).
        """
        customer_ids = list(customer_ids)
        if not customer_ids:
            return {}

        qualify = ""
        params: list = [store_id, *customer_ids]
        if per_customer is not None:
            qualify = """
                QUALIFY row_number() OVER (
                    PARTITION BY customer_id ORDER BY created_at DESC, id DESC
                ) <= ?
            """
            params.append(per_customer)

        async with self.connection() as conn:
            orders = _dicts(conn.execute(f"""
                SELECT id, customer_id, created_at, status, currency, total, subtotal,
                       discount_total, shipping_total, tax_total, payment_method,
                       shipping_country, shipping_city
                FROM orders
                WHERE store_id = ? AND customer_id IN ({placeholders(customer_ids)})
                {qualify}
                ORDER BY customer_id, created_at DESC, id DESC
            """, params))

            order_ids = [o["id"] for o in orders]
            items: List[Dict[str, Any]] = []
            coupons: List[Dict[str, Any]] = []
            if order_ids:
                items = _dicts(conn.execute(f"""
                    SELECT i.id, i.order_id, i.product_id, i.name, i.sku, i.quantity,
                           i.unit_price, i.line_total,
                           list(c.name ORDER BY c.name) FILTER (WHERE c.name IS NOT NULL) AS categories
                    FROM order_items i
                    LEFT JOIN product_categories pc ON pc.product_id = i.product_id
                    LEFT JOIN categories c ON c.id = pc.category_id
                    WHERE i.order_id IN ({placeholders(order_ids)})
                    GROUP BY i.id, i.order_id, i.product_id, i.name, i.sku, i.quantity,
                             i.unit_price, i.line_total
                    ORDER BY i.id
                """, order_ids))
                coupons = _dicts(conn.execute(f"""
                    SELECT oc.order_id, cp.code, cp.amount, cp.discount_type
                    FROM order_coupons oc
                    JOIN coupons cp ON cp.id = oc.coupon_id
                    WHERE oc.order_id IN ({placeholders(order_ids)})
                    ORDER BY cp.code
                """, order_ids))

        items_by_order = defaultdict(list)
        for item in items:
            item["categories"] = list(item["categories"] or [])
            items_by_order[item.pop("order_id")].append(item)
        coupons_by_order = defaultdict(list)
        for coupon in coupons:
            coupons_by_order[coupon.pop("order_id")].append(coupon)

        result: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for order in orders:
            order["items"] = items_by_order.get(order["id"], [])
            order["coupons"] = coupons_by_order.get(order["id"], [])
            result[order.pop("customer_id")].append(order)
        return dict(result)

    # ─── Single customer ─────────────────────────────────────────────────────

    async def find_customer(
        self,
        store_id: str,
        customer_id: Optional[int] = None,
        email: Optional[str] = None,
        woo_id: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        First customer matching every given key.

        Email is compared case-insensitively; ``phone`` matches when the stored
        number contains the given digits.
        """
        clauses = ["c.store_id = ?"]
        params: list = [store_id]
        if customer_id is not None:
            clauses.append("c.id = ?")
            params.append(customer_id)
        if email:
            clauses.append("c.email = ?")
            params.append(email.strip().lower())
        if woo_id:
            clauses.append("c.woo_id = ?")
            params.append(str(woo_id))
        if phone:
            clauses.append("regexp_replace(COALESCE(c.phone, ''), '[^0-9]', '', 'g') LIKE ?")
            params.append(f"%{phone}%")
        rows = await self._fetch_dicts(f"""
            SELECT {CUSTOMER_COLUMNS}
            FROM customers c
            WHERE {" AND ".join(clauses)}
            ORDER BY c.id ASC
            LIMIT 1
        """, params)
        return rows[0] if rows else None

    async def get_order_window_flags(
        self,
        store_id: str,
        customer_id: int,
        cutoff: datetime,
    ) -> Tuple[bool, bool]:
        """(has an order before cutoff, has an order at or after cutoff)."""
        before, since = await self._fetch_one("""
            SELECT COUNT(*) FILTER (WHERE created_at < ?) > 0,
                   COUNT(*) FILTER (WHERE created_at >= ?) > 0
            FROM orders
            WHERE store_id = ? AND customer_id = ?
        """, [to_db(cutoff), to_db(cutoff), store_id, customer_id])
        return bool(before), bool(since)

    async def get_co_purchased_products(
        self,
        store_id: str,
        product_id: int,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        """Products most often bought in the same order as ``product_id``."""
        return await self._fetch_dicts("""
            WITH pairs AS (
                SELECT oi2.product_id, COUNT(*) AS times
                FROM order_items oi1
                JOIN order_items oi2 ON oi1.order_id = oi2.order_id
                JOIN orders o ON o.id = oi1.order_id
                WHERE o.store_id = ?
                  AND oi1.product_id = ?
                  AND oi2.product_id IS NOT NULL
                  AND oi2.product_id <> ?
                GROUP BY oi2.product_id
                ORDER BY times DESC, oi2.product_id ASC
                LIMIT ?
            )
            SELECT pairs.product_id, CAST(pairs.times AS INTEGER) AS times, p.name
            FROM pairs
            LEFT JOIN products p ON p.id = pairs.product_id AND p.store_id = ?
            ORDER BY pairs.times DESC, pairs.product_id ASC
        """, [store_id, product_id, product_id, limit, store_id])
