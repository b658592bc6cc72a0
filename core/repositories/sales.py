"""DuckDBStore order, refund, product and category methods."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.dates import to_db
from core.duckdb_constants import UNCATEGORIZED, order_filter_sql, placeholders


class SalesMixin:

    async def get_order_rows(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        filter_type: Optional[str] = None,
        category: Optional[str] = None,
        coupon: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Orders matching the dashboard filter, oldest first."""
        where, params = order_filter_sql(
            store_id, date_from, date_to, filter_type, category, coupon
        )
        return await self._fetch_dicts(f"""
            SELECT o.id, o.created_at, o.customer_id, o.total,
                   o.discount_total, o.shipping_total, o.tax_total
            FROM orders o
            WHERE {where}
            ORDER BY o.created_at ASC, o.id ASC
        """, params)

    async def get_refund_rows(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> List[Dict[str, Any]]:
        return await self._fetch_dicts("""
            SELECT created_at, amount
            FROM refunds
            WHERE store_id = ? AND created_at >= ? AND created_at <= ?
        """, [store_id, to_db(date_from), to_db(date_to)])

    async def get_acquisition_dates(
        self,
        store_id: str,
        customer_ids: Iterable[int],
        date_to: datetime,
    ) -> Dict[int, datetime]:
        """First-order date per customer, for customers acquired by ``date_to``."""
        customer_ids = list(customer_ids)
        if not customer_ids:
            return {}
        rows = await self._fetch_all(f"""
            SELECT customer_id, first_order_date
            FROM customer_acquisitions
            WHERE store_id = ?
              AND customer_id IN ({placeholders(customer_ids)})
              AND first_order_date <= ?
        """, [store_id, *customer_ids, to_db(date_to)])
        return {r[0]: r[1] for r in rows}

    async def get_top_products(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Products ranked by summed line total."""
        return await self._fetch_dicts("""
            WITH ranked AS (
                SELECT i.product_id,
                       SUM(i.line_total) AS revenue,
                       SUM(i.quantity) AS units
                FROM order_items i
                JOIN orders o ON o.id = i.order_id
                WHERE o.store_id = ? AND o.created_at >= ? AND o.created_at <= ?
                  AND i.product_id IS NOT NULL
                GROUP BY i.product_id
                ORDER BY revenue DESC NULLS LAST
                LIMIT ?
            )
            SELECT p.id, p.name, p.sku, p.price,
                   COALESCE(r.revenue, 0) AS revenue,
                   COALESCE(r.units, 0) AS units
            FROM ranked r
            JOIN products p ON p.id = r.product_id
            ORDER BY r.revenue DESC NULLS LAST
        """, [store_id, to_db(date_from), to_db(date_to), limit])

    async def get_health_totals(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> Dict[str, float]:
        params = [store_id, to_db(date_from), to_db(date_to)]
        gross, discounts, shipping, tax = await self._fetch_one("""
            SELECT COALESCE(SUM(total), 0),
                   COALESCE(SUM(discount_total), 0),
                   COALESCE(SUM(shipping_total), 0),
                   COALESCE(SUM(tax_total), 0)
            FROM orders
            WHERE store_id = ? AND created_at >= ? AND created_at <= ?
        """, params)
        (refunds,) = await self._fetch_one("""
            SELECT COALESCE(SUM(amount), 0)
            FROM refunds
            WHERE store_id = ? AND created_at >= ? AND created_at <= ?
        """, params)
        return {
            "gross": float(gross),
            "discounts": float(discounts),
            "shipping": float(shipping),
            "tax": float(tax),
            "refunds": float(refunds),
        }

    async def get_product_revenue(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> List[Dict[str, Any]]:
        """Line-total revenue and units per product in the window."""
        return await self._fetch_dicts("""
            SELECT i.product_id,
                   COALESCE(SUM(i.line_total), 0) AS revenue,
                   COALESCE(SUM(i.quantity), 0) AS units
            FROM order_items i
            JOIN orders o ON o.id = i.order_id
            WHERE o.store_id = ? AND o.created_at >= ? AND o.created_at <= ?
              AND i.product_id IS NOT NULL
            GROUP BY i.product_id
        """, [store_id, to_db(date_from), to_db(date_to)])

    async def get_product_names(self, product_ids: Iterable[int]) -> Dict[int, str]:
        product_ids = list(product_ids)
        if not product_ids:
            return {}
        rows = await self._fetch_all(
            f"SELECT id, name FROM products WHERE id IN ({placeholders(product_ids)})",
            product_ids,
        )
        return {r[0]: r[1] for r in rows}

    async def get_category_revenue(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> List[Dict[str, Any]]:
        """
        Revenue and units per category. An item counts once for every
        category of its product; uncategorised items are ignored.
        """
        return await self._fetch_dicts("""
            SELECT c.id AS category_id, c.name,
                   COALESCE(SUM(i.line_total), 0) AS revenue,
                   COALESCE(SUM(i.quantity), 0) AS units
            FROM order_items i
            JOIN orders o ON o.id = i.order_id
            JOIN product_categories pc ON pc.product_id = i.product_id
            JOIN categories c ON c.id = pc.category_id
            WHERE o.store_id = ? AND o.created_at >= ? AND o.created_at <= ?
            GROUP BY c.id, c.name
        """, [store_id, to_db(date_from), to_db(date_to)])

    async def get_category_sales(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        coupon: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """
        Top categories by item revenue.

        Item revenue is the line total, or unit price times quantity when the
        line total is missing. Items whose product has no category are
        pooled under "Uncategorized".
        """
        where, params = order_filter_sql(
            store_id, date_from, date_to,
            filter_type="coupon" if coupon else None, coupon=coupon,
        )
        return await self._fetch_dicts(f"""
            SELECT COALESCE(c.name, ?) AS name,
                   COALESCE(SUM(i.quantity), 0) AS units,
                   COALESCE(SUM(COALESCE(i.line_total, i.unit_price * i.quantity, 0)), 0) AS revenue
            FROM order_items i
            JOIN orders o ON o.id = i.order_id
            LEFT JOIN product_categories pc ON pc.product_id = i.product_id
            LEFT JOIN categories c ON c.id = pc.category_id
            WHERE {where}
            GROUP BY c.id, c.name
            ORDER BY revenue DESC
            LIMIT ?
        """, [UNCATEGORIZED, *params, limit])

    async def get_recent_orders(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        return await self._fetch_dicts("""
            SELECT o.id, o.created_at, o.status, o.total,
                   c.first_name, c.last_name, c.email
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.store_id = ? AND o.created_at >= ? AND o.created_at <= ?
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT ?
        """, [store_id, to_db(date_from), to_db(date_to), limit])

    async def get_rfm_customers(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Per-customer frequency, monetary value and last order, top spenders first."""
        return await self._fetch_dicts("""
            WITH grouped AS (
                SELECT customer_id,
                       COUNT(*) AS frequency,
                       COALESCE(SUM(total), 0) AS monetary,
                       MAX(created_at) AS last_order_date
                FROM orders
                WHERE store_id = ? AND created_at >= ? AND created_at <= ?
                  AND customer_id IS NOT NULL
                GROUP BY customer_id
                ORDER BY monetary DESC
                LIMIT ?
            )
            SELECT c.id, c.first_name, c.last_name, c.email, c.phone,
                   g.frequency, g.monetary, g.last_order_date
            FROM grouped g
            JOIN customers c ON c.id = g.customer_id
            ORDER BY g.monetary DESC, c.id ASC
        """, [store_id, to_db(date_from), to_db(date_to), limit])
