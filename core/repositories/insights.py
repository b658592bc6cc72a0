"""DuckDBStore insight methods (daily summaries, cohorts, order watch lists)."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from core.dates import to_db
from core.duckdb_constants import OPEN_ORDER_STATUSES, placeholders


class InsightsMixin:

    async def get_peak_day(
        self,
        store_id: str,
        day_from: date,
        day_to: date,
    ) -> Optional[Dict[str, Any]]:
        """Highest-revenue daily summary between two local days."""
        rows = await self._fetch_dicts("""
            SELECT day, revenue, orders_count, aov
            FROM daily_summaries
            WHERE store_id = ? AND day >= ? AND day <= ?
            ORDER BY revenue DESC, day ASC
            LIMIT 1
        """, [store_id, day_from, day_to])
        return rows[0] if rows else None

    async def get_daily_summaries(
        self,
        store_id: str,
        day_from: date,
        day_to: date,
    ) -> List[Dict[str, Any]]:
        return await self._fetch_dicts("""
            SELECT day, orders_count, revenue, units, unique_customers,
                   aov, refunds_amount, net_revenue
            FROM daily_summaries
            WHERE store_id = ? AND day >= ? AND day <= ?
            ORDER BY day ASC
        """, [store_id, day_from, day_to])

    async def get_cohort_rows(self, store_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_dicts("""
            SELECT cohort_month, period_month, customers_in_cohort,
                   active_customers, retention_rate
            FROM cohort_monthly
            WHERE store_id = ?
            ORDER BY cohort_month ASC, period_month ASC
        """, [store_id])

    async def get_ranked_cohort_cells(self, store_id: str) -> List[Dict[str, Any]]:
        """Non-empty cohort cells, best retention first (newest cohort breaks ties)."""
        return await self._fetch_dicts("""
            SELECT cohort_month, period_month, retention_rate, customers_in_cohort
            FROM cohort_monthly
            WHERE store_id = ? AND customers_in_cohort > 0
            ORDER BY retention_rate DESC, cohort_month DESC
        """, [store_id])

    async def get_segment_counts(self, store_id: str) -> Dict[str, int]:
        """Customers per stored RFM segment, largest first."""
        rows = await self._fetch_all("""
            SELECT segment, COUNT(*) AS customers
            FROM customer_scores
            WHERE store_id = ?
            GROUP BY segment
            ORDER BY customers DESC, segment ASC
        """, [store_id])
        return {r[0]: int(r[1]) for r in rows}

    async def get_repeat_purchase_counts(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> Tuple[int, int]:
        """(customers with an order, customers with more than one) in the window."""
        total, repeat = await self._fetch_one("""
            SELECT COUNT(*), COUNT(*) FILTER (WHERE orders > 1)
            FROM (
                SELECT customer_id, COUNT(*) AS orders
                FROM orders
                WHERE store_id = ? AND created_at >= ? AND created_at <= ?
                  AND customer_id IS NOT NULL
                GROUP BY customer_id
            )
        """, [store_id, to_db(date_from), to_db(date_to)])
        return int(total or 0), int(repeat or 0)

    async def get_high_value_orders(
        self,
        store_id: str,
        date_from: datetime,
        date_to: datetime,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        return await self._fetch_dicts("""
            SELECT o.id, o.created_at, o.total, o.status,
                   c.first_name, c.last_name, c.email
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.store_id = ? AND o.created_at >= ? AND o.created_at <= ?
            ORDER BY o.total DESC, o.id ASC
            LIMIT ?
        """, [store_id, to_db(date_from), to_db(date_to), limit])

    async def get_aging_orders(
        self,
        store_id: str,
        cutoff: datetime,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Open (pending/processing) orders created on or before ``cutoff``, oldest first."""
        return await self._fetch_dicts(f"""
            SELECT o.id, o.created_at, o.total, o.status,
                   c.first_name, c.last_name, c.email
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.store_id = ?
              AND o.status IN ({placeholders(OPEN_ORDER_STATUSES)})
              AND o.created_at <= ?
            ORDER BY o.created_at ASC, o.id ASC
            LIMIT ?
        """, [store_id, *OPEN_ORDER_STATUSES, to_db(cutoff), limit])
