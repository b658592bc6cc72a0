"""Shared constants and SQL helpers for DuckDB store and repository mixins."""
from datetime import datetime
from typing import List, Optional, Tuple

from core.config import config
from core.dates import to_db

# Database configuration
DB_PATH = config.database.path
DB_DIR = DB_PATH.parent

# Query timeout settings
DEFAULT_QUERY_TIMEOUT = config.database.query_timeout
LONG_QUERY_TIMEOUT = config.database.long_query_timeout  # derived-table rebuilds

# Order statuses counted as still open by the aging report
OPEN_ORDER_STATUSES = ("pending", "processing")

UNCATEGORIZED = "Uncategorized"


def order_filter_sql(
    store_id: str,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    filter_type: Optional[str] = None,
    category: Optional[str] = None,
    coupon: Optional[str] = None,
    alias: str = "o",
) -> Tuple[str, List]:
    """
    WHERE fragment for the dashboard's order filter.

    ``type=category`` keeps orders with at least one item whose product is in
    ``category``; ``type=coupon`` keeps orders that used ``coupon``.
    """
    clauses = [f"{alias}.store_id = ?"]
    params: List = [store_id]

    if date_from is not None:
        clauses.append(f"{alias}.created_at >= ?")
        params.append(to_db(date_from))
    if date_to is not None:
        clauses.append(f"{alias}.created_at <= ?")
        params.append(to_db(date_to))

    if filter_type == "category" and category:
        clauses.append(f"""EXISTS (
            SELECT 1 FROM order_items fi
            JOIN product_categories fpc ON fpc.product_id = fi.product_id
            JOIN categories fc ON fc.id = fpc.category_id
            WHERE fi.order_id = {alias}.id AND fc.name = ?
        )""")
        params.append(category)

    if filter_type == "coupon" and coupon:
        clauses.append(f"""EXISTS (
            SELECT 1 FROM order_coupons foc
            JOIN coupons fcp ON fcp.id = foc.coupon_id
            WHERE foc.order_id = {alias}.id AND fcp.code = ?
        )""")
        params.append(coupon)

    return " AND ".join(clauses), params


def placeholders(values) -> str:
    return ",".join("?" * len(values))
