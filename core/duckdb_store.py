"""
DuckDB store for WooCommerce analytics.

Holds the synced WooCommerce rows (stores, customers, products, categories,
coupons, orders, items, refunds) and the derived tables rebuilt from them
(daily summaries, monthly cohorts, customer acquisitions, RFM scores).

Domain-specific query methods are organized into repository mixins:
- StoresMixin: Store lookup
- SalesMixin: Order-level series, totals, categories, recent orders
- InsightsMixin: Peaks, anomalies, cohort highlights, repeat purchase
- CustomersMixin: Idle customers, last order, win-back, profiles
- DerivedMixin: Rebuild of the derived tables with pandas
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import duckdb
import pandas as pd

from core.dates import as_utc, to_db, iso, utc_now
from core.exceptions import QueryTimeoutError
from core.duckdb_constants import DB_PATH, DEFAULT_QUERY_TIMEOUT, placeholders
from core.repositories import (
    StoresMixin, SalesMixin, InsightsMixin, CustomersMixin, DerivedMixin,
)

logger = logging.getLogger(__name__)


def _timestamps(series: pd.Series) -> pd.Series:
    """Naive-UTC datetime64 column (NaT for missing) for TIMESTAMP columns."""
    return pd.to_datetime(series, utc=True, errors="coerce").dt.tz_convert(None)


def _numbers(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce").astype("Float64")


def _strings(series: pd.Series) -> pd.Series:
    return series.astype(pd.StringDtype())


def _lower_email(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = str(value).strip().lower()
    return value or None


class DuckDBStore(StoresMixin, SalesMixin, InsightsMixin, CustomersMixin, DerivedMixin):
    """
    Async-compatible DuckDB store.

    A single connection is shared and serialized with an asyncio lock;
    blocking DuckDB calls run on a one-thread executor so the event loop
    keeps serving requests.
    """

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # Serializes all database access
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    async def connect(self) -> None:
        """Initialize database connection, schema, and thread pool."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = duckdb.connect(str(self.db_path))
                await self._init_schema()
                self._executor = ThreadPoolExecutor(
                    max_workers=1,  # DuckDB connection is not thread-safe
                    thread_name_prefix="duckdb"
                )
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @asynccontextmanager
    async def connection(self):
        """Locked access to the shared connection, connecting on first use."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _run_query(self, run, query: str, timeout: float, label: str):
        async with self.connection() as conn:
            self._total_queries += 1
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, run, conn),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                raise QueryTimeoutError(query, timeout, label)

    async def _fetch_one(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> Optional[tuple]:
        """Single row tuple or None; raises QueryTimeoutError."""
        return await self._run_query(
            lambda conn: conn.execute(query, params or []).fetchone(),
            query, timeout, "Fetch one failed",
        )

    async def _fetch_all(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> List[tuple]:
        return await self._run_query(
            lambda conn: conn.execute(query, params or []).fetchall(),
            query, timeout, "Fetch all failed",
        )

    async def _fetch_dicts(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> List[Dict[str, Any]]:
        """Rows as dicts keyed by the query's column aliases."""
        def _run(conn):
            cursor = conn.execute(query, params or [])
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

        return await self._run_query(_run, query, timeout, "Fetch dicts failed")

    async def _fetch_df(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> "pd.DataFrame":
        return await self._run_query(
            lambda conn: conn.execute(query, params or []).fetchdf(),
            query, timeout, "Fetch DataFrame failed",
        )

    async def _init_schema(self) -> None:
        """Create database schema if not exists."""
        schema_sql = """
        CREATE SEQUENCE IF NOT EXISTS customers_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS products_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS categories_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS coupons_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS orders_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS order_items_id_seq START 1;
        CREATE SEQUENCE IF NOT EXISTS refunds_id_seq START 1;

        CREATE TABLE IF NOT EXISTS stores (
            id VARCHAR PRIMARY KEY,
            name VARCHAR NOT NULL,
            woo_base_url VARCHAR,
            woo_key VARCHAR,
            woo_secret VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp
        );

        -- Customers are unique per (store_id, email)
        CREATE TABLE IF NOT EXISTS customers (
            id BIGINT PRIMARY KEY DEFAULT nextval('customers_id_seq'),
            store_id VARCHAR NOT NULL,
            woo_id VARCHAR,
            email VARCHAR,
            first_name VARCHAR,
            last_name VARCHAR,
            phone VARCHAR,
            last_active_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT current_timestamp
        );
        CREATE INDEX IF NOT EXISTS idx_customers_store ON customers(store_id);

        CREATE TABLE IF NOT EXISTS products (
            id BIGINT PRIMARY KEY DEFAULT nextval('products_id_seq'),
            store_id VARCHAR NOT NULL,
            woo_id VARCHAR,
            name VARCHAR NOT NULL,
            sku VARCHAR,
            price DOUBLE,
            status VARCHAR
        );
        CREATE INDEX IF NOT EXISTS idx_products_store ON products(store_id);

        CREATE TABLE IF NOT EXISTS categories (
            id BIGINT PRIMARY KEY DEFAULT nextval('categories_id_seq'),
            store_id VARCHAR NOT NULL,
            woo_id VARCHAR,
            name VARCHAR NOT NULL,
            slug VARCHAR
        );

        CREATE TABLE IF NOT EXISTS product_categories (
            product_id BIGINT NOT NULL,
            category_id BIGINT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_product_categories_product ON product_categories(product_id);

        CREATE TABLE IF NOT EXISTS coupons (
            id BIGINT PRIMARY KEY DEFAULT nextval('coupons_id_seq'),
            store_id VARCHAR NOT NULL,
            code VARCHAR NOT NULL,
            amount DOUBLE,
            discount_type VARCHAR
        );

        CREATE TABLE IF NOT EXISTS orders (
            id BIGINT PRIMARY KEY DEFAULT nextval('orders_id_seq'),
            store_id VARCHAR NOT NULL,
            woo_id VARCHAR,
            customer_id BIGINT,
            created_at TIMESTAMP NOT NULL,
            status VARCHAR,
            currency VARCHAR,
            billing_email VARCHAR,
            total DOUBLE NOT NULL DEFAULT 0,
            subtotal DOUBLE,
            discount_total DOUBLE,
            shipping_total DOUBLE,
            tax_total DOUBLE,
            payment_method VARCHAR,
            shipping_country VARCHAR,
            shipping_city VARCHAR
        );
        CREATE INDEX IF NOT EXISTS idx_orders_store ON orders(store_id);

        CREATE TABLE IF NOT EXISTS order_items (
            id BIGINT PRIMARY KEY DEFAULT nextval('order_items_id_seq'),
            order_id BIGINT NOT NULL,
            product_id BIGINT,
            name VARCHAR,
            sku VARCHAR,
            quantity INTEGER NOT NULL DEFAULT 1,
            unit_price DOUBLE,
            line_subtotal DOUBLE,
            line_total DOUBLE,
            tax_total DOUBLE
        );
        CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id);

        CREATE TABLE IF NOT EXISTS order_coupons (
            order_id BIGINT NOT NULL,
            coupon_id BIGINT NOT NULL,
            discount_applied DOUBLE
        );
        CREATE INDEX IF NOT EXISTS idx_order_coupons_order ON order_coupons(order_id);

        CREATE TABLE IF NOT EXISTS refunds (
            id BIGINT PRIMARY KEY DEFAULT nextval('refunds_id_seq'),
            store_id VARCHAR NOT NULL,
            woo_id VARCHAR,
            order_id BIGINT,
            amount DOUBLE NOT NULL DEFAULT 0,
            reason VARCHAR,
            created_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_refunds_store ON refunds(store_id);

        -- Derived tables (replaced per store by DerivedMixin.rebuild_analytics)
        CREATE TABLE IF NOT EXISTS daily_summaries (
            store_id VARCHAR NOT NULL,
            day DATE NOT NULL,
            orders_count INTEGER,
            revenue DOUBLE,
            units INTEGER,
            unique_customers INTEGER,
            aov DOUBLE,
            refunds_amount DOUBLE,
            net_revenue DOUBLE
        );

        CREATE TABLE IF NOT EXISTS cohort_monthly (
            store_id VARCHAR NOT NULL,
            cohort_month DATE NOT NULL,
            period_month INTEGER NOT NULL,
            customers_in_cohort INTEGER,
            active_customers INTEGER,
            retention_rate DOUBLE
        );

        CREATE TABLE IF NOT EXISTS customer_acquisitions (
            store_id VARCHAR NOT NULL,
            customer_id BIGINT NOT NULL,
            first_order_id BIGINT,
            first_order_date TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS customer_scores (
            store_id VARCHAR NOT NULL,
            customer_id BIGINT NOT NULL,
            last_order_at TIMESTAMP,
            recency_days INTEGER,
            frequency INTEGER,
            monetary DOUBLE,
            r_score INTEGER,
            f_score INTEGER,
            m_score INTEGER,
            rfm_score INTEGER,
            segment VARCHAR
        );

        CREATE TABLE IF NOT EXISTS sync_state (
            store_id VARCHAR NOT NULL,
            entity VARCHAR NOT NULL,
            last_synced_at TIMESTAMP,
            PRIMARY KEY (store_id, entity)
        );
        """
        self._connection.execute(schema_sql)
        logger.info("DuckDB schema initialized")

    # ═══════════════════════════════════════════════════════════════════════════
    # BULK LOADERS
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _merge(conn, table: str, source: str, keys: Iterable[str], columns: Iterable[str]) -> None:
        """
        Update rows of ``table`` matching ``source`` on ``keys``, then insert
        the rest. ``source`` is a registered view name or a parenthesised query.
        """
        keys = list(keys)
        columns = list(columns)
        updates = [c for c in columns if c not in keys]
        match = " AND ".join(f"{table}.{k} = src.{k}" for k in keys)
        if updates:
            conn.execute(f"""
                UPDATE {table} SET {", ".join(f"{c} = src.{c}" for c in updates)}
                FROM {source} AS src
                WHERE {match}
            """)
        cols = ", ".join(columns)
        conn.execute(f"""
            INSERT INTO {table} ({cols})
            SELECT {", ".join(f"src.{c}" for c in columns)} FROM {source} AS src
            WHERE NOT EXISTS (
                SELECT 1 FROM {table} WHERE {match}
            )
        """)

    async def upsert_store(self, store: Dict[str, Any]) -> str:
        """Insert or update a store row (id, name, woo_base_url, woo_key, woo_secret)."""
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO stores (id, name, woo_base_url, woo_key, woo_secret, created_at)
                VALUES (?, ?, ?, ?, ?, COALESCE(?, current_timestamp))
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    woo_base_url = excluded.woo_base_url,
                    woo_key = excluded.woo_key,
                    woo_secret = excluded.woo_secret
            """, [
                store["id"],
                store.get("name") or store["id"],
                store.get("woo_base_url"),
                store.get("woo_key"),
                store.get("woo_secret"),
                to_db(store["created_at"]) if store.get("created_at") else None,
            ])
        logger.info(f"Upserted store {store['id']}")
        return store["id"]

    def _merge_customers(self, conn, store_id: str, rows: List[Dict[str, Any]]) -> int:
        by_email: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            email = _lower_email(row.get("email"))
            if not email:
                continue
            incoming = {
                "woo_id": str(row["woo_id"]) if row.get("woo_id") else None,
                "first_name": row.get("first_name") or None,
                "last_name": row.get("last_name") or None,
                "phone": row.get("phone") or None,
            }
            active = pd.to_datetime(row.get("last_active_at"), utc=True, errors="coerce")
            merged = by_email.setdefault(email, {"store_id": store_id, "email": email, "last_active_at": pd.NaT})
            # Later rows win field by field; the activity timestamp keeps its maximum
            for key, value in incoming.items():
                if value is not None or key not in merged:
                    merged[key] = value
            if pd.notna(active) and (pd.isna(merged["last_active_at"]) or active > merged["last_active_at"]):
                merged["last_active_at"] = active
        if not by_email:
            return 0

        df = pd.DataFrame(list(by_email.values()))
        for col in ("store_id", "email", "woo_id", "first_name", "last_name", "phone"):
            df[col] = _strings(df[col])
        df["last_active_at"] = _timestamps(df["last_active_at"])

        conn.register("stg_customers", df)
        try:
            conn.execute("""
                UPDATE customers SET
                    woo_id = COALESCE(src.woo_id, customers.woo_id),
                    first_name = COALESCE(src.first_name, customers.first_name),
                    last_name = COALESCE(src.last_name, customers.last_name),
                    phone = COALESCE(src.phone, customers.phone),
                    last_active_at = GREATEST(src.last_active_at, customers.last_active_at)
                FROM stg_customers AS src
                WHERE customers.store_id = src.store_id AND customers.email = src.email
            """)
            conn.execute("""
                INSERT INTO customers (store_id, woo_id, email, first_name, last_name, phone, last_active_at)
                SELECT store_id, woo_id, email, first_name, last_name, phone, last_active_at
                FROM stg_customers src
                WHERE NOT EXISTS (
                    SELECT 1 FROM customers c WHERE c.store_id = src.store_id AND c.email = src.email
                )
            """)
        finally:
            conn.unregister("stg_customers")
        return len(df)

    async def upsert_customers(self, store_id: str, customers: List[Dict[str, Any]]) -> int:
        """Insert or update customers keyed by lowercased email."""
        if not customers:
            return 0
        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                count = self._merge_customers(conn, store_id, customers)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        logger.info(f"Upserted {count} customers for store {store_id}")
        return count

    async def upsert_products(self, store_id: str, products: List[Dict[str, Any]]) -> int:
        """
        Insert or update products and their category links.

        Each product: woo_id, name, sku, price, status, categories=[{woo_id, name, slug}].
        """
        products = [p for p in products if p.get("woo_id") not in (None, "")]
        if not products:
            return 0

        categories: Dict[str, Dict[str, Any]] = {}
        links = []
        for p in products:
            for cat in p.get("categories") or []:
                if cat.get("woo_id") in (None, "") or not cat.get("name"):
                    continue
                cat_woo_id = str(cat["woo_id"])
                categories[cat_woo_id] = {
                    "store_id": store_id,
                    "woo_id": cat_woo_id,
                    "name": cat["name"],
                    "slug": cat.get("slug"),
                }
                links.append({"product_woo_id": str(p["woo_id"]), "category_woo_id": cat_woo_id})

        products_df = pd.DataFrame([{
            "store_id": store_id,
            "woo_id": str(p["woo_id"]),
            "name": p.get("name") or "Unnamed Product",
            "sku": p.get("sku") or None,
            "price": p.get("price"),
            "status": p.get("status"),
        } for p in products])
        for col in ("store_id", "woo_id", "name", "sku", "status"):
            products_df[col] = _strings(products_df[col])
        products_df["price"] = _numbers(products_df["price"]).fillna(0)
        product_woo_ids = products_df["woo_id"].tolist()

        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                if categories:
                    cats_df = pd.DataFrame(list(categories.values()))
                    for col in cats_df.columns:
                        cats_df[col] = _strings(cats_df[col])
                    conn.register("stg_categories", cats_df)
                    self._merge(conn, "categories", "stg_categories",
                                ["store_id", "woo_id"], ["store_id", "woo_id", "name", "slug"])
                    conn.unregister("stg_categories")

                conn.register("stg_products", products_df)
                self._merge(conn, "products", "stg_products",
                            ["store_id", "woo_id"],
                            ["store_id", "woo_id", "name", "sku", "price", "status"])
                conn.unregister("stg_products")

                conn.execute(f"""
                    DELETE FROM product_categories WHERE product_id IN (
                        SELECT id FROM products
                        WHERE store_id = ? AND woo_id IN ({placeholders(product_woo_ids)})
                    )
                """, [store_id, *product_woo_ids])

                if links:
                    links_df = pd.DataFrame(links).drop_duplicates()
                    for col in links_df.columns:
                        links_df[col] = _strings(links_df[col])
                    conn.register("stg_links", links_df)
                    conn.execute("""
                        INSERT INTO product_categories (product_id, category_id)
                        SELECT p.id, c.id
                        FROM stg_links l
                        JOIN products p ON p.store_id = ? AND p.woo_id = l.product_woo_id
                        JOIN categories c ON c.store_id = ? AND c.woo_id = l.category_woo_id
                    """, [store_id, store_id])
                    conn.unregister("stg_links")

                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.info(f"Upserted {len(products_df)} products, {len(categories)} categories for store {store_id}")
        return len(products_df)

    async def upsert_orders(self, store_id: str, orders: List[Dict[str, Any]]) -> int:
        """
        Insert or update orders with their customer, line items and coupons.

        Customers are resolved by lowercased email, products by WooCommerce id.
        Items and coupon links of every touched order are replaced.

        Returns:
            Number of orders upserted
        """
        order_rows = []
        item_rows = []
        coupon_rows: Dict[str, Dict[str, Any]] = {}
        coupon_links = []
        customer_rows = []

        for order in orders:
            woo_id = order.get("woo_id")
            if woo_id in (None, "") or not order.get("created_at"):
                continue
            woo_id = str(woo_id)
            email = _lower_email(order.get("customer_email"))
            if email:
                customer_rows.append({
                    "email": email,
                    "woo_id": order.get("customer_woo_id"),
                    "first_name": order.get("first_name"),
                    "last_name": order.get("last_name"),
                    "phone": order.get("phone"),
                    "last_active_at": order.get("last_active_at") or order.get("created_at"),
                })
            order_rows.append({
                "store_id": store_id,
                "woo_id": woo_id,
                "customer_email": email,
                "created_at": order["created_at"],
                "status": order.get("status"),
                "currency": order.get("currency"),
                "billing_email": _lower_email(order.get("billing_email")) or email,
                "total": order.get("total"),
                "subtotal": order.get("subtotal"),
                "discount_total": order.get("discount_total"),
                "shipping_total": order.get("shipping_total"),
                "tax_total": order.get("tax_total"),
                "payment_method": order.get("payment_method"),
                "shipping_country": order.get("shipping_country"),
                "shipping_city": order.get("shipping_city"),
            })
            for item in order.get("items") or []:
                item_rows.append({
                    "order_woo_id": woo_id,
                    "product_woo_id": str(item["product_woo_id"]) if item.get("product_woo_id") else None,
                    "name": item.get("name") or "Line Item",
                    "sku": item.get("sku") or None,
                    "quantity": int(item.get("quantity") or 1),
                    "unit_price": item.get("unit_price"),
                    "line_subtotal": item.get("line_subtotal"),
                    "line_total": item.get("line_total"),
                    "tax_total": item.get("tax_total"),
                })
            for coupon in order.get("coupons") or []:
                code = coupon.get("code") or "coupon"
                coupon_rows[code] = {
                    "store_id": store_id,
                    "code": code,
                    "amount": coupon.get("amount"),
                    "discount_type": coupon.get("discount_type"),
                }
                coupon_links.append({
                    "order_woo_id": woo_id,
                    "code": code,
                    "discount_applied": coupon.get("amount"),
                })

        if not order_rows:
            return 0

        orders_df = pd.DataFrame(order_rows)
        for col in ("store_id", "woo_id", "customer_email", "status", "currency", "billing_email",
                    "payment_method", "shipping_country", "shipping_city"):
            orders_df[col] = _strings(orders_df[col])
        for col in ("total", "subtotal", "discount_total", "shipping_total", "tax_total"):
            orders_df[col] = _numbers(orders_df[col])
        orders_df["total"] = orders_df["total"].fillna(0)
        orders_df["created_at"] = _timestamps(orders_df["created_at"])
        orders_df = orders_df.drop_duplicates(subset=["woo_id"], keep="last")
        order_woo_ids = orders_df["woo_id"].tolist()

        order_columns = [
            "store_id", "woo_id", "customer_id", "created_at", "status", "currency",
            "billing_email", "total", "subtotal", "discount_total", "shipping_total",
            "tax_total", "payment_method", "shipping_country", "shipping_city",
        ]

        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                self._merge_customers(conn, store_id, customer_rows)

                if coupon_rows:
                    coupons_df = pd.DataFrame(list(coupon_rows.values()))
                    for col in ("store_id", "code", "discount_type"):
                        coupons_df[col] = _strings(coupons_df[col])
                    coupons_df["amount"] = _numbers(coupons_df["amount"])
                    conn.register("stg_coupons", coupons_df)
                    self._merge(conn, "coupons", "stg_coupons", ["store_id", "code"],
                                ["store_id", "code", "amount", "discount_type"])
                    conn.unregister("stg_coupons")

                conn.register("stg_orders", orders_df)
                self._merge(
                    conn, "orders",
                    """(
                        SELECT s.*, c.id AS customer_id
                        FROM stg_orders s
                        LEFT JOIN customers c
                          ON c.store_id = s.store_id AND c.email = s.customer_email
                    )""",
                    ["store_id", "woo_id"],
                    order_columns,
                )
                conn.unregister("stg_orders")

                id_filter = f"""
                    SELECT id FROM orders
                    WHERE store_id = ? AND woo_id IN ({placeholders(order_woo_ids)})
                """
                conn.execute(f"DELETE FROM order_items WHERE order_id IN ({id_filter})",
                             [store_id, *order_woo_ids])
                conn.execute(f"DELETE FROM order_coupons WHERE order_id IN ({id_filter})",
                             [store_id, *order_woo_ids])

                if item_rows:
                    items_df = pd.DataFrame(item_rows)
                    for col in ("order_woo_id", "product_woo_id", "name", "sku"):
                        items_df[col] = _strings(items_df[col])
                    for col in ("unit_price", "line_subtotal", "line_total", "tax_total"):
                        items_df[col] = _numbers(items_df[col])
                    items_df["quantity"] = items_df["quantity"].astype("Int64")
                    conn.register("stg_items", items_df)
                    conn.execute("""
                        INSERT INTO order_items (
                            order_id, product_id, name, sku, quantity,
                            unit_price, line_subtotal, line_total, tax_total
                        )
                        SELECT o.id, p.id, s.name, COALESCE(s.sku, p.sku), s.quantity,
                               s.unit_price, s.line_subtotal, s.line_total, s.tax_total
                        FROM stg_items s
                        JOIN orders o ON o.store_id = ? AND o.woo_id = s.order_woo_id
                        LEFT JOIN products p ON p.store_id = ? AND p.woo_id = s.product_woo_id
                    """, [store_id, store_id])
                    conn.unregister("stg_items")

                if coupon_links:
                    links_df = pd.DataFrame(coupon_links)
                    for col in ("order_woo_id", "code"):
                        links_df[col] = _strings(links_df[col])
                    links_df["discount_applied"] = _numbers(links_df["discount_applied"])
                    conn.register("stg_order_coupons", links_df)
                    conn.execute("""
                        INSERT INTO order_coupons (order_id, coupon_id, discount_applied)
                        SELECT o.id, cp.id, s.discount_applied
                        FROM stg_order_coupons s
                        JOIN orders o ON o.store_id = ? AND o.woo_id = s.order_woo_id
                        JOIN coupons cp ON cp.store_id = ? AND cp.code = s.code
                    """, [store_id, store_id])
                    conn.unregister("stg_order_coupons")

                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        count = len(orders_df)
        logger.info(f"Upserted {count} orders for store {store_id} (DataFrame bulk insert)")
        return count

    async def replace_refunds(
        self,
        store_id: str,
        order_woo_id: str,
        refunds: List[Dict[str, Any]],
    ) -> int:
        """Replace the refunds recorded against one order."""
        async with self.connection() as conn:
            row = conn.execute(
                "SELECT id FROM orders WHERE store_id = ? AND woo_id = ?",
                [store_id, str(order_woo_id)],
            ).fetchone()
            if not row:
                return 0
            order_id = row[0]
            conn.execute("BEGIN TRANSACTION")
            try:
                conn.execute("DELETE FROM refunds WHERE order_id = ?", [order_id])
                for refund in refunds:
                    created = refund.get("created_at") or utc_now()
                    conn.execute("""
                        INSERT INTO refunds (store_id, woo_id, order_id, amount, reason, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, [
                        store_id,
                        str(refund["woo_id"]) if refund.get("woo_id") else None,
                        order_id,
                        abs(float(refund.get("amount") or 0)),
                        refund.get("reason") or None,
                        to_db(created) if isinstance(created, datetime)
                        else pd.to_datetime(created, utc=True).tz_convert(None).to_pydatetime(),
                    ])
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(refunds)

    # ─── Sync bookkeeping ────────────────────────────────────────────────────

    async def get_last_sync_time(self, store_id: str, entity: str = "orders") -> Optional[datetime]:
        row = await self._fetch_one(
            "SELECT last_synced_at FROM sync_state WHERE store_id = ? AND entity = ?",
            [store_id, entity],
        )
        return as_utc(row[0]) if row else None

    async def set_last_sync_time(self, store_id: str, entity: str, timestamp: datetime) -> None:
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO sync_state (store_id, entity, last_synced_at) VALUES (?, ?, ?)
                ON CONFLICT (store_id, entity) DO UPDATE SET last_synced_at = excluded.last_synced_at
            """, [store_id, entity, to_db(timestamp)])

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts and order date range for the health endpoint."""
        async with self.connection() as conn:
            counts = {}
            for table in ("stores", "customers", "products", "orders", "order_items", "refunds"):
                counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            min_date, max_date = conn.execute(
                "SELECT MIN(created_at), MAX(created_at) FROM orders"
            ).fetchone()

        return {
            **counts,
            "date_range": {"min": iso(min_date), "max": iso(max_date)},
            "db_size_mb": round(self.db_path.stat().st_size / 1024 / 1024, 2) if self.db_path.exists() else 0,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[DuckDBStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> DuckDBStore:
    """Get singleton DuckDB store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = DuckDBStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
