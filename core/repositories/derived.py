"""DuckDBStore derived-table rebuild (daily summaries, cohorts, acquisitions, RFM)."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

import pandas as pd

from core import rfm
from core.config import config
from core.dates import analytics_tz, utc_now
from core.duckdb_constants import LONG_QUERY_TIMEOUT

logger = logging.getLogger(__name__)


def _local_days(series: pd.Series) -> pd.Series:
    """Naive-UTC timestamps -> local calendar day (as midnight datetime64)."""
    local = series.dt.tz_localize("UTC").dt.tz_convert(analytics_tz())
    return local.dt.tz_localize(None).dt.normalize()


def _month_index(series: pd.Series) -> pd.Series:
    return series.dt.year * 12 + series.dt.month


def build_daily_summaries(
    orders: pd.DataFrame,
    refunds: pd.DataFrame,
    since_day: pd.Timestamp,
) -> pd.DataFrame:
    """One row per local day with orders or refunds on/after ``since_day``."""
    columns = ["day", "orders_count", "revenue", "units", "unique_customers",
               "aov", "refunds_amount", "net_revenue"]

    orders = orders.assign(day=_local_days(orders["created_at"]))
    orders = orders[orders["day"] >= since_day]
    daily = orders.groupby("day").agg(
        orders_count=("id", "count"),
        revenue=("total", "sum"),
        units=("units", "sum"),
        unique_customers=("customer_id", "nunique"),
    )

    refunds = refunds.assign(day=_local_days(refunds["created_at"]))
    refunds = refunds[refunds["day"] >= since_day]
    refunds_daily = refunds.groupby("day")["amount"].sum().rename("refunds_amount")

    daily = daily.join(refunds_daily, how="outer").fillna(0)
    if daily.empty:
        return pd.DataFrame(columns=columns)

    daily["aov"] = (daily["revenue"] / daily["orders_count"].where(daily["orders_count"] > 0)).fillna(0)
    daily["net_revenue"] = daily["revenue"] - daily["refunds_amount"]
    daily = daily.reset_index()
    for col in ("orders_count", "units", "unique_customers"):
        daily[col] = daily[col].astype("int64")
    return daily[columns].sort_values("day")


def build_acquisitions(orders: pd.DataFrame) -> pd.DataFrame:
    """First order (id and date) per customer."""
    known = orders.dropna(subset=["customer_id"]).sort_values(["created_at", "id"])
    first = known.groupby("customer_id", as_index=False).first()
    return first.rename(columns={"id": "first_order_id", "created_at": "first_order_date"})[
        ["customer_id", "first_order_id", "first_order_date"]
    ]


def build_cohorts(orders: pd.DataFrame, acquisitions: pd.DataFrame) -> pd.DataFrame:
    """
    Monthly retention cohorts by UTC month of the first order.

    ``period_month`` 0 is the acquisition month itself.
    """
    columns = ["cohort_month", "period_month", "customers_in_cohort",
               "active_customers", "retention_rate"]
    if acquisitions.empty:
        return pd.DataFrame(columns=columns)

    known = orders.dropna(subset=["customer_id"]).merge(
        acquisitions[["customer_id", "first_order_date"]], on="customer_id"
    )
    known["period_month"] = (
        _month_index(known["created_at"]) - _month_index(known["first_order_date"])
    )
    known["cohort_month"] = known["first_order_date"].dt.to_period("M").dt.to_timestamp()

    cohort_sizes = (
        known.groupby("cohort_month")["customer_id"].nunique().rename("customers_in_cohort")
    )
    active = (
        known.groupby(["cohort_month", "period_month"])["customer_id"]
        .nunique()
        .rename("active_customers")
        .reset_index()
    )
    cohorts = active.merge(cohort_sizes.reset_index(), on="cohort_month")
    cohorts["retention_rate"] = (
        cohorts["active_customers"] / cohorts["customers_in_cohort"] * 100
    ).round(2)
    return cohorts[columns].sort_values(["cohort_month", "period_month"])


def build_scores(orders: pd.DataFrame, now: datetime) -> pd.DataFrame:
    """RFM scores per customer measured against ``now``."""
    columns = ["customer_id", "last_order_at", "recency_days", "frequency", "monetary",
               "r_score", "f_score", "m_score", "rfm_score", "segment"]
    known = orders.dropna(subset=["customer_id"])
    if known.empty:
        return pd.DataFrame(columns=columns)

    scores = known.groupby("customer_id").agg(
        last_order_at=("created_at", "max"),
        frequency=("id", "count"),
        monetary=("total", "sum"),
    ).reset_index()
    now_naive = pd.Timestamp(now).tz_convert("UTC").tz_localize(None)
    scores["recency_days"] = (now_naive - scores["last_order_at"]).dt.days.clip(lower=0)

    scored = scores.apply(
        lambda row: rfm.score(row["recency_days"], row["frequency"], row["monetary"]),
        axis=1,
        result_type="expand",
    )
    scored.columns = ["r_score", "f_score", "m_score", "rfm_score", "segment"]
    scores = pd.concat([scores, scored], axis=1)
    return scores[columns]


class DerivedMixin:

    async def rebuild_analytics(self, store_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Recompute every derived table for one store.

        Each table is replaced wholesale inside a single transaction.

        Returns:
            Row counts written per table
        """
        now = now or utc_now()

        orders = await self._fetch_df("""
            SELECT o.id, o.customer_id, o.created_at, o.total,
                   COALESCE(u.units, 0) AS units
            FROM orders o
            LEFT JOIN (
                SELECT order_id, SUM(quantity) AS units
                FROM order_items GROUP BY order_id
            ) u ON u.order_id = o.id
            WHERE o.store_id = ?
        """, [store_id], timeout=LONG_QUERY_TIMEOUT)
        refunds = await self._fetch_df(
            "SELECT created_at, amount FROM refunds WHERE store_id = ?",
            [store_id], timeout=LONG_QUERY_TIMEOUT,
        )

        orders["total"] = pd.to_numeric(orders["total"], errors="coerce").fillna(0.0)
        orders["units"] = pd.to_numeric(orders["units"], errors="coerce").fillna(0)
        orders["created_at"] = pd.to_datetime(orders["created_at"])
        refunds["created_at"] = pd.to_datetime(refunds["created_at"])
        refunds["amount"] = pd.to_numeric(refunds["amount"], errors="coerce").fillna(0.0)

        today = pd.Timestamp(now.astimezone(analytics_tz()).date())
        since_day = today - timedelta(days=config.analytics.daily_summary_days - 1)

        daily = build_daily_summaries(orders, refunds, since_day)
        acquisitions = build_acquisitions(orders)
        cohorts = build_cohorts(orders, acquisitions)
        scores = build_scores(orders, now)

        tables = {
            "daily_summaries": (daily, """
                INSERT INTO daily_summaries (
                    store_id, day, orders_count, revenue, units, unique_customers,
                    aov, refunds_amount, net_revenue
                )
                SELECT ?, CAST(day AS DATE), orders_count, revenue, units, unique_customers,
                       aov, refunds_amount, net_revenue
                FROM stg_derived
            """),
            "customer_acquisitions": (acquisitions, """
                INSERT INTO customer_acquisitions (store_id, customer_id, first_order_id, first_order_date)
                SELECT ?, CAST(customer_id AS BIGINT), CAST(first_order_id AS BIGINT), first_order_date
                FROM stg_derived
            """),
            "cohort_monthly": (cohorts, """
                INSERT INTO cohort_monthly (
                    store_id, cohort_month, period_month, customers_in_cohort,
                    active_customers, retention_rate
                )
                SELECT ?, CAST(cohort_month AS DATE), period_month, customers_in_cohort,
                       active_customers, retention_rate
                FROM stg_derived
            """),
            "customer_scores": (scores, """
                INSERT INTO customer_scores (
                    store_id, customer_id, last_order_at, recency_days, frequency, monetary,
                    r_score, f_score, m_score, rfm_score, segment
                )
                SELECT ?, CAST(customer_id AS BIGINT), last_order_at, recency_days, frequency,
                       monetary, r_score, f_score, m_score, rfm_score, segment
                FROM stg_derived
            """),
        }

        counts: Dict[str, int] = {}
        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                for table, (df, insert_sql) in tables.items():
                    conn.execute(f"DELETE FROM {table} WHERE store_id = ?", [store_id])
                    counts[table] = len(df)
                    if df.empty:
                        continue
                    conn.register("stg_derived", df)
                    try:
                        conn.execute(insert_sql, [store_id])
                    finally:
                        conn.unregister("stg_derived")
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.info(f"Rebuilt analytics for store {store_id}: {counts}")
        return counts
