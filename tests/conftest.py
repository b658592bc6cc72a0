"""
Pytest configuration and shared fixtures.

The analytics timezone and integration secrets are pinned before any
project module reads the environment.
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

os.environ["ANALYTICS_TIMEZONE"] = "America/Los_Angeles"
for _name in (
    "CRON_SECRET", "GHL_PIT", "GHL_LOCATION_ID", "NOTION_TOKEN", "NOTION_DB_ID_KPIS", "NOTION_DB_ID",
    "ANTHROPIC_API_KEY", "ASSISTANT_MOCK", "INTERNAL_API_BASE", "STORE_ID",
):
    os.environ[_name] = ""

import pytest

STORE_ID = "store-1"


def _order(
    woo_id: int,
    created_at: datetime,
    total: float,
    items: List[Dict[str, Any]],
    email: str = None,
    first_name: str = None,
    last_name: str = None,
    status: str = "completed",
    **extra,
) -> Dict[str, Any]:
    order = {
        "woo_id": woo_id,
        "customer_email": email,
        "first_name": first_name,
        "last_name": last_name,
        "created_at": created_at,
        "status": status,
        "currency": "USD",
        "total": total,
        "subtotal": total,
        "discount_total": 0,
        "shipping_total": 0,
        "tax_total": 0,
        "payment_method": "stripe",
        "shipping_country": "US",
        "shipping_city": "Austin",
        "items": items,
        "coupons": [],
    }
    order.update(extra)
    return order


def _item(product_woo_id: int, name: str, quantity: int, line_total: float) -> Dict[str, Any]:
    return {
        "product_woo_id": product_woo_id,
        "name": name,
        "sku": f"SKU-{product_woo_id}",
        "quantity": quantity,
        "unit_price": line_total / quantity,
        "line_subtotal": line_total,
        "line_total": line_total,
        "tax_total": 0,
    }


def sample_orders(now: datetime) -> List[Dict[str, Any]]:
    """
    Six orders relative to ``now``:

    - alice: 3 orders (60, 20 and 5 days ago), the latest with coupon SAVE10
    - bob: 1 order 45 days ago (idle for a 30-day window)
    - carol: 1 processing order 4 days ago
    - one guest order yesterday
    """
    def ago(days: int) -> datetime:
        return now - timedelta(days=days)

    return [
        _order(1001, ago(5), 120.0,
               [_item(101, "Court Shoes", 1, 100.0), _item(102, "Grip Tape", 2, 20.0)],
               email="Alice@Example.com", first_name="Alice", last_name="Ng",
               discount_total=10.0, shipping_total=5.0, tax_total=8.0,
               coupons=[{"code": "SAVE10", "amount": 10.0, "discount_type": "fixed_cart"}]),
        _order(1002, ago(20), 80.0, [_item(101, "Court Shoes", 1, 80.0)],
               email="alice@example.com", first_name="Alice", last_name="Ng"),
        _order(1003, ago(60), 150.0, [_item(101, "Court Shoes", 1, 150.0)],
               email="alice@example.com", first_name="Alice", last_name="Ng"),
        _order(1004, ago(45), 60.0, [_item(102, "Grip Tape", 3, 60.0)],
               email="bob@example.com", first_name="Bob", last_name="Stone", phone="+1 (512) 555-0101"),
        _order(1005, ago(4), 40.0, [_item(102, "Grip Tape", 2, 40.0)],
               email="carol@example.com", first_name="Carol", status="processing"),
        _order(1006, ago(1), 25.0, [_item(102, "Grip Tape", 1, 25.0)]),
    ]


SAMPLE_PRODUCTS = [
    {"woo_id": 101, "name": "Court Shoes", "sku": "SKU-101", "price": 100.0, "status": "publish",
     "categories": [{"woo_id": 11, "name": "Footwear", "slug": "footwear"}]},
    {"woo_id": 102, "name": "Grip Tape", "sku": "SKU-102", "price": 10.0, "status": "publish",
     "categories": [{"woo_id": 12, "name": "Accessories", "slug": "accessories"}]},
]


async def seed_store(store, now: datetime) -> Dict[str, int]:
    """Load the sample store through the loaders and rebuild derived tables."""
    await store.upsert_store({
        "id": STORE_ID,
        "name": "Pickle Pro Shop",
        "woo_base_url": "https://shop.example.com",
        "woo_key": "ck_test",
        "woo_secret": "cs_test",
        "created_at": now - timedelta(days=400),
    })
    await store.upsert_products(STORE_ID, SAMPLE_PRODUCTS)
    await store.upsert_orders(STORE_ID, sample_orders(now))
    await store.upsert_customers(STORE_ID, [
        {"email": "dave@example.com", "woo_id": 77, "first_name": "Dave", "last_name": "Quiet"},
    ])
    await store.replace_refunds(STORE_ID, "1002", [
        {"woo_id": 9001, "amount": -15.0, "reason": "Damaged", "created_at": now - timedelta(days=19)},
    ])
    await store.rebuild_analytics(STORE_ID, now=now)

    ids = {}
    for email in ("alice@example.com", "bob@example.com", "carol@example.com", "dave@example.com"):
        customer = await store.find_customer(STORE_ID, email=email)
        ids[email.split("@")[0]] = customer["id"]
    return ids


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def empty_store(tmp_path):
    """A fresh DuckDB file with the schema but no rows."""
    from core.duckdb_store import DuckDBStore

    store = DuckDBStore(tmp_path / "test.duckdb")
    asyncio.run(store.connect())
    yield store
    asyncio.run(store.close())


@pytest.fixture
def seeded(empty_store, now) -> SimpleNamespace:
    """The sample store loaded into DuckDB, with customer ids by first name."""
    ids = asyncio.run(seed_store(empty_store, now))
    return SimpleNamespace(store=empty_store, store_id=STORE_ID, now=now, ids=ids)


@pytest.fixture
def client(seeded, monkeypatch):
    """TestClient against the app, backed by the seeded store, rate limits off."""
    from fastapi.testclient import TestClient

    import core.duckdb_store
    from web.main import app
    from web.routes.api import health
    from web.routes.api._deps import limiter

    monkeypatch.setattr(core.duckdb_store, "_store_instance", seeded.store)
    monkeypatch.setattr(limiter, "enabled", False)
    monkeypatch.setitem(health._stats_cache, "data", None)
    return TestClient(app)
