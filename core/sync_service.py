"""
Sync service for loading a WooCommerce store into DuckDB.

Order of work per store:
1. Products (with categories)
2. Customers
3. Orders (customer, line items, coupon lines), incremental via sync_state
4. Refunds for orders that report any
5. Derived-table rebuild (daily summaries, cohorts, acquisitions, RFM)
"""
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.dates import iso, utc_now, UTC
from core.duckdb_store import DuckDBStore, get_store
from core.exceptions import IntegrationError
from core.observability import get_logger, Timer, correlation_context
from core.woo_client import WooCommerceClient

logger = get_logger(__name__)

ORDERS_ENTITY = "orders"
WOO_PAGE_SIZE = 100

_TZ_SUFFIX = re.compile(r"(Z|[+-]\d\d:\d\d)$")


def parse_woo_date(value: Optional[str]) -> Optional[datetime]:
    """Woo ``*_gmt`` strings carry no offset; treat them as UTC."""
    if not value:
        return None
    text = str(value).strip()
    if not _TZ_SUFFIX.search(text):
        text += "Z"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).astimezone(UTC)
    except ValueError:
        return None


def safe_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_product(product: Dict[str, Any]) -> Dict[str, Any]:
    price = safe_number(product.get("price"))
    if price is None:
        price = safe_number(product.get("regular_price"))
    return {
        "woo_id": product.get("id"),
        "name": product.get("name") or "Unnamed Product",
        "sku": product.get("sku") or None,
        "price": price if price is not None else 0,
        "status": product.get("status"),
        "categories": [
            {"woo_id": c.get("id"), "name": c.get("name"), "slug": c.get("slug")}
            for c in product.get("categories") or []
        ],
    }


def map_customer(store_id: str, customer: Dict[str, Any]) -> Dict[str, Any]:
    email = (customer.get("email") or "").lower() or (
        f"customer-{store_id}-{customer.get('id')}@wooanalytics.local"
    )
    return {
        "woo_id": customer.get("id") or None,
        "email": email,
        "first_name": customer.get("first_name") or None,
        "last_name": customer.get("last_name") or None,
        "phone": (customer.get("billing") or {}).get("phone") or None,
    }


def map_order(store_id: str, order: Dict[str, Any]) -> Dict[str, Any]:
    """Woo order payload -> DuckDBStore.upsert_orders row."""
    billing = order.get("billing") or {}
    shipping = order.get("shipping") or {}
    email = (
        (billing.get("email") or "").lower()
        or (order.get("customer_email") or "").lower()
        or f"order-{store_id}-{order.get('id')}@wooanalytics.local"
    )
    created = parse_woo_date(order.get("date_created_gmt") or order.get("date_created")) or utc_now()
    total = safe_number(order.get("total"))
    subtotal = safe_number(order.get("subtotal"))
    return {
        "woo_id": order.get("id"),
        "customer_email": email,
        "customer_woo_id": order.get("customer_id") or None,
        "first_name": billing.get("first_name") or None,
        "last_name": billing.get("last_name") or None,
        "phone": billing.get("phone") or None,
        "last_active_at": parse_woo_date(
            order.get("date_modified_gmt") or order.get("date_completed") or order.get("date_created")
        ),
        "created_at": created,
        "status": order.get("status"),
        "currency": order.get("currency"),
        "billing_email": billing.get("email"),
        "total": total if total is not None else 0,
        "subtotal": subtotal if subtotal is not None else total,
        "discount_total": safe_number(order.get("discount_total")),
        "shipping_total": safe_number(order.get("shipping_total")),
        "tax_total": safe_number(order.get("total_tax")),
        "payment_method": order.get("payment_method"),
        "shipping_country": shipping.get("country") or None,
        "shipping_city": shipping.get("city") or None,
        "items": [
            {
                "product_woo_id": item.get("product_id") or None,
                "name": item.get("name") or "Line Item",
                "sku": item.get("sku") or None,
                "quantity": int(safe_number(item.get("quantity")) or 1),
                "unit_price": safe_number(item.get("price")),
                "line_subtotal": safe_number(item.get("subtotal")),
                "line_total": safe_number(item.get("total")),
                "tax_total": safe_number(item.get("total_tax")),
            }
            for item in order.get("line_items") or []
        ],
        "coupons": [
            {
                "code": (line.get("code") or "").lower() or None,
                "amount": safe_number(line.get("discount")),
                "discount_type": line.get("discount_type"),
            }
            for line in order.get("coupon_lines") or []
        ],
    }


def map_refund(refund: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "woo_id": refund.get("id"),
        "amount": safe_number(refund.get("amount")) or 0,
        "reason": refund.get("reason") or None,
        "created_at": parse_woo_date(refund.get("date_created_gmt") or refund.get("date_created")),
    }


class WooSyncService:
    """Pulls one store's WooCommerce data into DuckDB."""

    def __init__(
        self,
        store: DuckDBStore,
        client_factory: Callable[[Dict[str, Any]], WooCommerceClient] = WooCommerceClient.for_store,
    ):
        self.store = store
        self.client_factory = client_factory

    async def sync_store(
        self,
        store_id: str,
        full: bool = False,
        since: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Sync one store and rebuild its analytics.

        Incremental by default: orders created after the last recorded sync
        (or ``since``). ``full`` reloads every order.

        Raises:
            ValueError: Unknown store id
            IntegrationError: WooCommerce listing failed
        """
        with correlation_context(store_id=store_id):
            record = await self.store.get_store_record(store_id)
            if record is None:
                raise ValueError(f"Store {store_id} not found")

            started_at = utc_now()
            if not full and since is None:
                since = await self.store.get_last_sync_time(store_id, ORDERS_ENTITY)
            stats: Dict[str, Any] = {"storeId": store_id, "full": full, "since": iso(since) if since and not full else None}

            with Timer(f"sync store {store_id}", logger) as timer:
                async with self.client_factory(record) as client:
                    products = await client.get_products({"per_page": WOO_PAGE_SIZE, "status": "any"})
                    stats["products"] = await self.store.upsert_products(
                        store_id, [map_product(p) for p in products]
                    )

                    customers = await client.get_customers({"per_page": WOO_PAGE_SIZE})
                    stats["customers"] = await self.store.upsert_customers(
                        store_id, [map_customer(store_id, c) for c in customers]
                    )

                    params: Dict[str, Any] = {"per_page": WOO_PAGE_SIZE, "status": "any"}
                    if since and not full:
                        params["after"] = since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S")
                    orders = await client.get_orders(params)
                    stats["orders"] = await self.store.upsert_orders(
                        store_id, [map_order(store_id, o) for o in orders]
                    )
                    stats["refunds"], stats["warnings"] = await self._sync_refunds(client, store_id, orders)

                await self.store.set_last_sync_time(store_id, ORDERS_ENTITY, started_at)
                stats["analytics"] = await self.store.rebuild_analytics(store_id)

            stats["durationMs"] = round(timer.elapsed_ms, 1)
            logger.info("Store sync completed", extra={k: v for k, v in stats.items() if k != "warnings"})
            return stats

    async def _sync_refunds(
        self,
        client: WooCommerceClient,
        store_id: str,
        orders: List[Dict[str, Any]],
    ) -> tuple:
        """Refunds for orders whose payload lists any; failures are logged and skipped."""
        count = 0
        warnings: List[str] = []
        for order in orders:
            if not order.get("refunds"):
                continue
            try:
                refunds = await client.get_order_refunds(order["id"])
            except IntegrationError as e:
                logger.warning(f"Refund fetch failed for order {order.get('id')}: {e}")
                warnings.append(f"Order {order.get('id')}: {e}")
                continue
            count += await self.store.replace_refunds(
                store_id, str(order["id"]), [map_refund(r) for r in refunds]
            )
        return count, warnings


async def sync_all_stores(full: bool = False, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Sync every configured store in creation order."""
    store = await get_store()
    service = WooSyncService(store)
    results = []
    for store_id in await store.list_store_ids():
        results.append(await service.sync_store(store_id, full=full, since=since))
    return results
