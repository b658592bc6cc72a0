#!/usr/bin/env python3
"""
Sync WooCommerce data into DuckDB and rebuild the derived analytics tables.

Incremental by default (orders created since the last sync).

Usage:
    python scripts/sync_store.py                      # every store
    python scripts/sync_store.py --store my-shop
    python scripts/sync_store.py --store my-shop --full
    python scripts/sync_store.py --since 2024-01-01
"""
import asyncio
import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.duckdb_store import get_store, close_store
from core.sync_service import WooSyncService, sync_all_stores

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_since(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"--since must be YYYY-MM-DD (got {value!r})")


async def main(store_id: str = None, full: bool = False, since: datetime = None) -> int:
    store = await get_store()
    stats_before = await store.get_stats()
    logger.info(f"Before sync: {stats_before['orders']} orders, {stats_before['customers']} customers")

    try:
        if store_id:
            results = [await WooSyncService(store).sync_store(store_id, full=full, since=since)]
        else:
            results = await sync_all_stores(full=full, since=since)
    except Exception as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return 1
    finally:
        stats_after = await store.get_stats()
        await close_store()

    for result in results:
        logger.info(
            f"{result['storeId']}: {result['orders']} orders, {result['customers']} customers, "
            f"{result['products']} products, {result['refunds']} refunds in {result['durationMs']} ms"
        )
        for warning in result.get("warnings") or []:
            logger.warning(warning)
    logger.info(f"After sync: {stats_after['orders']} orders ({stats_after['orders'] - stats_before['orders']:+d})")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync WooCommerce stores into DuckDB")
    parser.add_argument("--store", help="Store id (default: every store)")
    parser.add_argument("--full", action="store_true", help="Reload every order instead of an incremental sync")
    parser.add_argument("--since", type=parse_since, help="Only orders created after this date (YYYY-MM-DD)")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(store_id=args.store, full=args.full, since=args.since)))
