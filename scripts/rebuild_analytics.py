#!/usr/bin/env python3
"""
Rebuild the derived analytics tables (daily summaries, cohorts,
acquisitions, RFM scores) without touching WooCommerce.

Usage:
    python scripts/rebuild_analytics.py
    python scripts/rebuild_analytics.py --store my-shop
"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.duckdb_store import get_store, close_store

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(store_id: str = None) -> int:
    store = await get_store()
    try:
        store_ids = [store_id] if store_id else await store.list_store_ids()
        if not store_ids:
            logger.warning("No stores found")
            return 1
        for sid in store_ids:
            counts = await store.rebuild_analytics(sid)
            logger.info(f"{sid}: " + ", ".join(f"{table}={rows}" for table, rows in counts.items()))
    except Exception as e:
        logger.error(f"Rebuild failed: {e}", exc_info=True)
        return 1
    finally:
        await close_store()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rebuild derived analytics tables")
    parser.add_argument("--store", help="Store id (default: every store)")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(store_id=args.store)))
