#!/usr/bin/env python3
"""
Register (or update) a WooCommerce store and check its credentials.

Usage:
    python scripts/add_store.py --id my-shop --url https://shop.example.com \
        --key ck_xxx --secret cs_xxx [--name "My Shop"]
"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.duckdb_store import get_store, close_store
from core.woo_client import WooCommerceClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(store_id: str, url: str, key: str, secret: str, name: str = None) -> int:
    record = {"id": store_id, "name": name, "woo_base_url": url, "woo_key": key, "woo_secret": secret}

    async with WooCommerceClient.for_store(record) as client:
        check = await client.test_connection()
    if not check["success"]:
        logger.error(f"WooCommerce connection failed: {check['error']}")
        return 1

    store = await get_store()
    try:
        await store.upsert_store(record)
    finally:
        await close_store()
    logger.info(f"Store {store_id} saved; run scripts/sync_store.py --store {store_id} --full next")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Register a WooCommerce store")
    parser.add_argument("--id", required=True, dest="store_id", help="Store id used in API calls")
    parser.add_argument("--url", required=True, help="Store base URL")
    parser.add_argument("--key", required=True, help="WooCommerce consumer key")
    parser.add_argument("--secret", required=True, help="WooCommerce consumer secret")
    parser.add_argument("--name", help="Display name (default: the id)")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.store_id, args.url, args.key, args.secret, args.name)))
