#!/usr/bin/env python3
"""
Push one KPI snapshot page to Notion, same as GET /cron/notion-kpi.

Usage:
    python scripts/push_kpi_snapshot.py --store my-shop
    python scripts/push_kpi_snapshot.py --store my-shop --from 2024-06-01 --to 2024-06-30 --label "June 2024"
"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.duckdb_store import get_store, close_store
from core.notion_client import close_notion_client
from core.exceptions import IntegrationError, ValidationError
from web.services import snapshot_service
from web.services.analytics_service import OrderFilter

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(store_id: str, date_from: str = None, date_to: str = None, label: str = None) -> int:
    try:
        f = OrderFilter.from_query(store_id, date_from, date_to)
    except ValidationError as e:
        logger.error(e.message)
        return 2

    store = await get_store()
    try:
        result = await snapshot_service.notion_kpi_snapshot(store, f, period_label=label)
    except IntegrationError as e:
        logger.error(f"Snapshot failed: {e}")
        return 1
    finally:
        await close_notion_client()
        await close_store()

    logger.info(f"Created Notion page {result['snapshot']['id']}: {result['snapshot']['url']}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Push a KPI snapshot to Notion")
    parser.add_argument("--store", required=True, help="Store id")
    parser.add_argument("--from", dest="date_from", help="Range start (YYYY-MM-DD, default: 30 days ago)")
    parser.add_argument("--to", dest="date_to", help="Range end (YYYY-MM-DD, default: today)")
    parser.add_argument("--label", help="Period label for the page title")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.store, args.date_from, args.date_to, args.label)))
