#!/usr/bin/env python3
"""
Fetch every purchase order created in the last few years and store it.

Usage:
    python scripts/backfill_purchase_orders.py [--years 3] [--max-pages 100] [--page-delay 5]

Orders are upserted, so re-running only refreshes what is already stored.
"""

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from auth.token_manager import TokenManager  # noqa: E402
from services.data_coverage import get_purchase_order_coverage  # noqa: E402
from services.historical_backfill import HISTORY_YEARS, years_ago  # noqa: E402
from services.sync_context import open_sync_context  # noqa: E402
from services.vendor_po_sync import OrderSyncClient  # noqa: E402

LOGGER = logging.getLogger("backfill_purchase_orders")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill purchase orders over several years.")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path (default: VENDOR_SYNC_DB_PATH)")
    parser.add_argument("--years", type=int, default=HISTORY_YEARS, help="How many years back to fetch")
    parser.add_argument("--max-pages", type=int, default=100, help="Pagination safety limit")
    parser.add_argument("--page-delay", type=float, default=5.0, help="Seconds to wait between pages")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    with open_sync_context(args.db) as ctx:
        created_after = years_ago(ctx.now(), args.years)
        LOGGER.info("Fetching POs created after %s", created_after.isoformat())
        client = OrderSyncClient(ctx, max_pages=args.max_pages, page_delay_seconds=args.page_delay)
        access_token = TokenManager(ctx).get_valid_access_token()
        stats = client.sync_orders(access_token, created_after=created_after)
        coverage = get_purchase_order_coverage(ctx.db)

    print(
        f"Fetched {stats['total_fetched']} orders over {stats['pages_fetched']} pages: "
        f"saved {stats['saved_count']}, failed {stats['failed_count']}"
    )
    print(
        f"Coverage: {coverage.get('po_count')} POs, {coverage.get('asin_count')} ASINs, "
        f"{coverage.get('earliest')} to {coverage.get('latest')}"
    )
    return 1 if stats["failed_count"] else 0


if __name__ == "__main__":
    sys.exit(main())
