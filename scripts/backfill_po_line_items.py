#!/usr/bin/env python3
"""
Rebuild po_line_items from the items JSON already stored on purchase_orders.

Usage:
    python scripts/backfill_po_line_items.py [--db path/to/vendor_sync.db]

Safe to re-run: existing (po_number, asin) rows are updated in place.
"""

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
from services.data_coverage import get_purchase_order_coverage  # noqa: E402
from services.db import ensure_sync_schema, get_db_connection_for_path  # noqa: E402
from services.vendor_po_store import backfill_po_line_items  # noqa: E402

LOGGER = logging.getLogger("backfill_po_line_items")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill po_line_items from stored purchase orders.")
    parser.add_argument(
        "--db",
        type=Path,
        default=config.DB_PATH,
        help="SQLite database path (default: VENDOR_SYNC_DB_PATH)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    with get_db_connection_for_path(args.db) as conn:
        ensure_sync_schema(conn)
        stats = backfill_po_line_items(conn)
        coverage = get_purchase_order_coverage(conn)

    print(f"Orders processed: {stats['orders_processed']} (skipped {stats['orders_skipped']})")
    print(f"Line items inserted: {stats['inserted']} | updated: {stats['updated']} | failed: {stats['failed']}")
    print(
        f"Coverage: {coverage.get('po_count')} POs, {coverage.get('asin_count')} ASINs, "
        f"{coverage.get('total_ordered')} units ordered"
    )
    return 1 if stats["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
