#!/usr/bin/env python3
"""
Print which vendor report types and purchase orders are present in the sync DB.

Usage:
    python scripts/check_data_coverage.py [--db path/to/vendor_sync.db] [--json]
"""

import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
from services.data_coverage import get_data_coverage  # noqa: E402
from services.db import ensure_sync_schema, get_db_connection_for_path  # noqa: E402
from services.spapi_reports import VENDOR_REPORT_TYPES  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Report data coverage of the vendor sync database.")
    parser.add_argument("--db", type=Path, default=config.DB_PATH, help="SQLite database path")
    parser.add_argument("--json", action="store_true", help="Print raw JSON instead of a table")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    with get_db_connection_for_path(args.db) as conn:
        ensure_sync_schema(conn)
        coverage = get_data_coverage(conn)

    if args.json:
        print(json.dumps(coverage, indent=2))
        return 0

    by_type = {row["report_type"]: row for row in coverage["vendor_reports"]}
    print("VENDOR REPORTS")
    for report_type, report_config in VENDOR_REPORT_TYPES.items():
        row = by_type.get(report_type)
        if not row:
            print(f"  {report_config['name']:<26} no data")
            continue
        print(
            f"  {report_config['name']:<26} {row['record_count']:>7} rows  "
            f"{row['asin_count']:>5} ASINs  {row['earliest']} -> {row['latest']}"
        )

    po = coverage["purchase_orders"]
    print("PURCHASE ORDERS")
    print(f"  {po.get('po_count', 0)} POs, {po.get('asin_count', 0)} ASINs, {po.get('total_ordered', 0)} units")
    print(f"  {po.get('earliest')} -> {po.get('latest')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
