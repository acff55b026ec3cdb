#!/usr/bin/env python3
"""
Fetch up to three years of weekly vendor reports, one week per request.

Usage:
    python scripts/backfill_vendor_reports.py [--years 3] [--report-type GET_VENDOR_SALES_REPORT ...]

Expect roughly 90 seconds per week and report type because of the report
quota. Weeks already stored are skipped, so the script can be re-run.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from services.historical_backfill import (  # noqa: E402
    HISTORICAL_REPORT_TYPES,
    HISTORY_YEARS,
    QUOTA_WAIT_SECONDS,
    REQUEST_GAP_SECONDS,
    HistoricalReportBackfill,
)
from services.sync_context import open_sync_context  # noqa: E402

LOGGER = logging.getLogger("backfill_vendor_reports")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill weekly vendor reports week by week.")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path (default: VENDOR_SYNC_DB_PATH)")
    parser.add_argument("--years", type=int, default=HISTORY_YEARS, help="How many years back to fetch")
    parser.add_argument(
        "--report-type",
        action="append",
        choices=HISTORICAL_REPORT_TYPES,
        dest="report_types",
        help="Limit to one report type (repeatable; default: all weekly types)",
    )
    parser.add_argument(
        "--request-gap",
        type=float,
        default=REQUEST_GAP_SECONDS,
        help="Seconds to wait between report requests",
    )
    parser.add_argument(
        "--quota-wait",
        type=float,
        default=QUOTA_WAIT_SECONDS,
        help="Seconds to wait after a QuotaExceeded response",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    with open_sync_context(args.db) as ctx:
        backfill = HistoricalReportBackfill(
            ctx,
            request_gap_seconds=args.request_gap,
            quota_wait_seconds=args.quota_wait,
        )
        stats = backfill.run(args.report_types or HISTORICAL_REPORT_TYPES, years=args.years)

    print(json.dumps(stats, indent=2))
    LOGGER.info(
        "Backfill done: fetched %s, skipped %s, errors %s",
        stats["fetched"],
        stats["skipped"],
        stats["errors"],
    )
    return 1 if stats["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
