"""
Scheduled vendor sync entrypoint.

Usage:
    python sync.py              # Sync everything (highest memory usage)
    python sync.py reports      # Weekly vendor reports only
    python sync.py po           # Purchase orders only
    python sync.py rt           # Both real-time reports
    python sync.py rt-inv       # Real-time inventory only (lower memory)
    python sync.py rt-sales     # Real-time sales only (lower memory)

For 512MB workers, schedule rt-inv and rt-sales as separate jobs instead of rt.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from services.log_config import configure_logging
from services.sync_context import open_sync_context
from services.sync_orchestrator import SYNC_MODES, SyncOrchestrator

LOGGER = logging.getLogger("vendor_sync")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync vendor reports and purchase orders from SP-API.")
    parser.add_argument(
        "mode",
        nargs="?",
        default="all",
        choices=SYNC_MODES,
        help="Which operations to run (default: all)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (default: VENDOR_SYNC_DB_PATH)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        # argparse exits 2 on a bad mode; the scheduler only distinguishes 0 and 1.
        return 0 if exc.code in (0, None) else 1
    configure_logging()

    LOGGER.info("=" * 60)
    LOGGER.info("SCHEDULED SYNC - %s", datetime.now(timezone.utc).isoformat())
    LOGGER.info("Mode: %s", args.mode)
    LOGGER.info("=" * 60)

    try:
        with open_sync_context(args.db) as ctx:
            results = SyncOrchestrator(ctx).run(args.mode)
    except Exception:
        LOGGER.exception("FATAL ERROR during %s sync", args.mode)
        return 1

    LOGGER.info("SYNC COMPLETE")
    print(json.dumps(results, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
