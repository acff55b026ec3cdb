"""
One-off backfill of weekly vendor reports, one Sunday-Saturday week per request.

Amazon throttles vendor report creation hard, so windows are requested one at
a time with a long gap between them; a 429 waits five minutes before the
window is retried. Weeks already present in vendor_reports are skipped, so an
interrupted run can simply be started again.
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from auth.token_manager import TokenManager
from services.report_ingest import ReportIngester
from services.spapi_reports import VENDOR_REPORT_TYPES, ReportJobClient, compute_week_window
from services.sync_context import SyncContext
from services.sync_errors import SpApiQuotaError
from services.sync_orchestrator import OPERATION_ERRORS

LOGGER = logging.getLogger(__name__)

HISTORICAL_REPORT_TYPES = (
    "GET_VENDOR_SALES_REPORT",
    "GET_VENDOR_TRAFFIC_REPORT",
    "GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT",
    "GET_VENDOR_INVENTORY_REPORT",
)
HISTORY_YEARS = 3
REQUEST_GAP_SECONDS = 90
QUOTA_WAIT_SECONDS = 300
ERROR_WAIT_SECONDS = 60
MAX_ATTEMPTS = 5
BACKFILL_MAX_WAIT_MS = 300_000


def years_ago(now: datetime, years: int) -> datetime:
    try:
        return now.replace(year=now.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return now.replace(year=now.year - years, day=28)


def historical_week_windows(now: datetime, years: int = HISTORY_YEARS) -> List[Tuple[datetime, datetime]]:
    """Newest-first Sunday 00:00:00Z .. Saturday 23:59:59Z weeks reaching back ``years``."""
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    cutoff = years_ago(now, years)
    _, week_end = compute_week_window(now)

    windows: List[Tuple[datetime, datetime]] = []
    while True:
        week_start = (week_end - timedelta(days=6)).replace(hour=0, minute=0, second=0)
        if week_start < cutoff:
            break
        windows.append((week_start, week_end))
        week_end -= timedelta(days=7)
    return windows


def existing_report_keys(conn: sqlite3.Connection, since: str) -> Set[Tuple[str, str]]:
    rows = conn.execute(
        "SELECT DISTINCT report_type, report_date FROM vendor_reports WHERE report_date >= ?",
        (since,),
    ).fetchall()
    return {(row[0], row[1]) for row in rows}


class HistoricalReportBackfill:
    def __init__(
        self,
        ctx: SyncContext,
        *,
        token_manager: Optional[TokenManager] = None,
        report_client: Optional[ReportJobClient] = None,
        ingester: Optional[ReportIngester] = None,
        request_gap_seconds: float = REQUEST_GAP_SECONDS,
        quota_wait_seconds: float = QUOTA_WAIT_SECONDS,
        error_wait_seconds: float = ERROR_WAIT_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        max_wait_ms: int = BACKFILL_MAX_WAIT_MS,
    ):
        self.ctx = ctx
        self.token_manager = token_manager or TokenManager(ctx)
        self.report_client = report_client or ReportJobClient(ctx)
        self.ingester = ingester or ReportIngester(ctx)
        self.request_gap_seconds = request_gap_seconds
        self.quota_wait_seconds = quota_wait_seconds
        self.error_wait_seconds = error_wait_seconds
        self.max_attempts = max(1, max_attempts)
        self.max_wait_ms = max_wait_ms

    def fetch_window(self, report_type: str, start: datetime, end: datetime) -> int:
        """Run and store one week, retrying with a quota-aware wait."""
        attempt = 0
        while True:
            attempt += 1
            try:
                access_token = self.token_manager.get_valid_access_token()
                content = self.report_client.run_report(
                    access_token,
                    report_type,
                    start,
                    end,
                    max_wait_ms=self.max_wait_ms,
                    exact_window=True,
                )
                return self.ingester.ingest(report_type, content, default_date=end.date().isoformat())
            except OPERATION_ERRORS as exc:
                LOGGER.error(
                    "[Backfill] %s %s: attempt %s/%s failed: %s",
                    report_type,
                    end.date().isoformat(),
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt >= self.max_attempts:
                    raise
                quota = isinstance(exc, SpApiQuotaError)
                wait_time = self.quota_wait_seconds if quota else self.error_wait_seconds
                LOGGER.info("[Backfill] Retrying in %ss%s", wait_time, " (quota exceeded)" if quota else "")
                self.ctx.sleep(wait_time)

    def run(
        self,
        report_types: Iterable[str] = HISTORICAL_REPORT_TYPES,
        years: int = HISTORY_YEARS,
    ) -> Dict[str, Any]:
        report_types = list(report_types)
        for report_type in report_types:
            if report_type not in HISTORICAL_REPORT_TYPES:
                raise ValueError(f"{report_type} has no weekly history to backfill")

        windows = historical_week_windows(self.ctx.now(), years)
        since = windows[-1][0].date().isoformat() if windows else self.ctx.now().date().isoformat()
        existing = existing_report_keys(self.ctx.db, since)
        LOGGER.info(
            "[Backfill] %s weekly periods, %s stored (type, week) entries found",
            len(windows),
            len(existing),
        )

        stats: Dict[str, Any] = {
            "windows": len(windows),
            "fetched": 0,
            "skipped": 0,
            "errors": 0,
            "saved_count": 0,
            "by_type": {},
        }
        requested = False
        for report_type in report_types:
            name = VENDOR_REPORT_TYPES[report_type]["name"]
            type_stats = {"fetched": 0, "skipped": 0, "errors": 0, "saved_count": 0}
            for index, (start, end) in enumerate(windows, start=1):
                if (report_type, end.date().isoformat()) in existing:
                    type_stats["skipped"] += 1
                    continue
                if requested and self.request_gap_seconds > 0:
                    self.ctx.sleep(self.request_gap_seconds)
                requested = True

                LOGGER.info(
                    "[%s] [%s/%s] %s - %s",
                    name,
                    index,
                    len(windows),
                    start.date().isoformat(),
                    end.date().isoformat(),
                )
                try:
                    saved = self.fetch_window(report_type, start, end)
                except OPERATION_ERRORS:
                    type_stats["errors"] += 1
                    continue
                type_stats["fetched"] += 1
                type_stats["saved_count"] += saved
                LOGGER.info("[%s] Saved %s ASIN records", name, saved)

            LOGGER.info(
                "[%s] Fetched %s, skipped %s, errors %s",
                name,
                type_stats["fetched"],
                type_stats["skipped"],
                type_stats["errors"],
            )
            stats["by_type"][report_type] = type_stats
            for key in ("fetched", "skipped", "errors", "saved_count"):
                stats[key] += type_stats[key]

        return stats
