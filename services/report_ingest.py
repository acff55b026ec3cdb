import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from services.sync_context import SyncContext

logger = logging.getLogger("report_ingest")

INSERT_CHUNK_SIZE = 200

# Checked in order; the first fragment found in the report type wins.
REPORT_DATA_KEYS = (
    ("INVENTORY", "inventoryByAsin"),
    ("SALES", "salesByAsin"),
    ("TRAFFIC", "trafficByAsin"),
    ("MARGIN", "netPureProductMarginByAsin"),
)


def data_key_for(report_type: str) -> Optional[str]:
    for fragment, key in REPORT_DATA_KEYS:
        if fragment in report_type:
            return key
    return None


def extract_asin_rows(report_type: str, payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    key = data_key_for(report_type)
    rows = payload.get(key) if key else None
    if not rows:
        rows = payload.get("reportData")
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


def date_field(row: Dict[str, Any], key: str) -> Optional[str]:
    value = row.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def asin_of(row: Dict[str, Any]) -> Optional[str]:
    asin = row.get("asin")
    return asin if isinstance(asin, str) and asin else None


def report_date_for(row: Dict[str, Any], today: str) -> str:
    """First usable string date among endDate, startDate, date; else ``today``."""
    return date_field(row, "endDate") or date_field(row, "startDate") or date_field(row, "date") or today


class ReportIngester:
    """Replace-not-append persistence of one decoded vendor report."""

    def __init__(self, ctx: SyncContext, chunk_size: int = INSERT_CHUNK_SIZE):
        self.ctx = ctx
        self.chunk_size = chunk_size

    def _today(self) -> str:
        return self.ctx.now().date().isoformat()

    def ingest(self, report_type: str, decoded_content: str, default_date: Optional[str] = None) -> int:
        """
        Replace the stored rows for every report date present in the payload.
        Rows without a usable date fall back to ``default_date`` (or today).
        """
        try:
            report_data = json.loads(decoded_content)
        except (TypeError, ValueError) as exc:
            logger.error("[%s] Failed to parse report JSON: %s", report_type, exc)
            return 0

        asin_rows = extract_asin_rows(report_type, report_data)
        # Only the ASIN rows are needed from here on.
        del report_data

        if not asin_rows:
            logger.info("[%s] No ASIN data found in report", report_type)
            return 0

        logger.info("[%s] Processing %s items...", report_type, len(asin_rows))
        today = default_date or self._today()
        report_dates = self.collect_report_dates(asin_rows, today)
        self.delete_existing(report_type, report_dates)
        saved_count = self.insert_rows(report_type, asin_rows, today)
        del asin_rows
        return saved_count

    @staticmethod
    def collect_report_dates(rows: Iterable[Dict[str, Any]], today: str) -> Set[str]:
        return {report_date_for(row, today) for row in rows if asin_of(row)}

    def delete_existing(self, report_type: str, report_dates: Set[str]) -> int:
        if not report_dates:
            return 0
        dates = sorted(report_dates)
        placeholders = ", ".join("?" for _ in dates)
        cur = self.ctx.db.execute(
            f"DELETE FROM vendor_reports WHERE report_type = ? AND report_date IN ({placeholders})",
            (report_type, *dates),
        )
        self.ctx.db.commit()
        logger.info(
            "[%s] Deleted %s existing rows for %s report dates",
            report_type,
            cur.rowcount,
            len(dates),
        )
        return cur.rowcount

    def insert_rows(self, report_type: str, rows: List[Dict[str, Any]], today: str) -> int:
        saved_count = 0
        request_date = self.ctx.now().replace(microsecond=0).isoformat()

        for offset in range(0, len(rows), self.chunk_size):
            values: List[str] = []
            params: List[Any] = []
            for item in rows[offset : offset + self.chunk_size]:
                asin = asin_of(item)
                if not asin:
                    continue
                values.append("(?, ?, ?, ?, ?, ?, ?)")
                params.extend(
                    (
                        report_type,
                        asin,
                        report_date_for(item, today),
                        json.dumps(item),
                        date_field(item, "startDate"),
                        date_field(item, "endDate"),
                        request_date,
                    )
                )

            if values:
                self.ctx.db.execute(
                    "INSERT INTO vendor_reports (report_type, asin, report_date, data, "
                    "data_start_date, data_end_date, report_request_date) VALUES "
                    + ", ".join(values),
                    params,
                )
                self.ctx.db.commit()
                saved_count += len(values)
            del values, params

        return saved_count
