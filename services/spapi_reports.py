import gzip
import json
import logging
from datetime import datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from services.sync_context import SyncContext
from services.sync_errors import (
    ApiResponseError,
    CreateReportError,
    InvalidReportStatus,
    JobFailure,
    JobTimeout,
    SpApiQuotaError,
)

logger = logging.getLogger("spapi_reports")

REPORTS_PATH = "/reports/2021-06-30"
POLL_INTERVAL_SECONDS = 3
DEFAULT_MAX_WAIT_MS = 120_000
ERROR_DOCUMENT_MAX_CHARS = 2000
DATA_AVAILABILITY_LAG_DAYS = 3
WEEKLY_LOOKBACK_DAYS = 30
API_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60

# requires_options lists which reportOptions each weekly report type accepts.
VENDOR_REPORT_TYPES: Dict[str, Dict[str, Any]] = {
    "GET_VENDOR_REAL_TIME_INVENTORY_REPORT": {
        "name": "Real-Time Inventory",
        "is_real_time": True,
        "max_span_days": 7,
    },
    "GET_VENDOR_REAL_TIME_SALES_REPORT": {
        "name": "Real-Time Sales",
        "is_real_time": True,
        "max_span_days": 14,
    },
    "GET_VENDOR_SALES_REPORT": {
        "name": "Sales Report",
        "is_real_time": False,
        "requires_options": ("reportPeriod", "distributorView", "sellingProgram"),
    },
    "GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT": {
        "name": "Net Pure Product Margin",
        "is_real_time": False,
        "requires_options": ("reportPeriod",),
    },
    "GET_VENDOR_TRAFFIC_REPORT": {
        "name": "Traffic Report",
        "is_real_time": False,
        "requires_options": ("reportPeriod",),
    },
    "GET_VENDOR_INVENTORY_REPORT": {
        "name": "Inventory Report",
        "is_real_time": False,
        "requires_options": ("reportPeriod", "distributorView", "sellingProgram"),
    },
}

WEEKLY_REPORT_OPTIONS = {
    "reportPeriod": "WEEK",
    "distributorView": "MANUFACTURING",
    "sellingProgram": "RETAIL",
}


class ReportStatus(str, Enum):
    CREATED = "CREATED"
    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FATAL = "FATAL"
    CANCELLED = "CANCELLED"
    DOWNLOADED = "DOWNLOADED"


_REMOTE_OUTCOMES = {
    ReportStatus.IN_QUEUE,
    ReportStatus.IN_PROGRESS,
    ReportStatus.DONE,
    ReportStatus.FATAL,
    ReportStatus.CANCELLED,
}

REPORT_STATUS_TRANSITIONS = {
    ReportStatus.CREATED: _REMOTE_OUTCOMES,
    ReportStatus.IN_QUEUE: _REMOTE_OUTCOMES,
    ReportStatus.IN_PROGRESS: _REMOTE_OUTCOMES - {ReportStatus.IN_QUEUE},
    ReportStatus.DONE: {ReportStatus.DOWNLOADED},
    ReportStatus.FATAL: set(),
    ReportStatus.CANCELLED: set(),
    ReportStatus.DOWNLOADED: set(),
}

TERMINAL_STATUSES = {ReportStatus.DOWNLOADED, ReportStatus.FATAL, ReportStatus.CANCELLED}


def parse_report_status(value: Any) -> ReportStatus:
    try:
        status = ReportStatus(value)
    except ValueError:
        raise InvalidReportStatus(f"Unrecognized report processingStatus: {value!r}") from None
    if status not in _REMOTE_OUTCOMES:
        raise InvalidReportStatus(f"processingStatus {value!r} is not reported by getReport")
    return status


class ReportJob:
    """Transient state of one createReport job; discarded after ingestion."""

    def __init__(self, report_type: str, report_id: str):
        self.report_type = report_type
        self.report_id = report_id
        self.status = ReportStatus.CREATED
        self.report_document_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, new_status: ReportStatus) -> None:
        if new_status not in REPORT_STATUS_TRANSITIONS[self.status]:
            raise InvalidReportStatus(
                f"Report {self.report_id}: illegal transition {self.status.value} -> {new_status.value}"
            )
        if new_status != self.status:
            logger.info(
                "[spapi_reports] report %s status %s -> %s",
                self.report_id,
                self.status.value,
                new_status.value,
            )
        self.status = new_status


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso_z(dt: datetime) -> str:
    return _as_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def compute_week_window(
    now: datetime, days_back: int = WEEKLY_LOOKBACK_DAYS
) -> Tuple[datetime, datetime]:
    """
    Sunday 00:00:00Z .. Saturday 23:59:59Z window for weekly vendor reports.

    The end is the latest Saturday that closes at least DATA_AVAILABILITY_LAG_DAYS
    before ``now``; the start is the Sunday on or before ``end - days_back``.
    """
    lag_point = _as_utc(now) - timedelta(days=DATA_AVAILABILITY_LAG_DAYS)
    end_day = lag_point.date()
    if datetime.combine(end_day, dt_time(23, 59, 59), tzinfo=timezone.utc) > lag_point:
        end_day -= timedelta(days=1)
    # Python weekday(): Monday=0 .. Saturday=5, Sunday=6
    while end_day.weekday() != 5:
        end_day -= timedelta(days=1)

    start_day = end_day - timedelta(days=days_back)
    while start_day.weekday() != 6:
        start_day -= timedelta(days=1)

    return (
        datetime.combine(start_day, dt_time(0, 0, 0), tzinfo=timezone.utc),
        datetime.combine(end_day, dt_time(23, 59, 59), tzinfo=timezone.utc),
    )


def _response_body(resp: Any) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text[:500]


def raise_for_api_error(resp: Any, label: str) -> None:
    if 200 <= resp.status_code < 300:
        return
    body = _response_body(resp)
    if resp.status_code == 429:
        logger.error("[spapi_reports] %s failed 429 QuotaExceeded: %s", label, body)
        raise SpApiQuotaError(f"QuotaExceeded during {label}: {body}", resp.status_code, body)
    logger.error("[spapi_reports] %s failed %s: %s", label, resp.status_code, body)
    raise ApiResponseError(f"{label} failed {resp.status_code}: {body}", resp.status_code, body)


class ReportJobClient:
    def __init__(self, ctx: SyncContext):
        self.ctx = ctx

    def _url(self, suffix: str) -> str:
        return f"{self.ctx.spapi_host}{REPORTS_PATH}{suffix}"

    @staticmethod
    def _headers(access_token: str) -> Dict[str, str]:
        return {
            "x-amz-access-token": access_token,
            "content-type": "application/json",
            "accept": "application/json",
        }

    def build_report_body(
        self,
        report_type: str,
        requested_start: datetime,
        requested_end: datetime,
        exact_window: bool = False,
    ) -> Dict[str, Any]:
        report_config = VENDOR_REPORT_TYPES.get(report_type)
        if report_config is None:
            raise ValueError(f"Unsupported report type: {report_type}")

        body: Dict[str, Any] = {
            "reportType": report_type,
            "marketplaceIds": list(self.ctx.marketplace_ids),
        }

        if report_config["is_real_time"]:
            start = _as_utc(requested_start)
            end = _as_utc(requested_end)
            max_span = timedelta(days=report_config["max_span_days"])
            if end - start > max_span:
                logger.info(
                    "[%s] Capping requested span %s to %s days",
                    report_type,
                    end - start,
                    report_config["max_span_days"],
                )
                start = end - max_span
            body["dataStartTime"] = _iso_z(start)
            body["dataEndTime"] = _iso_z(end)
            return body

        # Weekly reports: Amazon only accepts Sunday-Saturday windows with a
        # data-availability lag, so the requested range is replaced unless the
        # caller (historical backfill) already passes one aligned week.
        if exact_window:
            week_start, week_end = _as_utc(requested_start), _as_utc(requested_end)
            if week_start.weekday() != 6 or week_end.weekday() != 5 or week_end <= week_start:
                raise ValueError(
                    f"Weekly window must run Sunday to Saturday: {_iso_z(week_start)} to {_iso_z(week_end)}"
                )
        else:
            week_start, week_end = compute_week_window(self.ctx.now())
        body["dataStartTime"] = _iso_z(week_start)
        body["dataEndTime"] = _iso_z(week_end)
        logger.info(
            "[%s] Aligned to week boundaries: %s to %s (requested %s to %s)",
            report_type,
            body["dataStartTime"],
            body["dataEndTime"],
            _iso_z(requested_start),
            _iso_z(requested_end),
        )

        accepted = report_config.get("requires_options") or ()
        body["reportOptions"] = {
            key: value for key, value in WEEKLY_REPORT_OPTIONS.items() if key in accepted
        }
        logger.info("[%s] Report options: %s", report_type, json.dumps(body["reportOptions"]))
        return body

    def create_report(
        self,
        access_token: str,
        report_type: str,
        requested_start: datetime,
        requested_end: datetime,
        exact_window: bool = False,
    ) -> str:
        body = self.build_report_body(report_type, requested_start, requested_end, exact_window)
        logger.info("[spapi_reports] Final createReport payload: %s", body)

        resp = self.ctx.retry.call(
            lambda: self.ctx.session.post(
                self._url("/reports"),
                json=body,
                headers=self._headers(access_token),
                timeout=API_TIMEOUT,
            ),
            label=f"createReport {report_type}",
        )

        content_type = resp.headers.get("content-type") or ""
        if "application/json" not in content_type:
            raise CreateReportError(
                f"Non-JSON response ({resp.status_code}): {resp.text[:200]}",
                resp.status_code,
                resp.text[:200],
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise CreateReportError(
                f"Unparseable JSON response ({resp.status_code}): {resp.text[:200]}",
                resp.status_code,
            ) from exc

        if not 200 <= resp.status_code < 300:
            logger.error("[spapi_reports] createReport failed %s: %s", resp.status_code, data)
            raise CreateReportError(f"Create report failed: {json.dumps(data)}", resp.status_code, data)

        report_id = data.get("reportId") if isinstance(data, dict) else None
        if not report_id:
            raise CreateReportError(f"createReport response missing reportId: {data}", resp.status_code, data)
        logger.info("[spapi_reports] Created report %s reportId=%s", report_type, report_id)
        return str(report_id)

    def get_report(self, access_token: str, report_id: str) -> Dict[str, Any]:
        resp = self.ctx.retry.call(
            lambda: self.ctx.session.get(
                self._url(f"/reports/{report_id}"),
                headers=self._headers(access_token),
                timeout=API_TIMEOUT,
            ),
            label=f"getReport {report_id}",
        )
        raise_for_api_error(resp, f"getReport {report_id}")
        return resp.json()

    def wait_for_report(
        self,
        access_token: str,
        report_id: str,
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        job: Optional[ReportJob] = None,
    ) -> str:
        job = job or ReportJob(report_type="UNKNOWN", report_id=report_id)
        started = self.ctx.monotonic()
        deadline = started + max_wait_ms / 1000.0

        while self.ctx.monotonic() < deadline:
            data = self.get_report(access_token, report_id)
            status = parse_report_status(data.get("processingStatus"))
            job.advance(status)

            if status == ReportStatus.DONE:
                document_id = data.get("reportDocumentId")
                if not document_id:
                    raise InvalidReportStatus(f"Report {report_id} is DONE without a reportDocumentId")
                job.report_document_id = document_id
                return document_id

            if status in (ReportStatus.FATAL, ReportStatus.CANCELLED):
                logger.error("[Report %s] Full response: %s", status.value, json.dumps(data))
                error_text = None
                document_id = data.get("reportDocumentId")
                if document_id:
                    logger.info("[Report %s] Downloading error document...", status.value)
                    error_text = self._download_error_document(access_token, document_id)
                    if error_text is not None:
                        logger.error("[Report %s] Error document content: %s", status.value, error_text)
                raise JobFailure(report_id, status.value, error_text, data.get("errors"))

            self.ctx.sleep(POLL_INTERVAL_SECONDS)

        raise JobTimeout(report_id, max_wait_ms, job.status.value)

    def _download_error_document(self, access_token: str, document_id: str) -> Optional[str]:
        try:
            content = self.download_and_decode(access_token, document_id)
        except Exception as exc:
            logger.warning("[spapi_reports] Failed to download error document %s: %s", document_id, exc)
            return None
        return content[:ERROR_DOCUMENT_MAX_CHARS]

    def download_and_decode(self, access_token: str, report_document_id: str) -> str:
        """
        Download a report document and return its text.

        NOTE: document URLs expire; they are fetched fresh for every download
        and never cached.
        """
        meta_resp = self.ctx.retry.call(
            lambda: self.ctx.session.get(
                self._url(f"/documents/{report_document_id}"),
                headers=self._headers(access_token),
                timeout=API_TIMEOUT,
            ),
            label=f"getReportDocument {report_document_id}",
        )
        raise_for_api_error(meta_resp, f"getReportDocument {report_document_id}")
        meta = meta_resp.json()
        download_url = meta.get("url")
        compression = (meta.get("compressionAlgorithm") or "").upper()
        if not download_url:
            raise ApiResponseError(f"Missing download URL for document {report_document_id}: {meta}")

        doc_resp = self.ctx.retry.call(
            lambda: self.ctx.session.get(download_url, timeout=DOWNLOAD_TIMEOUT),
            label=f"download document {report_document_id}",
        )
        raise_for_api_error(doc_resp, f"download document {report_document_id}")
        content = doc_resp.content
        logger.info(
            "[spapi_reports] document %s raw size=%s bytes compression=%s",
            report_document_id,
            len(content),
            compression or "NONE",
        )

        if compression == "GZIP":
            content = gzip.decompress(content)
        return content.decode("utf-8-sig")

    def run_report(
        self,
        access_token: str,
        report_type: str,
        requested_start: datetime,
        requested_end: datetime,
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        exact_window: bool = False,
    ) -> str:
        report_name = VENDOR_REPORT_TYPES.get(report_type, {}).get("name", report_type)
        report_id = self.create_report(access_token, report_type, requested_start, requested_end, exact_window)
        logger.info("[%s] Report created: %s", report_name, report_id)

        job = ReportJob(report_type, report_id)
        document_id = self.wait_for_report(access_token, report_id, max_wait_ms=max_wait_ms, job=job)
        logger.info("[%s] Report ready: %s", report_name, document_id)

        content = self.download_and_decode(access_token, document_id)
        job.advance(ReportStatus.DOWNLOADED)
        return content
