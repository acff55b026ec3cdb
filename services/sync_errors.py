from typing import Any, Optional


class SyncError(RuntimeError):
    """Base class for failures raised by the vendor sync pipeline."""
    pass


class AuthError(SyncError):
    """Missing LWA credentials, a failed token exchange, or no stored token."""
    pass


class TransportError(SyncError):
    """Network-level failure that survived every retry attempt."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ApiResponseError(SyncError):
    """SP-API answered with an application error (non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SpApiQuotaError(ApiResponseError):
    """Raised when SP-API returns a QuotaExceeded / 429."""
    pass


class CreateReportError(ApiResponseError):
    """createReport returned a non-JSON or non-2xx response."""
    pass


class InvalidReportStatus(SyncError):
    """getReport returned a status outside the known state machine."""
    pass


class JobFailure(SyncError):
    """A report job finished FATAL or CANCELLED."""

    def __init__(self, report_id: str, status: str, error_text: Optional[str] = None, errors: Any = None):
        detail = f"Report {report_id} ended {status}"
        if errors:
            detail += f": {errors}"
        super().__init__(detail)
        self.report_id = report_id
        self.status = status
        self.error_text = error_text
        self.errors = errors


class JobTimeout(SyncError):
    """A report job did not reach a terminal status within the wait budget."""

    def __init__(self, report_id: str, max_wait_ms: int, last_status: Optional[str] = None):
        super().__init__(
            f"Report {report_id} timed out after {max_wait_ms}ms (last status={last_status})"
        )
        self.report_id = report_id
        self.max_wait_ms = max_wait_ms
        self.last_status = last_status
