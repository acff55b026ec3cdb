"""Bounded retry for SP-API HTTP calls.

Only transport failures (connection errors, timeouts, broken bodies) are
retried; any other requests error is wrapped in TransportError. A response
with any status code is handed back to the caller untouched, so application
errors surface on the first attempt.
"""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

import requests

from services.sync_errors import TransportError

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

# A body that breaks mid-read (IncompleteRead) surfaces as ChunkedEncodingError.
TRANSPORT_ERRORS: Tuple[Type[BaseException], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


def linear_backoff(attempt: int) -> float:
    """2s, 4s, 6s, ... after the 1st, 2nd, 3rd failed attempt."""
    return 2.0 * attempt


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Callable[[int], float] = linear_backoff,
        retry_on: Tuple[Type[BaseException], ...] = TRANSPORT_ERRORS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retry_on = retry_on
        self.sleep = sleep

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)

    def call(self, func: Callable[[], T], label: str = "request") -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func()
            except Exception as exc:
                if not self.is_retryable(exc):
                    if isinstance(exc, requests.exceptions.RequestException):
                        # Invalid URL, too many redirects: no point retrying.
                        LOGGER.error("[Retry] %s failed: %s", label, exc)
                        raise TransportError(f"{label} failed: {exc}", attempts=attempt) from exc
                    raise
                if attempt >= self.max_attempts:
                    LOGGER.error(
                        "[Retry] %s failed after %s attempts: %s", label, attempt, exc
                    )
                    raise TransportError(
                        f"{label} failed after {attempt} attempts: {exc}", attempts=attempt
                    ) from exc
                wait_time = self.backoff(attempt)
                LOGGER.warning(
                    "[Retry] %s attempt %s/%s failed (%s), retrying in %.0fs",
                    label,
                    attempt,
                    self.max_attempts,
                    exc,
                    wait_time,
                )
                self.sleep(wait_time)
        raise TransportError(f"{label} failed without an attempt", attempts=0)
