import logging
import resource
import sys
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_recent_timings: deque[Dict[str, Any]] = deque(maxlen=20)

STATM_PATH = Path("/proc/self/statm")


def record_timing(label: str, duration_ms: float) -> None:
    _recent_timings.append({"label": label, "duration_ms": round(duration_ms, 2)})


def get_recent_timings() -> List[Dict[str, Any]]:
    return list(_recent_timings)


@contextmanager
def time_block(label: str):
    start = perf_counter()
    try:
        yield
    finally:
        duration_ms = (perf_counter() - start) * 1000.0
        record_timing(label, duration_ms)
        logger.debug(f"[perf] {label} took {duration_ms:.2f}ms")


def peak_rss_mb() -> float:
    """Peak resident set size of this process in MB (a high-water mark, never drops)."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes on Linux
    if sys.platform == "darwin":
        return peak / (1024 * 1024)
    return peak / 1024


def _page_size() -> int:
    return resource.getpagesize()


def current_rss_mb() -> Optional[float]:
    """Current resident set size from /proc/self/statm; None where procfs is missing."""
    try:
        fields = STATM_PATH.read_text().split()
        resident_pages = int(fields[1])
    except (OSError, IndexError, ValueError):
        return None
    return resident_pages * _page_size() / (1024 * 1024)


def log_memory(label: str) -> Optional[float]:
    current = current_rss_mb()
    peak = peak_rss_mb()
    if current is None:
        logger.info("[Memory] %s: peak RSS so far %.0fMB", label, peak)
    else:
        logger.info("[Memory] %s: current RSS %.0fMB, peak RSS so far %.0fMB", label, current, peak)
    return current
