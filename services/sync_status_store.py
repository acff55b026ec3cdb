import json
import logging
from typing import Any, Dict, Optional

from services.db import get_app_kv, set_app_kv

LOGGER = logging.getLogger(__name__)
STATUS_KEY = "vendor_sync_last_run"


def save_last_run(conn, results: Dict[str, Any]) -> None:
    set_app_kv(conn, STATUS_KEY, json.dumps(results, default=str))


def load_last_run(conn) -> Optional[Dict[str, Any]]:
    raw = get_app_kv(conn, STATUS_KEY)
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        LOGGER.warning("[SyncStatus] Failed to parse stored run status; ignoring")
        return None
    return payload if isinstance(payload, dict) else None
