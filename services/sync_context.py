import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import requests

import config
from services.db import ensure_sync_schema, open_db_connection
from services.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncContext:
    """
    Resources shared by every sync component for one process run.

    One SQLite connection, one HTTP session, the retry policy and the clock
    live here instead of in module globals; components receive the context at
    construction time.
    """

    def __init__(
        self,
        db: sqlite3.Connection,
        session: requests.Session,
        *,
        spapi_host: str = config.SPAPI_HOST,
        marketplace_ids: Optional[List[str]] = None,
        lwa_client_id: str = config.LWA_CLIENT_ID,
        lwa_client_secret: str = config.LWA_CLIENT_SECRET,
        token_url: str = config.LWA_TOKEN_URL,
        retry: Optional[RetryPolicy] = None,
        now: Callable[[], datetime] = _utc_now,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.session = session
        self.spapi_host = spapi_host.rstrip("/")
        self.marketplace_ids = list(marketplace_ids or config.MARKETPLACE_IDS)
        self.lwa_client_id = lwa_client_id
        self.lwa_client_secret = lwa_client_secret
        self.token_url = token_url
        self.retry = retry or RetryPolicy(sleep=sleep)
        self.now = now
        self.monotonic = monotonic
        self.sleep = sleep

    def close(self) -> None:
        try:
            self.session.close()
        except Exception as exc:
            LOGGER.warning("[SyncContext] Error closing HTTP session: %s", exc)
        try:
            self.db.close()
        except Exception as exc:
            LOGGER.warning("[SyncContext] Error closing DB connection: %s", exc)


@contextmanager
def open_sync_context(db_path: Optional[Path] = None, **kwargs):
    """Open the DB and HTTP session, ensure the schema, and always release both."""
    conn = None
    session = kwargs.pop("session", None)
    ctx = None
    try:
        conn = open_db_connection(db_path)
        session = session or requests.Session()
        ctx = SyncContext(conn, session, **kwargs)
        ensure_sync_schema(conn)
        yield ctx
    finally:
        if ctx is not None:
            ctx.close()
        else:
            # Context construction failed; release whatever was acquired.
            if session is not None:
                session.close()
            if conn is not None:
                conn.close()
