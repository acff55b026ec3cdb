import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from config import DB_PATH

logger = logging.getLogger(__name__)

# ====================================================================
# SQLITE HARDENING: WAL MODE + TIMEOUT
# - WAL mode allows the status API to read while a sync run writes
# - 10s timeout prevents infinite hangs on database locks
# - Context managers ensure cleanup even on exceptions
# ====================================================================

_db_timeout = 10  # seconds

SYNC_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS oauth_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        refresh_token TEXT NOT NULL,
        access_token TEXT,
        expires_at TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vendor_reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        report_type TEXT NOT NULL,
        asin TEXT NOT NULL,
        report_date TEXT NOT NULL,
        data TEXT,
        data_start_date TEXT,
        data_end_date TEXT,
        report_request_date TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS purchase_orders (
        po_number TEXT PRIMARY KEY,
        po_date TEXT,
        po_state TEXT,
        ship_window_start TEXT,
        ship_window_end TEXT,
        delivery_window_start TEXT,
        delivery_window_end TEXT,
        buying_party TEXT,
        selling_party TEXT,
        ship_to_party TEXT,
        bill_to_party TEXT,
        items TEXT,
        raw_data TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS po_line_items (
        po_number TEXT NOT NULL,
        asin TEXT NOT NULL,
        vendor_sku TEXT,
        ordered_quantity INTEGER,
        acknowledged_quantity INTEGER,
        net_cost_amount REAL,
        net_cost_currency TEXT,
        PRIMARY KEY (po_number, asin)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_kv_store (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_vendor_reports_type_date ON vendor_reports(report_type, report_date)",
    "CREATE INDEX IF NOT EXISTS idx_vendor_reports_asin_type_date ON vendor_reports(asin, report_type, report_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_purchase_orders_po_date_desc ON purchase_orders(po_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_po_line_items_asin ON po_line_items(asin)",
    "CREATE INDEX IF NOT EXISTS idx_oauth_tokens_created_at ON oauth_tokens(created_at DESC)",
)


def open_db_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open a hardened SQLite connection (WAL, timeout, row_factory). Caller closes it."""
    resolved = Path(db_path or DB_PATH)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(resolved, timeout=_db_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_db_connection_for_path(db_path: Path):
    """Scoped connection for the given path; always closed on exit."""
    conn = None
    try:
        conn = open_db_connection(db_path)
        yield conn
    except sqlite3.DatabaseError as e:
        logger.error(f"[DB] Database error: {e}", exc_info=True)
        raise
    finally:
        if conn:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"[DB] Error closing connection: {e}")


@contextmanager
def get_db_connection():
    """Scoped connection for the configured sync database."""
    with get_db_connection_for_path(DB_PATH) as conn:
        yield conn


def ensure_sync_schema(conn: sqlite3.Connection) -> None:
    """
    Create the sync tables and indexes if they do not exist.
    Safe to call repeatedly.
    """
    try:
        for statement in SYNC_SCHEMA:
            conn.execute(statement)
        conn.commit()
        logger.debug("[DB] sync schema ensured")
    except Exception as exc:
        logger.error(f"[DB] Failed to ensure sync schema: {exc}", exc_info=True)
        raise


def get_app_kv(conn, key: str) -> Optional[str]:
    """
    Get a value from app_kv_store by key.

    Returns:
        The value as a string, or None if key not found
    """
    try:
        row = conn.execute("SELECT value FROM app_kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None
    except Exception as exc:
        logger.error(f"[DB] Failed to get_app_kv for key '{key}': {exc}")
        raise


def set_app_kv(conn, key: str, value: str) -> None:
    """Set a value in app_kv_store by key (insert or update)."""
    try:
        conn.execute(
            """
            INSERT INTO app_kv_store (key, value)
            VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        conn.commit()
    except Exception as exc:
        logger.error(f"[DB] Failed to set_app_kv for key '{key}': {exc}")
        raise
