import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)
HEADER_TABLE = "purchase_orders"
LINE_TABLE = "po_line_items"
WINDOW_SEPARATOR = "--"


def parse_window(value: Any) -> Optional[Tuple[str, str]]:
    """
    Split a vendor window string "2026-01-26T08:00:00Z--2026-01-30T10:00:00Z".

    Returns None (both ends unknown) unless the value has exactly two
    non-empty parts.
    """
    if not isinstance(value, str):
        return None
    parts = value.split(WINDOW_SEPARATOR)
    if len(parts) != 2:
        return None
    start, end = (part.strip() for part in parts)
    if not start or not end:
        return None
    return start, end


def _coerce_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _coerce_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _json_or_none(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _prepare_header_row(order: Dict[str, Any], *, synced_at: str) -> Tuple[Any, ...]:
    po_number = (order.get("purchaseOrderNumber") or "").strip()
    if not po_number:
        raise ValueError("Order is missing purchaseOrderNumber")
    details = order.get("orderDetails") or {}
    items = details.get("items") or []
    ship_window = parse_window(details.get("shipWindow")) or (None, None)
    delivery_window = parse_window(details.get("deliveryWindow")) or (None, None)
    return (
        po_number,
        details.get("purchaseOrderDate") or None,
        order.get("purchaseOrderState"),
        ship_window[0],
        ship_window[1],
        delivery_window[0],
        delivery_window[1],
        _json_or_none(details.get("buyingParty")),
        _json_or_none(details.get("sellingParty")),
        _json_or_none(details.get("shipToParty")),
        _json_or_none(details.get("billToParty")),
        json.dumps(items),
        json.dumps(order),
        synced_at,
    )


def _prepare_line_row(po_number: str, item: Dict[str, Any]) -> Optional[Tuple[Any, ...]]:
    asin = item.get("amazonProductIdentifier")
    if not asin:
        return None
    ordered = item.get("orderedQuantity") or {}
    acknowledged = item.get("acknowledgedQuantity") or {}
    net_cost = item.get("netCost") or {}
    return (
        po_number,
        asin,
        item.get("vendorProductIdentifier") or None,
        _coerce_int(ordered.get("amount")),
        _coerce_int(acknowledged.get("amount")),
        _coerce_float(net_cost.get("amount")),
        net_cost.get("currencyCode") or None,
    )


UPSERT_HEADER_SQL = f"""
    INSERT INTO {HEADER_TABLE} (
        po_number, po_date, po_state,
        ship_window_start, ship_window_end,
        delivery_window_start, delivery_window_end,
        buying_party, selling_party, ship_to_party, bill_to_party,
        items, raw_data, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(po_number) DO UPDATE SET
        po_state = excluded.po_state,
        po_date = COALESCE(excluded.po_date, {HEADER_TABLE}.po_date),
        ship_window_start = excluded.ship_window_start,
        ship_window_end = excluded.ship_window_end,
        delivery_window_start = excluded.delivery_window_start,
        delivery_window_end = excluded.delivery_window_end,
        buying_party = excluded.buying_party,
        selling_party = excluded.selling_party,
        ship_to_party = excluded.ship_to_party,
        bill_to_party = excluded.bill_to_party,
        items = excluded.items,
        raw_data = excluded.raw_data,
        updated_at = excluded.updated_at
"""

UPSERT_LINE_SQL = f"""
    INSERT INTO {LINE_TABLE} (
        po_number, asin, vendor_sku, ordered_quantity,
        acknowledged_quantity, net_cost_amount, net_cost_currency
    ) VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(po_number, asin) DO UPDATE SET
        vendor_sku = excluded.vendor_sku,
        ordered_quantity = excluded.ordered_quantity,
        acknowledged_quantity = excluded.acknowledged_quantity,
        net_cost_amount = excluded.net_cost_amount,
        net_cost_currency = excluded.net_cost_currency
"""


def upsert_line_items(conn: sqlite3.Connection, po_number: str, items: List[Dict[str, Any]]) -> int:
    rows = [row for row in (_prepare_line_row(po_number, item) for item in items if isinstance(item, dict)) if row]
    if rows:
        conn.executemany(UPSERT_LINE_SQL, rows)
    return len(rows)


def upsert_purchase_order(conn: sqlite3.Connection, order: Dict[str, Any], *, synced_at: str) -> int:
    """
    Upsert one purchase order and its ASIN line items in a single commit.
    Returns the number of line items written. Rolls back and re-raises on failure.
    """
    try:
        header = _prepare_header_row(order, synced_at=synced_at)
        conn.execute(UPSERT_HEADER_SQL, header)
        items = (order.get("orderDetails") or {}).get("items") or []
        line_count = upsert_line_items(conn, header[0], items)
        conn.commit()
        return line_count
    except Exception:
        conn.rollback()
        raise


def get_purchase_order(conn: sqlite3.Connection, po_number: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(f"SELECT * FROM {HEADER_TABLE} WHERE po_number = ?", (po_number,)).fetchone()
    return dict(row) if row else None


def get_po_line_items(conn: sqlite3.Connection, po_number: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        f"SELECT * FROM {LINE_TABLE} WHERE po_number = ? ORDER BY asin",
        (po_number,),
    ).fetchall()
    return [dict(r) for r in rows]


def count_purchase_orders(conn: sqlite3.Connection) -> int:
    row = conn.execute(f"SELECT COUNT(*) AS c FROM {HEADER_TABLE}").fetchone()
    return int(row["c"] if row else 0)


def _stored_items(row: sqlite3.Row) -> List[Dict[str, Any]]:
    items: Any = []
    if row["items"]:
        try:
            items = json.loads(row["items"])
        except ValueError:
            LOGGER.warning("[VendorPOStore] Could not parse items for %s", row["po_number"])
            items = []
    if not items and row["raw_data"]:
        try:
            raw = json.loads(row["raw_data"])
        except ValueError:
            raw = {}
        details = raw.get("orderDetails") if isinstance(raw, dict) else None
        if isinstance(details, dict):
            items = details.get("items") or []
        elif isinstance(raw, dict):
            items = raw.get("items") or []
    return items if isinstance(items, list) else []


def backfill_po_line_items(conn: sqlite3.Connection) -> Dict[str, int]:
    """
    Rebuild po_line_items from the items stored on purchase_orders.
    Safe to re-run; existing line items are updated in place.
    """
    stats = {"orders_processed": 0, "orders_skipped": 0, "inserted": 0, "updated": 0, "failed": 0}
    rows = conn.execute(
        f"SELECT po_number, items, raw_data FROM {HEADER_TABLE} WHERE items IS NOT NULL OR raw_data IS NOT NULL"
    ).fetchall()

    for row in rows:
        stats["orders_processed"] += 1
        items = _stored_items(row)
        if not items:
            stats["orders_skipped"] += 1
            continue
        for item in items:
            line = _prepare_line_row(row["po_number"], item) if isinstance(item, dict) else None
            if line is None:
                continue
            try:
                exists = conn.execute(
                    f"SELECT 1 FROM {LINE_TABLE} WHERE po_number = ? AND asin = ?",
                    (line[0], line[1]),
                ).fetchone()
                conn.execute(UPSERT_LINE_SQL, line)
            except sqlite3.Error as exc:
                stats["failed"] += 1
                LOGGER.warning(
                    "[VendorPOStore] Error backfilling %s for %s: %s", line[1], line[0], exc
                )
                continue
            stats["updated" if exists else "inserted"] += 1
        conn.commit()

    LOGGER.info("[VendorPOStore] Line item backfill complete: %s", stats)
    return stats


def utc_stamp(now: datetime) -> str:
    return now.replace(microsecond=0).isoformat()
