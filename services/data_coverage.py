import logging
from typing import Any, Dict, List

LOGGER = logging.getLogger(__name__)


def get_report_coverage(conn) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT
            report_type,
            COUNT(*) AS record_count,
            COUNT(DISTINCT asin) AS asin_count,
            COUNT(DISTINCT report_date) AS report_date_count,
            MIN(report_date) AS earliest,
            MAX(report_date) AS latest
        FROM vendor_reports
        GROUP BY report_type
        ORDER BY report_type
        """
    ).fetchall()
    return [dict(r) for r in rows]


def get_purchase_order_coverage(conn) -> Dict[str, Any]:
    row = conn.execute(
        """
        SELECT
            COUNT(DISTINCT po.po_number) AS po_count,
            COUNT(DISTINCT pli.asin) AS asin_count,
            COALESCE(SUM(pli.ordered_quantity), 0) AS total_ordered,
            MIN(po.po_date) AS earliest,
            MAX(po.po_date) AS latest
        FROM purchase_orders po
        LEFT JOIN po_line_items pli ON po.po_number = pli.po_number
        """
    ).fetchone()
    return dict(row) if row else {}


def get_data_coverage(conn) -> Dict[str, Any]:
    coverage = {
        "vendor_reports": get_report_coverage(conn),
        "purchase_orders": get_purchase_order_coverage(conn),
    }
    LOGGER.debug("[Coverage] %s report types covered", len(coverage["vendor_reports"]))
    return coverage
