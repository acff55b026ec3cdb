"""
Scheduled vendor sync: real-time reports, weekly reports and purchase orders.

Modes (selected by the external scheduler):
    all       RT reports, weekly reports, then purchase orders
    reports   weekly vendor reports only
    po        purchase orders only
    rt        both real-time reports
    rt-inv    real-time inventory only (lowest memory)
    rt-sales  real-time sales only

Operations run strictly one at a time; the process has a ~512MB ceiling, so
memory is reclaimed between heavy steps instead of overlapping them.
"""

import gc
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from auth.token_manager import TokenManager
from services.perf import get_recent_timings, log_memory, time_block
from services.report_ingest import ReportIngester
from services.spapi_reports import VENDOR_REPORT_TYPES, ReportJobClient
from services.sync_context import SyncContext
from services.sync_errors import SyncError
from services.sync_status_store import save_last_run
from services.vendor_po_sync import OrderSyncClient

LOGGER = logging.getLogger(__name__)

PO_DAYS_BACK = 30

# (result key, report type, days back)
RT_REPORT_STEPS: Dict[str, Tuple[str, str, int]] = {
    "rt-inv": ("RT_INVENTORY", "GET_VENDOR_REAL_TIME_INVENTORY_REPORT", 7),
    "rt-sales": ("RT_SALES", "GET_VENDOR_REAL_TIME_SALES_REPORT", 14),
}
WEEKLY_REPORT_STEPS: List[Tuple[str, str, int]] = [
    ("SALES", "GET_VENDOR_SALES_REPORT", 30),
    ("MARGIN", "GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT", 30),
    ("TRAFFIC", "GET_VENDOR_TRAFFIC_REPORT", 30),
    ("INVENTORY", "GET_VENDOR_INVENTORY_REPORT", 30),
]

SYNC_MODES = ("all", "reports", "po", "rt", "rt-inv", "rt-sales")

# Failures recorded per operation; anything else escapes as fatal.
OPERATION_ERRORS = (SyncError, requests.RequestException, sqlite3.Error, OSError, ValueError)


def plan_for_mode(mode: str) -> Dict[str, Any]:
    if mode not in SYNC_MODES:
        raise ValueError(f"Unknown sync mode {mode!r}; expected one of {', '.join(SYNC_MODES)}")

    reports: List[Tuple[str, str, int]] = []
    if mode in ("rt-inv", "rt", "all"):
        reports.append(RT_REPORT_STEPS["rt-inv"])
    if mode in ("rt-sales", "rt", "all"):
        reports.append(RT_REPORT_STEPS["rt-sales"])
    if mode in ("reports", "all"):
        reports.extend(WEEKLY_REPORT_STEPS)
    return {"reports": reports, "purchase_orders": mode in ("po", "all")}


class SyncOrchestrator:
    def __init__(
        self,
        ctx: SyncContext,
        *,
        token_manager: Optional[TokenManager] = None,
        report_client: Optional[ReportJobClient] = None,
        ingester: Optional[ReportIngester] = None,
        order_client: Optional[OrderSyncClient] = None,
        reclaim: Callable[[], Any] = gc.collect,
    ):
        self.ctx = ctx
        self.token_manager = token_manager or TokenManager(ctx)
        self.report_client = report_client or ReportJobClient(ctx)
        self.ingester = ingester or ReportIngester(ctx)
        self.order_client = order_client or OrderSyncClient(ctx)
        self.reclaim = reclaim

    def reclaim_memory(self, label: str) -> None:
        self.reclaim()
        log_memory(f"After {label}")

    def sync_vendor_report(self, report_type: str, days_back: int) -> Dict[str, Any]:
        report_config = VENDOR_REPORT_TYPES[report_type]
        name = report_config["name"]
        LOGGER.info("[%s] Starting sync...", name)

        try:
            access_token = self.token_manager.get_valid_access_token()
            end = self.ctx.now()
            span_days = days_back
            if report_config["is_real_time"]:
                span_days = min(days_back, report_config["max_span_days"])
            start = end - timedelta(days=span_days)
            LOGGER.info("[%s] Date range: %s to %s", name, start.isoformat(), end.isoformat())

            content = self.report_client.run_report(access_token, report_type, start, end)
            saved_count = self.ingester.ingest(report_type, content)
            del content
            LOGGER.info("[%s] Saved %s items", name, saved_count)
            return {"success": True, "saved_count": saved_count}
        except OPERATION_ERRORS as exc:
            LOGGER.error("[%s] Error: %s", name, exc)
            return {"success": False, "error": str(exc), "error_type": type(exc).__name__}

    def sync_purchase_orders(self, days_back: int = PO_DAYS_BACK) -> Dict[str, Any]:
        LOGGER.info("[PurchaseOrders] Starting sync...")
        try:
            access_token = self.token_manager.get_valid_access_token()
            summary = self.order_client.sync_orders(access_token, days_back)
            return {"success": True, **summary}
        except OPERATION_ERRORS as exc:
            LOGGER.error("[PurchaseOrders] Error: %s", exc)
            return {"success": False, "error": str(exc), "error_type": type(exc).__name__}

    def run(self, mode: str = "all") -> Dict[str, Any]:
        plan = plan_for_mode(mode)
        results: Dict[str, Any] = {
            "start_time": self.ctx.now().isoformat(),
            "mode": mode,
            "reports": {},
            "purchase_orders": None,
        }
        log_memory(f"Start ({mode})")

        for key, report_type, days_back in plan["reports"]:
            with time_block(f"sync {key}"):
                results["reports"][key] = self.sync_vendor_report(report_type, days_back)
            self.reclaim_memory(key)

        if plan["purchase_orders"]:
            with time_block("sync purchase_orders"):
                results["purchase_orders"] = self.sync_purchase_orders(PO_DAYS_BACK)
            self.reclaim_memory("purchase orders")

        results["end_time"] = self.ctx.now().isoformat()
        step_count = len(plan["reports"]) + (1 if plan["purchase_orders"] else 0)
        results["timings"] = get_recent_timings()[-step_count:] if step_count else []
        results["failed_operations"] = [
            key for key, result in results["reports"].items() if not result.get("success")
        ]
        if results["purchase_orders"] is not None and not results["purchase_orders"].get("success"):
            results["failed_operations"].append("PURCHASE_ORDERS")
        results["success"] = True

        try:
            save_last_run(self.ctx.db, results)
        except sqlite3.Error as exc:
            LOGGER.warning("[SyncOrchestrator] Could not persist run status: %s", exc)
        return results
