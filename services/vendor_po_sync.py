import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from services.spapi_reports import raise_for_api_error
from services.sync_context import SyncContext
from services.vendor_po_store import upsert_purchase_order, utc_stamp

LOGGER = logging.getLogger(__name__)
PO_LIST_PATH = "/vendor/orders/v1/purchaseOrders"
PAGE_LIMIT = 100
MAX_PAGES = 50
API_TIMEOUT = 30


def _extract_orders(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    inner = payload.get("payload")
    if isinstance(inner, dict):
        orders = inner.get("orders")
        if isinstance(orders, list):
            return orders
    return []


def _extract_next_token(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    inner = payload.get("payload")
    if not isinstance(inner, dict):
        return None
    pagination = inner.get("pagination")
    if isinstance(pagination, dict):
        token = pagination.get("nextToken")
        if token:
            return str(token)
    return None


class OrderSyncClient:
    def __init__(
        self,
        ctx: SyncContext,
        max_pages: int = MAX_PAGES,
        page_limit: int = PAGE_LIMIT,
        page_delay_seconds: float = 0,
    ):
        self.ctx = ctx
        self.max_pages = max_pages
        self.page_limit = page_limit
        self.page_delay_seconds = page_delay_seconds

    def resolve_created_after(self, days_back: Optional[int], created_after: Optional[datetime]) -> datetime:
        if created_after is None:
            if days_back is None:
                raise ValueError("Either days_back or created_after is required")
            created_after = self.ctx.now() - timedelta(days=days_back)
        elif created_after.tzinfo is None:
            created_after = created_after.replace(tzinfo=timezone.utc)
        return created_after.astimezone(timezone.utc).replace(microsecond=0)

    def fetch_orders(
        self,
        access_token: str,
        days_back: Optional[int] = None,
        created_after: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        created_after = self.resolve_created_after(days_back, created_after)
        base_params = {
            "limit": self.page_limit,
            "createdAfter": created_after.isoformat().replace("+00:00", "Z"),
        }
        headers = {
            "x-amz-access-token": access_token,
            "content-type": "application/json",
            "accept": "application/json",
        }
        url = f"{self.ctx.spapi_host}{PO_LIST_PATH}"

        all_orders: List[Dict[str, Any]] = []
        next_token: Optional[str] = None
        page = 0
        while True:
            call_params = dict(base_params)
            if next_token:
                call_params["nextToken"] = next_token

            resp = self.ctx.retry.call(
                lambda: self.ctx.session.get(url, params=call_params, headers=headers, timeout=API_TIMEOUT),
                label=f"purchaseOrders page {page + 1}",
            )
            raise_for_api_error(resp, "PO fetch")
            data = resp.json()

            orders = _extract_orders(data)
            all_orders.extend(orders)
            next_token = _extract_next_token(data)
            page += 1
            LOGGER.info(
                "[PurchaseOrders] Page %s: %s orders (total: %s) nextToken_present=%s",
                page,
                len(orders),
                len(all_orders),
                bool(next_token),
            )
            if not next_token:
                break
            if page >= self.max_pages:
                LOGGER.warning("[PurchaseOrders] Pagination stopped after %s pages", page)
                break
            if self.page_delay_seconds > 0:
                self.ctx.sleep(self.page_delay_seconds)

        return {"orders": all_orders, "pages": page, "created_after": base_params["createdAfter"]}

    def save_orders(self, orders: List[Dict[str, Any]]) -> Dict[str, int]:
        synced_at = utc_stamp(self.ctx.now())
        saved_count = 0
        failed_count = 0
        for order in orders:
            try:
                upsert_purchase_order(self.ctx.db, order, synced_at=synced_at)
                saved_count += 1
            except Exception as exc:
                failed_count += 1
                LOGGER.error(
                    "[PurchaseOrders] Error saving %s: %s",
                    order.get("purchaseOrderNumber") if isinstance(order, dict) else order,
                    exc,
                )
        return {"saved_count": saved_count, "failed_count": failed_count}

    def sync_orders(
        self,
        access_token: str,
        days_back: Optional[int] = None,
        created_after: Optional[datetime] = None,
    ) -> Dict[str, int]:
        fetched = self.fetch_orders(access_token, days_back, created_after)
        all_orders = fetched["orders"]
        counts = self.save_orders(all_orders)
        LOGGER.info(
            "[PurchaseOrders] Synced %s of %s orders (%s failed)",
            counts["saved_count"],
            len(all_orders),
            counts["failed_count"],
        )
        return {
            "total_fetched": len(all_orders),
            "saved_count": counts["saved_count"],
            "pages_fetched": fetched["pages"],
            "failed_count": counts["failed_count"],
        }
