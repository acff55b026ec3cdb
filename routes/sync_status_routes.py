from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI
from pydantic import BaseModel, Field

from services import db as db_service
from services.data_coverage import get_data_coverage
from services.sync_orchestrator import SYNC_MODES
from services.sync_status_store import load_last_run

router = APIRouter(prefix="/api/sync")


class ReportCoverage(BaseModel):
    report_type: str
    record_count: int = 0
    asin_count: int = 0
    report_date_count: int = 0
    earliest: Optional[str] = None
    latest: Optional[str] = None


class PurchaseOrderCoverage(BaseModel):
    po_count: int = 0
    asin_count: int = 0
    total_ordered: int = 0
    earliest: Optional[str] = None
    latest: Optional[str] = None


class CoverageResponse(BaseModel):
    ok: bool = True
    vendor_reports: List[ReportCoverage] = Field(default_factory=list)
    purchase_orders: PurchaseOrderCoverage = Field(default_factory=PurchaseOrderCoverage)


class SyncStatusResponse(BaseModel):
    ok: bool = True
    has_run: bool = False
    modes: List[str] = Field(default_factory=lambda: list(SYNC_MODES))
    last_run: Optional[Dict[str, Any]] = None


@router.get("/status", response_model=SyncStatusResponse)
def get_sync_status() -> SyncStatusResponse:
    with db_service.get_db_connection() as conn:
        db_service.ensure_sync_schema(conn)
        last_run = load_last_run(conn)
    return SyncStatusResponse(has_run=last_run is not None, last_run=last_run)


@router.get("/coverage", response_model=CoverageResponse)
def get_sync_coverage() -> CoverageResponse:
    with db_service.get_db_connection() as conn:
        db_service.ensure_sync_schema(conn)
        coverage = get_data_coverage(conn)
    return CoverageResponse(
        vendor_reports=[ReportCoverage(**row) for row in coverage["vendor_reports"]],
        purchase_orders=PurchaseOrderCoverage(
            **{k: v for k, v in coverage["purchase_orders"].items() if v is not None}
        ),
    )


def register_sync_status_routes(app: FastAPI) -> None:
    app.include_router(router)
