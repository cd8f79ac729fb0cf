"""Cross-count inventory accuracy reports."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from cyclecount.core.rate_limit import limiter
from cyclecount.core.rbac import Capabilities, RequireManager
from cyclecount.db.session import DbSession
from cyclecount.services.cycle_count_report_service import CycleCountReportService

router = APIRouter()


@router.get("/accuracy")
@limiter.limit("30/minute")
def get_inventory_accuracy(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    capabilities: Capabilities,
    warehouse_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
):
    """Accuracy of completed counts over time."""
    service = CycleCountReportService(db, capabilities=capabilities)
    return service.get_inventory_accuracy(warehouse_id=warehouse_id, start=start, end=end)


@router.get("/variance-analysis")
@limiter.limit("30/minute")
def get_variance_analysis(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    capabilities: Capabilities,
    warehouse_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(10, ge=1, le=100),
):
    """Items and categories with the most frequent or costly variances."""
    service = CycleCountReportService(db, capabilities=capabilities)
    return service.get_variance_analysis(
        warehouse_id=warehouse_id, start=start, end=end, limit=limit
    )
