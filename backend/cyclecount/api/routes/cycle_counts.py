"""Cycle count routes."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import StreamingResponse

from cyclecount.core.rate_limit import limiter
from cyclecount.core.rbac import Capabilities, CurrentUser
from cyclecount.core.responses import paginated_response
from cyclecount.db.session import DbSession
from cyclecount.models.cycle_count import CycleCountStatus, CycleCountType
from cyclecount.schemas.cycle_count import (
    BulkCountRequest,
    CancelRequest,
    CountEntry,
    CountScopeIn,
    CycleCountCreate,
    CycleCountDetailResponse,
    CycleCountItemResponse,
    CycleCountResponse,
    CycleCountUpdate,
    ProgressResponse,
    PublicationResultResponse,
    RejectRequest,
    VarianceSummaryResponse,
)
from cyclecount.services import report_export
from cyclecount.services.adjustment_publisher import PublicationResult
from cyclecount.services.cycle_count_report_service import CycleCountReportService
from cyclecount.services.cycle_count_service import CycleCountService
from cyclecount.services.variance_service import ThresholdConfig

logger = logging.getLogger("cycle_counts")

router = APIRouter()


def _thresholds(
    percent_threshold: Optional[Decimal], cost_threshold: Optional[Decimal]
) -> Optional[ThresholdConfig]:
    if percent_threshold is None and cost_threshold is None:
        return None
    return ThresholdConfig(percent_threshold=percent_threshold, cost_threshold=cost_threshold)


def _publication_response(cycle_count_id: int, result: PublicationResult) -> PublicationResultResponse:
    return PublicationResultResponse(
        cycle_count_id=cycle_count_id,
        status=CycleCountStatus.COMPLETED,
        **result.to_dict(),
    )


@router.get("")
@limiter.limit("60/minute")
def list_cycle_counts(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
    warehouse_id: Optional[int] = Query(None),
    status_filter: Optional[CycleCountStatus] = Query(None, alias="status"),
    count_type: Optional[CycleCountType] = Query(None, alias="type"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List cycle counts, newest first."""
    service = CycleCountService(db, capabilities=capabilities)
    counts, total = service.list_counts(
        warehouse_id=warehouse_id,
        status=status_filter,
        count_type=count_type,
        skip=skip,
        limit=limit,
    )
    items = [CycleCountResponse.model_validate(c) for c in counts]
    return paginated_response(items, total, skip, limit)


@router.post("", response_model=CycleCountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_cycle_count(
    request: Request,
    data: CycleCountCreate,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Create a cycle count and select its items."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.create(
        count_type=data.type,
        warehouse_id=data.warehouse_id,
        scope=data.scope.to_scope(),
        scheduled_at=data.scheduled_at,
        blind_count=data.blind_count,
        notes=data.notes,
        created_by=current_user.user_id,
    )


@router.get("/{cycle_count_id}", response_model=CycleCountDetailResponse)
@limiter.limit("60/minute")
def get_cycle_count(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
    percent_threshold: Optional[Decimal] = Query(None, ge=0),
    cost_threshold: Optional[Decimal] = Query(None, ge=0),
):
    """Cycle count with live progress and variance summary."""
    service = CycleCountService(db, capabilities=capabilities)
    result = service.get_status(cycle_count_id, _thresholds(percent_threshold, cost_threshold))
    return CycleCountDetailResponse(
        cycle_count=CycleCountResponse.model_validate(result["cycle_count"]),
        summary=VarianceSummaryResponse.model_validate(result["summary"]),
        items_flagged=result["items_flagged"],
        items=[CycleCountItemResponse.model_validate(i) for i in result["items"]],
    )


@router.patch("/{cycle_count_id}", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def update_cycle_count(
    request: Request,
    cycle_count_id: int,
    data: CycleCountUpdate,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Edit a cycle count that has not started yet."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.update(
        cycle_count_id, data.model_dump(exclude_unset=True), actor_id=current_user.user_id
    )


@router.post("/{cycle_count_id}/items/populate", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def populate_items(
    request: Request,
    cycle_count_id: int,
    scope: CountScopeIn,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Re-select the items of a cycle count that has not started yet."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.repopulate_items(cycle_count_id, scope.to_scope(), actor_id=current_user.user_id)


@router.post("/{cycle_count_id}/start", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def start_cycle_count(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Lock book quantities and open the count for entry."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.start(cycle_count_id, actor_id=current_user.user_id)


@router.post("/{cycle_count_id}/counts", response_model=CycleCountItemResponse)
@limiter.limit("120/minute")
def record_count(
    request: Request,
    cycle_count_id: int,
    entry: CountEntry,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Record the counted quantity of one item."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.record_count(
        cycle_count_id,
        quantity=entry.quantity,
        counted_by=current_user.user_id,
        stock_item_id=entry.stock_item_id,
        batch_id=entry.batch_id,
        notes=entry.notes,
        item_id=entry.item_id,
    )


@router.post("/{cycle_count_id}/counts/bulk", response_model=list[CycleCountItemResponse])
@limiter.limit("30/minute")
def record_bulk_counts(
    request: Request,
    cycle_count_id: int,
    data: BulkCountRequest,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Record several counts in one transaction."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.record_bulk_counts(
        cycle_count_id,
        [entry.model_dump() for entry in data.entries],
        counted_by=current_user.user_id,
    )


@router.get("/{cycle_count_id}/progress", response_model=ProgressResponse)
@limiter.limit("120/minute")
def get_progress(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    service = CycleCountService(db, capabilities=capabilities)
    return service.get_progress(cycle_count_id)


@router.get("/{cycle_count_id}/count-sheet")
@limiter.limit("60/minute")
def get_count_sheet(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Rows for counters. Blind counts omit book quantity and variance."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.get_count_sheet(cycle_count_id)


@router.post("/{cycle_count_id}/submit", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def submit_cycle_count(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Submit a fully counted cycle count for review."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.submit_for_review(cycle_count_id, actor_id=current_user.user_id)


@router.post("/{cycle_count_id}/approve", response_model=PublicationResultResponse)
@limiter.limit("30/minute")
def approve_cycle_count(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Approve a reviewed count and post its variances as stock adjustments."""
    service = CycleCountService(db, capabilities=capabilities)
    result = service.approve(cycle_count_id, approver_id=current_user.user_id)
    return _publication_response(cycle_count_id, result)


@router.post("/{cycle_count_id}/adjustments/retry", response_model=PublicationResultResponse)
@limiter.limit("10/minute")
def retry_adjustments(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Post adjustments that failed during approval."""
    service = CycleCountService(db, capabilities=capabilities)
    result = service.publish_adjustments(cycle_count_id, actor_id=current_user.user_id)
    return _publication_response(cycle_count_id, result)


@router.post("/{cycle_count_id}/reject", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def reject_cycle_count(
    request: Request,
    cycle_count_id: int,
    data: RejectRequest,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
):
    """Send a count back for recounting."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.reject(
        cycle_count_id, data.reason, clear_counts=data.clear_counts, actor_id=current_user.user_id
    )


@router.post("/{cycle_count_id}/cancel", response_model=CycleCountResponse)
@limiter.limit("30/minute")
def cancel_cycle_count(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
    data: Optional[CancelRequest] = None,
):
    """Cancel a count that has not been completed."""
    service = CycleCountService(db, capabilities=capabilities)
    return service.cancel(
        cycle_count_id, reason=data.reason if data else None, actor_id=current_user.user_id
    )


@router.get("/{cycle_count_id}/report")
@limiter.limit("30/minute")
def get_report(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
    flagged_only: bool = Query(False),
    percent_threshold: Optional[Decimal] = Query(None, ge=0),
    cost_threshold: Optional[Decimal] = Query(None, ge=0),
):
    """Variance report with threshold flags."""
    service = CycleCountReportService(db, capabilities=capabilities)
    report = service.get_report(
        cycle_count_id,
        thresholds=_thresholds(percent_threshold, cost_threshold),
        flagged_only=flagged_only,
    )
    report["cycle_count"] = CycleCountResponse.model_validate(report["cycle_count"])
    report["summary"] = VarianceSummaryResponse.model_validate(report["summary"])
    return report


@router.get("/{cycle_count_id}/report/export")
@limiter.limit("10/minute")
def export_report(
    request: Request,
    cycle_count_id: int,
    db: DbSession,
    current_user: CurrentUser,
    capabilities: Capabilities,
    export_format: str = Query("csv", alias="format", pattern="^(csv|excel|pdf)$"),
    flagged_only: bool = Query(False),
    percent_threshold: Optional[Decimal] = Query(None, ge=0),
    cost_threshold: Optional[Decimal] = Query(None, ge=0),
):
    """Download the variance report as CSV, Excel or PDF."""
    service = CycleCountReportService(db, capabilities=capabilities)
    report = service.get_report(
        cycle_count_id,
        thresholds=_thresholds(percent_threshold, cost_threshold),
        flagged_only=flagged_only,
    )
    output, media_type, filename = report_export.export_report(report, export_format)
    return StreamingResponse(
        output, media_type=media_type, headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
