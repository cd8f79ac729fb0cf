"""API routes."""

from fastapi import APIRouter

from cyclecount.api.routes import cycle_count_reports, cycle_counts

api_router = APIRouter()

api_router.include_router(cycle_counts.router, prefix="/cycle-counts", tags=["cycle-counts"])
api_router.include_router(
    cycle_count_reports.router, prefix="/cycle-count-reports", tags=["cycle-count-reports"]
)
