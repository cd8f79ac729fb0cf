"""Cycle count schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from cyclecount.models.cycle_count import CycleCountStatus, CycleCountType
from cyclecount.services.item_selector import CountScope


class CountScopeIn(BaseModel):
    """Item selection scope.

    ``stock_item_ids`` is required for spot counts and ``sample_percent``
    for random counts.
    """

    stock_item_ids: Optional[List[int]] = None
    sample_percent: Optional[Decimal] = None
    include_batches: bool = True
    seed: Optional[int] = None

    def to_scope(self) -> CountScope:
        return CountScope(
            stock_item_ids=self.stock_item_ids,
            sample_percent=self.sample_percent,
            include_batches=self.include_batches,
            seed=self.seed,
        )


class CycleCountCreate(BaseModel):
    """Cycle count creation schema."""

    type: CycleCountType
    warehouse_id: int
    scope: CountScopeIn = Field(default_factory=CountScopeIn)
    scheduled_at: Optional[datetime] = None
    blind_count: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)


class CycleCountUpdate(BaseModel):
    """Cycle count update schema. Only fields that are sent are changed."""

    notes: Optional[str] = Field(default=None, max_length=2000)
    blind_count: Optional[bool] = None
    scheduled_at: Optional[datetime] = None


class CountEntry(BaseModel):
    """One physical count. Address the row by ``item_id`` or ``stock_item_id``."""

    item_id: Optional[int] = None
    stock_item_id: Optional[int] = None
    batch_id: Optional[int] = None
    quantity: Decimal
    notes: Optional[str] = Field(default=None, max_length=500)


class BulkCountRequest(BaseModel):
    entries: List[CountEntry] = Field(min_length=1)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
    clear_counts: bool = False


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class CycleCountItemResponse(BaseModel):
    """Cycle count item response schema."""

    id: int
    cycle_count_id: int
    stock_item_id: int
    batch_id: Optional[int] = None
    system_quantity: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    counted_quantity: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    variance_percent: Optional[Decimal] = None
    variance_cost: Optional[Decimal] = None
    counted_by: Optional[int] = None
    counted_at: Optional[datetime] = None
    notes: Optional[str] = None
    adjustment_made: bool
    adjustment_id: Optional[int] = None

    model_config = {"from_attributes": True}


class CycleCountResponse(BaseModel):
    """Cycle count response schema."""

    id: int
    count_number: str
    warehouse_id: int
    type: CycleCountType
    status: CycleCountStatus
    blind_count: bool
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    notes: Optional[str] = None
    total_items: int
    items_counted: int
    items_with_variance: int
    total_variance_cost: Decimal
    accuracy_percent: Optional[Decimal] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VarianceSummaryResponse(BaseModel):
    total_items: int
    items_counted: int
    items_remaining: int
    progress_percent: Decimal
    items_with_variance: int
    items_with_positive_variance: int
    items_with_negative_variance: int
    total_variance_cost: Decimal
    positive_variance_cost: Decimal
    negative_variance_cost: Decimal
    absolute_variance_cost: Decimal
    accuracy_percent: Optional[Decimal] = None
    is_complete: bool

    model_config = {"from_attributes": True}


class CycleCountDetailResponse(BaseModel):
    """Header, live summary and rows of a cycle count."""

    cycle_count: CycleCountResponse
    summary: VarianceSummaryResponse
    items_flagged: int
    items: List[CycleCountItemResponse]


class ProgressResponse(BaseModel):
    cycle_count_id: int
    status: CycleCountStatus
    total_items: int
    items_counted: int
    items_remaining: int
    progress_percent: Decimal
    is_complete: bool


class AdjustmentFailureResponse(BaseModel):
    item_id: int
    stock_item_id: int
    batch_id: Optional[int] = None
    error: str

    model_config = {"from_attributes": True}


class PublicationResultResponse(BaseModel):
    """Outcome of posting variances to the stock ledger."""

    cycle_count_id: int
    status: CycleCountStatus
    adjustments_created: int
    adjustments_failed: int
    adjustments_skipped: int = 0
    adjustment_ids: List[int] = []
    failures: List[AdjustmentFailureResponse] = []
