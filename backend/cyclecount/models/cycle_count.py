"""Cycle count session and item models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from cyclecount.db.base import Base, TimestampMixin, VersionMixin


class CycleCountType(str, Enum):
    """How the item set of a count is chosen."""

    FULL = "full"
    ABC_CLASS_A = "abc_class_a"
    ABC_CLASS_B = "abc_class_b"
    ABC_CLASS_C = "abc_class_c"
    RANDOM = "random"
    SPOT = "spot"


class CycleCountStatus(str, Enum):
    """Lifecycle status of a cycle count."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CycleCount(Base, TimestampMixin, VersionMixin):
    """A physical count of a set of items in one warehouse."""

    __tablename__ = "cycle_counts"

    id: Mapped[int] = mapped_column(primary_key=True)
    count_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    type: Mapped[CycleCountType] = mapped_column(SQLEnum(CycleCountType), nullable=False)
    status: Mapped[CycleCountStatus] = mapped_column(
        SQLEnum(CycleCountStatus), default=CycleCountStatus.DRAFT, nullable=False, index=True
    )
    blind_count: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Aggregates, derived from items only
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_counted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_with_variance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_variance_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    accuracy_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    # Relationships
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", back_populates="cycle_counts")
    items: Mapped[list["CycleCountItem"]] = relationship(
        "CycleCountItem",
        back_populates="cycle_count",
        cascade="all, delete-orphan",
        order_by="CycleCountItem.id",
    )


class CycleCountItem(Base):
    """One (item, batch) row of a cycle count.

    ``system_quantity`` and ``unit_cost`` are NULL until the count starts and
    cannot change once written.
    """

    __tablename__ = "cycle_count_items"
    __table_args__ = (
        UniqueConstraint(
            "cycle_count_id", "stock_item_id", "batch_id", name="uq_cycle_count_item_batch"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    cycle_count_id: Mapped[int] = mapped_column(
        ForeignKey("cycle_counts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stock_item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("stock_batches.id", ondelete="SET NULL"), nullable=True
    )

    # Snapshot, locked at start
    system_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)

    counted_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    variance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    variance_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 2), nullable=True)
    variance_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    counted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    counted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    adjustment_made: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    adjustment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("stock_movements.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    cycle_count: Mapped["CycleCount"] = relationship("CycleCount", back_populates="items")
    stock_item: Mapped["StockItem"] = relationship("StockItem")
    batch: Mapped[Optional["StockBatch"]] = relationship("StockBatch")

    @validates("system_quantity", "unit_cost")
    def _write_once(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"{key} is locked for cycle count item {self.id}")
        return value
