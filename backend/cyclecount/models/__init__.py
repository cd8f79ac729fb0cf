"""SQLAlchemy models."""

from cyclecount.models.warehouse import Warehouse
from cyclecount.models.stock import (
    MovementReason,
    StockBatch,
    StockItem,
    StockLevel,
    StockMovement,
)
from cyclecount.models.cycle_count import (
    CycleCount,
    CycleCountItem,
    CycleCountStatus,
    CycleCountType,
)
from cyclecount.models.audit import AuditLogEntry

__all__ = [
    "Warehouse",
    "MovementReason",
    "StockBatch",
    "StockItem",
    "StockLevel",
    "StockMovement",
    "CycleCount",
    "CycleCountItem",
    "CycleCountStatus",
    "CycleCountType",
    "AuditLogEntry",
]
