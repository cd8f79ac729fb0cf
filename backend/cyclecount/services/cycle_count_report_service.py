"""Cycle count reporting: per-count variance report and cross-count analytics."""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from cyclecount.core.exceptions import CycleCountNotFound, Unauthorized
from cyclecount.core.rbac_policy import CapabilityOracle, Permission, allow_all
from cyclecount.models.cycle_count import CycleCount, CycleCountItem, CycleCountStatus
from cyclecount.models.stock import StockBatch, StockItem
from cyclecount.services.variance_service import (
    ThresholdConfig,
    exceeds_threshold,
    severity_key,
    summarize_items,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
UNCATEGORIZED = "Uncategorized"


def _round2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class CycleCountReportService:
    """Read-only reporting over cycle counts."""

    def __init__(
        self,
        db: Session,
        capabilities: CapabilityOracle = allow_all,
        thresholds: Optional[ThresholdConfig] = None,
    ):
        self.db = db
        self.capabilities = capabilities
        self.thresholds = thresholds or ThresholdConfig()

    def _require_view(self) -> None:
        if not self.capabilities(Permission.CYCLE_COUNT_VIEW):
            raise Unauthorized(Permission.CYCLE_COUNT_VIEW)

    def get_report(
        self,
        cycle_count_id: int,
        thresholds: Optional[ThresholdConfig] = None,
        flagged_only: bool = False,
    ) -> Dict[str, Any]:
        """Variance report for one count.

        Every row carries a ``flagged`` marker. With ``flagged_only`` only
        flagged rows are returned, most severe first.
        """
        self._require_view()
        thresholds = thresholds or self.thresholds
        cycle_count = self.db.get(CycleCount, cycle_count_id)
        if cycle_count is None:
            raise CycleCountNotFound("Cycle count", cycle_count_id)

        rows = (
            self.db.query(CycleCountItem, StockItem, StockBatch)
            .join(StockItem, StockItem.id == CycleCountItem.stock_item_id)
            .outerjoin(StockBatch, StockBatch.id == CycleCountItem.batch_id)
            .filter(CycleCountItem.cycle_count_id == cycle_count.id)
            .order_by(CycleCountItem.id)
            .all()
        )

        items = []
        for item, stock_item, batch in rows:
            flagged = exceeds_threshold(
                item.variance, item.variance_percent, item.variance_cost, thresholds
            )
            if flagged_only and not flagged:
                continue
            items.append((item, {
                "item_id": item.id,
                "stock_item_id": stock_item.id,
                "name": stock_item.name,
                "sku": stock_item.sku,
                "category": stock_item.category,
                "batch_id": item.batch_id,
                "batch_number": batch.batch_number if batch else None,
                "system_quantity": item.system_quantity,
                "counted_quantity": item.counted_quantity,
                "unit_cost": item.unit_cost,
                "variance": item.variance,
                "variance_percent": item.variance_percent,
                "variance_cost": item.variance_cost,
                "flagged": flagged,
                "adjustment_made": item.adjustment_made,
                "adjustment_id": item.adjustment_id,
                "notes": item.notes,
            }))

        if flagged_only:
            items.sort(key=lambda pair: severity_key(pair[0]))

        summary = summarize_items(row[0] for row in rows)
        return {
            "cycle_count": cycle_count,
            "thresholds": thresholds.to_dict(),
            "summary": summary,
            "items_flagged": sum(1 for _, row in items if row["flagged"]),
            "items": [row for _, row in items],
        }

    def _completed_counts(
        self,
        warehouse_id: Optional[int],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> List[CycleCount]:
        query = self.db.query(CycleCount).filter(
            CycleCount.status == CycleCountStatus.COMPLETED
        )
        if warehouse_id is not None:
            query = query.filter(CycleCount.warehouse_id == warehouse_id)
        if start is not None:
            query = query.filter(CycleCount.completed_at >= start)
        if end is not None:
            query = query.filter(CycleCount.completed_at <= end)
        return query.order_by(CycleCount.completed_at, CycleCount.id).all()

    def get_inventory_accuracy(
        self,
        warehouse_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Accuracy trend over completed counts."""
        self._require_view()
        counts = self._completed_counts(warehouse_id, start, end)

        data_points = []
        total_absolute_cost = ZERO
        for cycle_count in counts:
            summary = summarize_items(cycle_count.items)
            total_absolute_cost += summary.absolute_variance_cost
            data_points.append({
                "cycle_count_id": cycle_count.id,
                "count_number": cycle_count.count_number,
                "warehouse_id": cycle_count.warehouse_id,
                "type": cycle_count.type,
                "completed_at": cycle_count.completed_at,
                "items_counted": summary.items_counted,
                "items_with_variance": summary.items_with_variance,
                "accuracy_percent": summary.accuracy_percent,
                "total_variance_cost": summary.total_variance_cost,
            })

        accuracies = [p["accuracy_percent"] for p in data_points if p["accuracy_percent"] is not None]
        average = _round2(sum(accuracies, ZERO) / len(accuracies)) if accuracies else None

        return {
            "warehouse_id": warehouse_id,
            "start": start,
            "end": end,
            "counts_completed": len(data_points),
            "average_accuracy": average,
            "min_accuracy": min(accuracies) if accuracies else None,
            "max_accuracy": max(accuracies) if accuracies else None,
            "total_absolute_variance_cost": total_absolute_cost,
            "data_points": data_points,
        }

    def get_variance_analysis(
        self,
        warehouse_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Which items and categories drift most across completed counts."""
        self._require_view()
        count_ids = [c.id for c in self._completed_counts(warehouse_id, start, end)]
        if not count_ids:
            rows = []
        else:
            rows = (
                self.db.query(CycleCountItem, StockItem)
                .join(StockItem, StockItem.id == CycleCountItem.stock_item_id)
                .filter(
                    CycleCountItem.cycle_count_id.in_(count_ids),
                    CycleCountItem.counted_quantity.isnot(None),
                )
                .all()
            )

        by_item: Dict[int, Dict[str, Any]] = {}
        by_category: Dict[str, Dict[str, Any]] = {}
        items_with_variance = 0
        total_absolute_cost = ZERO

        for item, stock_item in rows:
            variance = item.variance or ZERO
            if variance == 0:
                continue
            cost = item.variance_cost or ZERO
            items_with_variance += 1
            total_absolute_cost += abs(cost)

            entry = by_item.setdefault(stock_item.id, {
                "stock_item_id": stock_item.id,
                "name": stock_item.name,
                "sku": stock_item.sku,
                "category": stock_item.category,
                "occurrences": 0,
                "total_variance": ZERO,
                "net_variance_cost": ZERO,
                "absolute_variance_cost": ZERO,
            })
            entry["occurrences"] += 1
            entry["total_variance"] += variance
            entry["net_variance_cost"] += cost
            entry["absolute_variance_cost"] += abs(cost)

            category = stock_item.category or UNCATEGORIZED
            bucket = by_category.setdefault(category, {
                "category": category,
                "occurrences": 0,
                "net_variance_cost": ZERO,
                "absolute_variance_cost": ZERO,
            })
            bucket["occurrences"] += 1
            bucket["net_variance_cost"] += cost
            bucket["absolute_variance_cost"] += abs(cost)

        entries = list(by_item.values())
        top_by_frequency = sorted(
            entries, key=lambda e: (-e["occurrences"], -e["absolute_variance_cost"], e["stock_item_id"])
        )[:limit]
        top_by_cost = sorted(
            entries, key=lambda e: (-e["absolute_variance_cost"], e["stock_item_id"])
        )[:limit]
        categories = sorted(
            by_category.values(), key=lambda b: (-b["absolute_variance_cost"], b["category"])
        )

        items_counted = len(rows)
        variance_rate = (
            _round2(Decimal(items_with_variance) / Decimal(items_counted) * 100)
            if items_counted else None
        )

        return {
            "warehouse_id": warehouse_id,
            "start": start,
            "end": end,
            "counts_analyzed": len(count_ids),
            "items_counted": items_counted,
            "items_with_variance": items_with_variance,
            "variance_rate_percent": variance_rate,
            "total_absolute_variance_cost": total_absolute_cost,
            "top_items_by_frequency": top_by_frequency,
            "top_items_by_cost": top_by_cost,
            "variance_by_category": categories,
        }
