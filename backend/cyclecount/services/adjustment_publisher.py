"""Turns approved cycle count variances into stock ledger adjustments.

Each item is handled in its own transaction:

1. claim it with ``UPDATE ... SET adjustment_made = true WHERE adjustment_made = false``
   (zero rows means someone else already owns it);
2. post the adjustment to the ledger;
3. stamp ``adjustment_id`` and commit.

A ledger failure rolls back that item only, marker included, so the item
can be published again later. Running the publisher twice never posts an
item twice.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from cyclecount.core.exceptions import LedgerError
from cyclecount.models.cycle_count import CycleCount, CycleCountItem
from cyclecount.models.stock import MovementReason
from cyclecount.services.stock_ledger import SqlStockLedger, StockLedger

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentFailure:
    item_id: int
    stock_item_id: int
    batch_id: Optional[int]
    error: str

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "stock_item_id": self.stock_item_id,
            "batch_id": self.batch_id,
            "error": self.error,
        }


@dataclass
class PublicationResult:
    adjustments_created: int = 0
    adjustments_failed: int = 0
    adjustments_skipped: int = 0
    adjustment_ids: List[int] = field(default_factory=list)
    failures: List[AdjustmentFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "adjustments_created": self.adjustments_created,
            "adjustments_failed": self.adjustments_failed,
            "adjustments_skipped": self.adjustments_skipped,
            "adjustment_ids": list(self.adjustment_ids),
            "failures": [f.to_dict() for f in self.failures],
        }


class AdjustmentPublisher:
    """Posts one ledger adjustment per varied, not-yet-adjusted item."""

    def __init__(self, db: Session, ledger: Optional[StockLedger] = None):
        self.db = db
        self.ledger = ledger or SqlStockLedger(db)

    def pending_item_ids(self, cycle_count_id: int) -> List[int]:
        rows = (
            self.db.query(CycleCountItem.id)
            .filter(
                CycleCountItem.cycle_count_id == cycle_count_id,
                CycleCountItem.variance.isnot(None),
                CycleCountItem.variance != 0,
                CycleCountItem.adjustment_made.is_(False),
            )
            .order_by(CycleCountItem.id)
            .all()
        )
        return [item_id for (item_id,) in rows]

    def publish(self, cycle_count: CycleCount, actor_id: Optional[int] = None) -> PublicationResult:
        """Publish adjustments for ``cycle_count``. Commits per item."""
        cycle_count_id = cycle_count.id
        count_number = cycle_count.count_number
        warehouse_id = cycle_count.warehouse_id
        result = PublicationResult()

        for item_id in self.pending_item_ids(cycle_count_id):
            claim = self.db.execute(
                update(CycleCountItem)
                .where(
                    CycleCountItem.id == item_id,
                    CycleCountItem.adjustment_made.is_(False),
                )
                .values(adjustment_made=True)
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 0:
                self.db.rollback()
                result.adjustments_skipped += 1
                continue

            item = (
                self.db.query(
                    CycleCountItem.stock_item_id,
                    CycleCountItem.batch_id,
                    CycleCountItem.system_quantity,
                    CycleCountItem.counted_quantity,
                )
                .filter(CycleCountItem.id == item_id)
                .one()
            )

            try:
                movement_id = self.ledger.post_adjustment(
                    stock_item_id=item.stock_item_id,
                    warehouse_id=warehouse_id,
                    batch_id=item.batch_id,
                    from_qty=item.system_quantity,
                    to_qty=item.counted_quantity,
                    reason=MovementReason.INVENTORY_COUNT.value,
                    ref_type="cycle_count_item",
                    ref_id=item_id,
                    created_by=actor_id,
                    notes=f"Cycle Count Adjustment: {count_number}",
                )
                self.db.execute(
                    update(CycleCountItem)
                    .where(CycleCountItem.id == item_id)
                    .values(adjustment_id=movement_id)
                    .execution_options(synchronize_session=False)
                )
                self.db.commit()
            except LedgerError as e:
                self.db.rollback()
                logger.warning(
                    "Adjustment failed for cycle count %s item=%s: %s",
                    count_number, item_id, e,
                )
                result.adjustments_failed += 1
                result.failures.append(
                    AdjustmentFailure(item_id, item.stock_item_id, item.batch_id, str(e))
                )
                continue
            except Exception:
                self.db.rollback()
                raise

            result.adjustments_created += 1
            result.adjustment_ids.append(movement_id)

        # Synchronous UPDATEs bypassed the identity map
        self.db.expire_all()

        logger.info(
            "Published adjustments for cycle count %s: created=%s failed=%s skipped=%s",
            count_number, result.adjustments_created,
            result.adjustments_failed, result.adjustments_skipped,
        )
        return result
