"""Item selection for cycle counts.

Resolves a count type and scope into the (stock item, batch) rows a count
will cover.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional
import logging
import random

from sqlalchemy.orm import Session

from cyclecount.core.exceptions import ValidationError
from cyclecount.models.cycle_count import CycleCountType
from cyclecount.models.stock import StockBatch, StockItem, StockLevel

logger = logging.getLogger(__name__)

# Cumulative value share (percent) up to which an item falls in class A / B
ABC_A_CUTOFF = Decimal("80")
ABC_B_CUTOFF = Decimal("95")


class AbcClass(str, Enum):
    A = "A"
    B = "B"
    C = "C"


ABC_TYPES = {
    CycleCountType.ABC_CLASS_A: AbcClass.A,
    CycleCountType.ABC_CLASS_B: AbcClass.B,
    CycleCountType.ABC_CLASS_C: AbcClass.C,
}


@dataclass
class CountScope:
    """What to count beyond the count type itself.

    ``stock_item_ids`` is required for SPOT counts, ``sample_percent`` for
    RANDOM counts. ``seed`` makes RANDOM selection reproducible.
    """

    stock_item_ids: Optional[List[int]] = None
    sample_percent: Optional[Decimal] = None
    include_batches: bool = True
    seed: Optional[int] = None


@dataclass(frozen=True)
class SelectedItem:
    stock_item_id: int
    batch_id: Optional[int] = None


class ItemSelector:
    """Picks the items a cycle count covers."""

    def __init__(self, db: Session):
        self.db = db

    def _stocked_levels(self, warehouse_id: int) -> List[StockLevel]:
        return (
            self.db.query(StockLevel)
            .join(StockItem, StockItem.id == StockLevel.stock_item_id)
            .filter(
                StockLevel.warehouse_id == warehouse_id,
                StockLevel.quantity > 0,
                StockItem.active.is_(True),
            )
            .order_by(StockLevel.stock_item_id)
            .all()
        )

    def classify_abc(self, warehouse_id: int) -> Dict[int, AbcClass]:
        """ABC classification of stocked items by inventory value.

        Items are ranked by ``quantity * average_cost``; the top 80% of the
        cumulative value is A, the next 15% is B, the rest C. When the
        warehouse holds no value at all every item is C.
        """
        values = [
            (level.stock_item_id, Decimal(level.quantity) * Decimal(level.average_cost))
            for level in self._stocked_levels(warehouse_id)
        ]
        values.sort(key=lambda pair: (-pair[1], pair[0]))
        total = sum((value for _, value in values), Decimal("0"))

        if total == 0:
            return {item_id: AbcClass.C for item_id, _ in values}

        classes: Dict[int, AbcClass] = {}
        cumulative = Decimal("0")
        for item_id, value in values:
            cumulative += value
            share = cumulative / total * 100
            if share <= ABC_A_CUTOFF:
                classes[item_id] = AbcClass.A
            elif share <= ABC_B_CUTOFF:
                classes[item_id] = AbcClass.B
            else:
                classes[item_id] = AbcClass.C
        return classes

    def select(
        self,
        count_type: CycleCountType,
        warehouse_id: int,
        scope: Optional[CountScope] = None,
    ) -> List[SelectedItem]:
        """Resolve ``count_type`` and ``scope`` into count rows.

        Raises:
            ValidationError: when the scope does not fit the count type.
        """
        scope = scope or CountScope()

        if count_type == CycleCountType.FULL:
            item_ids = [level.stock_item_id for level in self._stocked_levels(warehouse_id)]

        elif count_type in ABC_TYPES:
            wanted = ABC_TYPES[count_type]
            classes = self.classify_abc(warehouse_id)
            item_ids = sorted(item_id for item_id, cls in classes.items() if cls == wanted)

        elif count_type == CycleCountType.RANDOM:
            item_ids = self._sample(warehouse_id, scope)

        elif count_type == CycleCountType.SPOT:
            item_ids = self._spot_items(scope)

        else:
            raise ValidationError(f"Unsupported cycle count type: {count_type}", field="type")

        selected = self._expand_batches(item_ids, warehouse_id, scope.include_batches)
        logger.info(
            "Selected %s rows (%s items) for %s count in warehouse %s",
            len(selected), len(item_ids), count_type.value, warehouse_id,
        )
        return selected

    def _sample(self, warehouse_id: int, scope: CountScope) -> List[int]:
        percent = scope.sample_percent
        if percent is None:
            raise ValidationError("Sample percentage is required for random counts", field="sample_percent")
        percent = Decimal(str(percent))
        if percent <= 0 or percent > 100:
            raise ValidationError("Sample percentage must be between 0 and 100", field="sample_percent")

        population = [level.stock_item_id for level in self._stocked_levels(warehouse_id)]
        if not population:
            return []

        size = (Decimal(len(population)) * percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        size = min(max(1, int(size)), len(population))
        rng = random.Random(scope.seed)
        return sorted(rng.sample(population, size))

    def _spot_items(self, scope: CountScope) -> List[int]:
        requested = list(dict.fromkeys(scope.stock_item_ids or []))
        if not requested:
            raise ValidationError("Spot counts require at least one stock item", field="stock_item_ids")

        found = {
            item_id
            for (item_id,) in self.db.query(StockItem.id)
            .filter(StockItem.id.in_(requested), StockItem.active.is_(True))
            .all()
        }
        missing = [item_id for item_id in requested if item_id not in found]
        if missing:
            raise ValidationError(
                f"Stock items not found or inactive: {missing}", field="stock_item_ids"
            )
        return sorted(requested)

    def _expand_batches(
        self, item_ids: List[int], warehouse_id: int, include_batches: bool
    ) -> List[SelectedItem]:
        if not item_ids:
            return []

        batches_by_item: Dict[int, List[StockBatch]] = {}
        if include_batches:
            batches = (
                self.db.query(StockBatch)
                .filter(
                    StockBatch.stock_item_id.in_(item_ids),
                    StockBatch.warehouse_id == warehouse_id,
                    StockBatch.quantity > 0,
                )
                .order_by(StockBatch.id)
                .all()
            )
            for batch in batches:
                batches_by_item.setdefault(batch.stock_item_id, []).append(batch)

        selected: List[SelectedItem] = []
        for item_id in item_ids:
            item_batches = batches_by_item.get(item_id)
            if item_batches:
                selected.extend(SelectedItem(item_id, batch.id) for batch in item_batches)
            else:
                selected.append(SelectedItem(item_id))
        return selected
