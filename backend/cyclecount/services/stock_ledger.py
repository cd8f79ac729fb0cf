"""Stock ledger port and its SQL implementation.

The engine never reads or writes stock tables directly: snapshots come from
``get_balance`` and adjustments go through ``post_adjustment``. ``SqlStockLedger``
is the default implementation over the local ``stock_levels``,
``stock_batches`` and ``stock_movements`` tables.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
import logging

from sqlalchemy.orm import Session

from cyclecount.core.exceptions import LedgerError
from cyclecount.models.stock import MovementReason, StockBatch, StockLevel, StockMovement
from cyclecount.models.warehouse import Warehouse

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class Balance:
    quantity: Decimal
    unit_cost: Decimal


class StockLedger(Protocol):
    def get_balance(
        self,
        stock_item_id: int,
        warehouse_id: int,
        batch_id: Optional[int] = None,
        lock: bool = False,
    ) -> Balance:
        ...

    def post_adjustment(
        self,
        *,
        stock_item_id: int,
        warehouse_id: int,
        batch_id: Optional[int],
        from_qty: Decimal,
        to_qty: Decimal,
        reason: str,
        ref_type: str,
        ref_id: int,
        created_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        ...


class SqlStockLedger:
    """Stock ledger backed by the application database.

    Does not commit; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_balance(
        self,
        stock_item_id: int,
        warehouse_id: int,
        batch_id: Optional[int] = None,
        lock: bool = False,
    ) -> Balance:
        """Book quantity and cost of an item (or one of its batches).

        With ``lock`` the row is read under a shared lock so a concurrent
        movement cannot interleave with the snapshot. Missing rows read as zero.
        """
        if batch_id is not None:
            query = self.db.query(StockBatch).filter(
                StockBatch.id == batch_id,
                StockBatch.stock_item_id == stock_item_id,
                StockBatch.warehouse_id == warehouse_id,
            )
            if lock:
                query = query.with_for_update(read=True)
            batch = query.first()
            if batch is None:
                return Balance(ZERO, ZERO)
            return Balance(Decimal(batch.quantity), Decimal(batch.unit_cost))

        query = self.db.query(StockLevel).filter(
            StockLevel.stock_item_id == stock_item_id,
            StockLevel.warehouse_id == warehouse_id,
        )
        if lock:
            query = query.with_for_update(read=True)
        level = query.first()
        if level is None:
            return Balance(ZERO, ZERO)
        return Balance(Decimal(level.quantity), Decimal(level.average_cost))

    def post_adjustment(
        self,
        *,
        stock_item_id: int,
        warehouse_id: int,
        batch_id: Optional[int],
        from_qty: Decimal,
        to_qty: Decimal,
        reason: str = MovementReason.INVENTORY_COUNT.value,
        ref_type: str = "cycle_count_item",
        ref_id: int,
        created_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Apply ``to_qty - from_qty`` to the live balance and record a movement.

        Returns the id of the ``stock_movements`` row.

        Raises:
            LedgerError: if the warehouse is inactive or the live balance would
                go negative.
        """
        delta = Decimal(to_qty) - Decimal(from_qty)

        warehouse = self.db.get(Warehouse, warehouse_id)
        if warehouse is None or not warehouse.active:
            raise LedgerError(f"Warehouse {warehouse_id} is not active", stock_item_id)

        level = (
            self.db.query(StockLevel)
            .filter(
                StockLevel.stock_item_id == stock_item_id,
                StockLevel.warehouse_id == warehouse_id,
            )
            .with_for_update()
            .first()
        )
        if level is None:
            level = StockLevel(
                stock_item_id=stock_item_id,
                warehouse_id=warehouse_id,
                quantity=ZERO,
                average_cost=ZERO,
            )
            self.db.add(level)

        new_level_qty = Decimal(level.quantity) + delta
        if new_level_qty < 0:
            raise LedgerError(
                f"Adjustment of {delta} would leave stock item {stock_item_id} "
                f"at {new_level_qty} in warehouse {warehouse_id}",
                stock_item_id,
            )

        if batch_id is not None:
            batch = (
                self.db.query(StockBatch)
                .filter(StockBatch.id == batch_id, StockBatch.warehouse_id == warehouse_id)
                .with_for_update()
                .first()
            )
            if batch is None:
                raise LedgerError(f"Batch {batch_id} not found in warehouse {warehouse_id}", stock_item_id)
            new_batch_qty = Decimal(batch.quantity) + delta
            if new_batch_qty < 0:
                raise LedgerError(
                    f"Adjustment of {delta} would leave batch {batch.batch_number} at {new_batch_qty}",
                    stock_item_id,
                )
            batch.quantity = new_batch_qty

        level.quantity = new_level_qty

        movement = StockMovement(
            stock_item_id=stock_item_id,
            warehouse_id=warehouse_id,
            batch_id=batch_id,
            qty_delta=delta,
            reason=reason,
            ref_type=ref_type,
            ref_id=ref_id,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(movement)
        self.db.flush()

        logger.info(
            "Posted stock adjustment movement=%s item=%s warehouse=%s delta=%s",
            movement.id, stock_item_id, warehouse_id, delta,
        )
        return movement.id
