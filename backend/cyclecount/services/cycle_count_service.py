"""Cycle count service: lifecycle, counting and approval of cycle counts."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyclecount.core.config import settings
from cyclecount.core.exceptions import (
    AdjustmentPublicationError,
    CycleCountNotFound,
    IncompleteCount,
    InvalidTransition,
    Unauthorized,
    ValidationError,
)
from cyclecount.core.rbac_policy import CapabilityOracle, Permission, allow_all
from cyclecount.models.cycle_count import (
    CycleCount,
    CycleCountItem,
    CycleCountStatus,
    CycleCountType,
)
from cyclecount.models.stock import StockBatch, StockItem
from cyclecount.models.warehouse import Warehouse
from cyclecount.services.adjustment_publisher import AdjustmentPublisher, PublicationResult
from cyclecount.services.audit_service import log_action
from cyclecount.services.cycle_count_state import (
    CycleCountAction,
    allowed_from,
    next_status,
)
from cyclecount.services.item_selector import CountScope, ItemSelector, SelectedItem
from cyclecount.services.stock_ledger import SqlStockLedger, StockLedger
from cyclecount.services.variance_service import (
    ThresholdConfig,
    VarianceSummary,
    calculate_variance,
    exceeds_threshold,
    summarize_items,
)

logger = logging.getLogger(__name__)

COUNT_NUMBER_ATTEMPTS = 3

# Matches the Numeric(12, 3) quantity columns
QUANTITY_STEP = Decimal("0.001")
MAX_QUANTITY = Decimal("1E9")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _append_note(existing: Optional[str], tag: str, text: Optional[str]) -> str:
    line = f"[{tag}: {_now().isoformat()}]"
    if text:
        line = f"{line} {text}"
    return f"{existing}\n{line}" if existing else line


def parse_quantity(value: Any) -> Decimal:
    """Coerce a counted quantity to the stored scale of three decimal places.

    Rejects negatives, non-finite values, values with more than three decimal
    places and values too large for the quantity columns.
    """
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid quantity: {value!r}", field="quantity")
    if not quantity.is_finite():
        raise ValidationError("Quantity must be a finite number", field="quantity")
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative", field="quantity")
    if quantity >= MAX_QUANTITY:
        raise ValidationError(f"Quantity must be below {MAX_QUANTITY:f}", field="quantity")
    scaled = quantity.quantize(QUANTITY_STEP)
    if scaled != quantity:
        raise ValidationError("Quantity allows at most 3 decimal places", field="quantity")
    return scaled


class CycleCountService:
    """Runs cycle counts from creation through approval.

    ``capabilities`` is the caller's permission oracle; every operation checks
    it before touching state. ``ledger`` and ``selector`` default to the SQL
    implementations over the same session.
    """

    def __init__(
        self,
        db: Session,
        capabilities: CapabilityOracle = allow_all,
        ledger: Optional[StockLedger] = None,
        selector: Optional[ItemSelector] = None,
        thresholds: Optional[ThresholdConfig] = None,
    ):
        self.db = db
        self.capabilities = capabilities
        self.ledger = ledger or SqlStockLedger(db)
        self.selector = selector or ItemSelector(db)
        self.thresholds = thresholds or ThresholdConfig()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, permission: Permission) -> None:
        if not self.capabilities(permission):
            raise Unauthorized(permission)

    def _get(self, cycle_count_id: int) -> CycleCount:
        cycle_count = self.db.get(CycleCount, cycle_count_id)
        if cycle_count is None:
            raise CycleCountNotFound("Cycle count", cycle_count_id)
        return cycle_count

    def _get_for_update(self, cycle_count_id: int) -> CycleCount:
        """Load and lock the header row so count writers on one session queue up.

        Each writer then reads the item rows committed before it and stores
        aggregates that cover every recorded count.
        """
        cycle_count = (
            self.db.query(CycleCount)
            .filter(CycleCount.id == cycle_count_id)
            .populate_existing()
            .with_for_update()
            .one_or_none()
        )
        if cycle_count is None:
            raise CycleCountNotFound("Cycle count", cycle_count_id)
        return cycle_count

    def _items(self, cycle_count_id: int) -> List[CycleCountItem]:
        return (
            self.db.query(CycleCountItem)
            .filter(CycleCountItem.cycle_count_id == cycle_count_id)
            .order_by(CycleCountItem.id)
            .all()
        )

    def _transition(
        self, cycle_count: CycleCount, action: CycleCountAction, **values
    ) -> CycleCountStatus:
        """Move ``cycle_count`` along ``action`` with a compare-and-set on status.

        Extra column ``values`` are written in the same statement. Does not commit.
        """
        expected = cycle_count.status
        target = next_status(expected, action)
        values.update(status=target, version=CycleCount.version + 1)

        result = self.db.execute(
            update(CycleCount)
            .where(CycleCount.id == cycle_count.id, CycleCount.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            current = (
                self.db.query(CycleCount.status)
                .filter(CycleCount.id == cycle_count.id)
                .scalar()
            )
            logger.warning(
                "Lost status race on cycle count %s: expected %s, found %s",
                cycle_count.id, expected, current,
            )
            raise InvalidTransition(current, action, allowed_from(action))

        self.db.refresh(cycle_count)
        return target

    @staticmethod
    def _aggregate_values(summary: VarianceSummary) -> Dict[str, Any]:
        return {
            "total_items": summary.total_items,
            "items_counted": summary.items_counted,
            "items_with_variance": summary.items_with_variance,
            "total_variance_cost": summary.total_variance_cost,
            "accuracy_percent": summary.accuracy_percent,
        }

    def generate_count_number(self) -> str:
        """Next ``CC-YYYY-NNNN`` number for the current year."""
        prefix = f"{settings.count_number_prefix}-{_now().year}-"
        last = (
            self.db.query(CycleCount.count_number)
            .filter(CycleCount.count_number.like(f"{prefix}%"))
            .order_by(func.length(CycleCount.count_number).desc(), CycleCount.count_number.desc())
            .first()
        )
        sequence = 1
        if last is not None:
            sequence = int(last[0].rsplit("-", 1)[1]) + 1
        return f"{prefix}{sequence:04d}"

    def _new_items(self, selection: Iterable[SelectedItem]) -> List[CycleCountItem]:
        return [
            CycleCountItem(stock_item_id=s.stock_item_id, batch_id=s.batch_id)
            for s in selection
        ]

    # ------------------------------------------------------------------
    # Setup: create / update / repopulate
    # ------------------------------------------------------------------

    def create(
        self,
        count_type: CycleCountType,
        warehouse_id: int,
        scope: Optional[CountScope] = None,
        scheduled_at: Optional[datetime] = None,
        blind_count: bool = False,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> CycleCount:
        """Create a cycle count and attach the items its type selects.

        The count starts as SCHEDULED when ``scheduled_at`` is given, else DRAFT.
        """
        self._require(Permission.CYCLE_COUNT_CREATE)

        warehouse = self.db.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise CycleCountNotFound("Warehouse", warehouse_id)
        if not warehouse.active:
            raise ValidationError(f"Warehouse {warehouse.name} is not active", field="warehouse_id")

        selection = self.selector.select(count_type, warehouse_id, scope)
        status = CycleCountStatus.SCHEDULED if scheduled_at else CycleCountStatus.DRAFT

        for attempt in range(1, COUNT_NUMBER_ATTEMPTS + 1):
            cycle_count = CycleCount(
                count_number=self.generate_count_number(),
                warehouse_id=warehouse_id,
                type=count_type,
                status=status,
                blind_count=blind_count,
                scheduled_at=scheduled_at,
                notes=notes,
                created_by=created_by,
                total_items=len(selection),
                items=self._new_items(selection),
            )
            try:
                self.db.add(cycle_count)
                self.db.flush()
                log_action(
                    self.db, "create", "cycle_count", cycle_count.id, user_id=created_by,
                    details={
                        "count_number": cycle_count.count_number,
                        "type": count_type.value,
                        "total_items": len(selection),
                    },
                )
                self.db.commit()
            except IntegrityError:
                # Count number taken by a concurrent create
                self.db.rollback()
                if attempt == COUNT_NUMBER_ATTEMPTS:
                    raise
                continue
            except Exception:
                self.db.rollback()
                raise
            break

        self.db.refresh(cycle_count)
        logger.info(
            "Created cycle count %s (ID=%s) type=%s items=%s",
            cycle_count.count_number, cycle_count.id, count_type.value, len(selection),
        )
        return cycle_count

    def update(
        self,
        cycle_count_id: int,
        changes: Dict[str, Any],
        actor_id: Optional[int] = None,
    ) -> CycleCount:
        """Edit notes, blind flag or schedule of a count that has not started.

        Setting ``scheduled_at`` moves DRAFT to SCHEDULED; clearing it moves
        SCHEDULED back to DRAFT.
        """
        self._require(Permission.CYCLE_COUNT_CREATE)
        cycle_count = self._get(cycle_count_id)

        values = {k: v for k, v in changes.items() if k in ("notes", "blind_count", "scheduled_at")}
        if values.get("blind_count", False) is None:
            values.pop("blind_count")

        action = CycleCountAction.EDIT
        if "scheduled_at" in values:
            if values["scheduled_at"] is not None and cycle_count.status == CycleCountStatus.DRAFT:
                action = CycleCountAction.SCHEDULE
            elif values["scheduled_at"] is None and cycle_count.status == CycleCountStatus.SCHEDULED:
                action = CycleCountAction.UNSCHEDULE

        try:
            self._transition(cycle_count, action, **values)
            log_action(
                self.db, "update", "cycle_count", cycle_count.id, user_id=actor_id,
                details={"fields": sorted(values), "status": cycle_count.status.value},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(cycle_count)
        return cycle_count

    def repopulate_items(
        self,
        cycle_count_id: int,
        scope: Optional[CountScope] = None,
        actor_id: Optional[int] = None,
    ) -> CycleCount:
        """Re-run item selection, replacing the rows of a count that has not started."""
        self._require(Permission.CYCLE_COUNT_CREATE)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.EDIT)

        selection = self.selector.select(cycle_count.type, cycle_count.warehouse_id, scope)

        try:
            self._transition(cycle_count, CycleCountAction.EDIT, total_items=len(selection))
            self.db.query(CycleCountItem).filter(
                CycleCountItem.cycle_count_id == cycle_count.id
            ).delete(synchronize_session=False)
            for item in self._new_items(selection):
                item.cycle_count_id = cycle_count.id
                self.db.add(item)
            log_action(
                self.db, "populate_items", "cycle_count", cycle_count.id, user_id=actor_id,
                details={"total_items": len(selection)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(cycle_count)
        logger.info("Repopulated cycle count ID=%s with %s items", cycle_count.id, len(selection))
        return cycle_count

    # ------------------------------------------------------------------
    # Counting
    # ------------------------------------------------------------------

    def start(self, cycle_count_id: int, actor_id: Optional[int] = None) -> CycleCount:
        """Lock the book snapshot of every item and open the count for entry."""
        self._require(Permission.CYCLE_COUNT_CREATE)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.START)

        items = self._items(cycle_count.id)
        if not items:
            raise ValidationError("Cannot start cycle count with no items")

        try:
            self._transition(
                cycle_count, CycleCountAction.START,
                started_at=_now(), total_items=len(items),
            )
            for item in items:
                balance = self.ledger.get_balance(
                    item.stock_item_id, cycle_count.warehouse_id, item.batch_id, lock=True
                )
                item.system_quantity = balance.quantity
                item.unit_cost = balance.unit_cost
            log_action(
                self.db, "start", "cycle_count", cycle_count.id, user_id=actor_id,
                details={"total_items": len(items)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(cycle_count)
        logger.info("Started cycle count %s with %s items", cycle_count.count_number, len(items))
        return cycle_count

    def _find_item(
        self,
        cycle_count_id: int,
        item_id: Optional[int] = None,
        stock_item_id: Optional[int] = None,
        batch_id: Optional[int] = None,
    ) -> CycleCountItem:
        query = self.db.query(CycleCountItem).filter(
            CycleCountItem.cycle_count_id == cycle_count_id
        )
        if item_id is not None:
            query = query.filter(CycleCountItem.id == item_id)
            label = f"item {item_id}"
        elif stock_item_id is not None:
            query = query.filter(CycleCountItem.stock_item_id == stock_item_id)
            if batch_id is None:
                query = query.filter(CycleCountItem.batch_id.is_(None))
            else:
                query = query.filter(CycleCountItem.batch_id == batch_id)
            label = f"stock item {stock_item_id}" + (f" batch {batch_id}" if batch_id else "")
        else:
            raise ValidationError("Either item_id or stock_item_id is required", field="item_id")

        item = query.with_for_update().first()
        if item is None:
            raise ValidationError(
                f"{label.capitalize()} does not belong to cycle count {cycle_count_id}",
                field="item_id",
            )
        return item

    def _apply_count(
        self,
        item: CycleCountItem,
        quantity: Decimal,
        counted_by: Optional[int],
        notes: Optional[str],
    ) -> None:
        result = calculate_variance(item.system_quantity, quantity, item.unit_cost)
        item.counted_quantity = quantity
        item.variance = result.variance
        item.variance_percent = result.variance_percent
        item.variance_cost = result.variance_cost
        item.counted_by = counted_by
        item.counted_at = _now()
        if notes is not None:
            item.notes = notes

    def record_count(
        self,
        cycle_count_id: int,
        quantity: Any,
        counted_by: Optional[int] = None,
        stock_item_id: Optional[int] = None,
        batch_id: Optional[int] = None,
        notes: Optional[str] = None,
        item_id: Optional[int] = None,
    ) -> CycleCountItem:
        """Record the physical quantity of one row and recompute its variance.

        The row is addressed by ``item_id`` or by ``stock_item_id``/``batch_id``.
        Re-counting a row overwrites the previous entry.
        """
        self._require(Permission.CYCLE_COUNT_COUNT)
        quantity = parse_quantity(quantity)

        try:
            cycle_count = self._get_for_update(cycle_count_id)
            next_status(cycle_count.status, CycleCountAction.RECORD_COUNT)
            item = self._find_item(cycle_count.id, item_id, stock_item_id, batch_id)
            self._apply_count(item, quantity, counted_by, notes)
            self.db.flush()
            summary = summarize_items(self._items(cycle_count.id))
            self._transition(
                cycle_count, CycleCountAction.RECORD_COUNT, **self._aggregate_values(summary)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(item)
        logger.debug(
            "Recorded count for cycle count %s item=%s qty=%s variance=%s",
            cycle_count_id, item.id, quantity, item.variance,
        )
        return item

    def record_bulk_counts(
        self,
        cycle_count_id: int,
        entries: List[Dict[str, Any]],
        counted_by: Optional[int] = None,
    ) -> List[CycleCountItem]:
        """Record several counts at once; either all are stored or none.

        Each entry holds ``quantity`` plus ``item_id`` or ``stock_item_id``
        (and optional ``batch_id``), and optional ``notes``.
        """
        self._require(Permission.CYCLE_COUNT_COUNT)
        if not entries:
            raise ValidationError("At least one count entry is required", field="entries")
        parsed = [(entry, parse_quantity(entry.get("quantity"))) for entry in entries]

        try:
            cycle_count = self._get_for_update(cycle_count_id)
            next_status(cycle_count.status, CycleCountAction.RECORD_COUNT)
            items = []
            for entry, quantity in parsed:
                item = self._find_item(
                    cycle_count.id,
                    item_id=entry.get("item_id"),
                    stock_item_id=entry.get("stock_item_id"),
                    batch_id=entry.get("batch_id"),
                )
                self._apply_count(item, quantity, counted_by, entry.get("notes"))
                items.append(item)
            self.db.flush()
            summary = summarize_items(self._items(cycle_count.id))
            self._transition(
                cycle_count, CycleCountAction.RECORD_COUNT, **self._aggregate_values(summary)
            )
            log_action(
                self.db, "bulk_count", "cycle_count", cycle_count.id, user_id=counted_by,
                details={"entries": len(items)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for item in items:
            self.db.refresh(item)
        logger.info("Recorded %s counts for cycle count ID=%s", len(items), cycle_count_id)
        return items

    def get_progress(self, cycle_count_id: int) -> Dict[str, Any]:
        self._require(Permission.CYCLE_COUNT_VIEW)
        cycle_count = self._get(cycle_count_id)
        summary = summarize_items(self._items(cycle_count.id))
        return {
            "cycle_count_id": cycle_count.id,
            "status": cycle_count.status,
            "total_items": summary.total_items,
            "items_counted": summary.items_counted,
            "items_remaining": summary.items_remaining,
            "progress_percent": summary.progress_percent,
            "is_complete": summary.is_complete,
        }

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def submit_for_review(self, cycle_count_id: int, actor_id: Optional[int] = None) -> CycleCount:
        """Hand a fully counted session over for approval."""
        self._require(Permission.CYCLE_COUNT_COUNT)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.SUBMIT)

        summary = summarize_items(self._items(cycle_count.id))
        if summary.total_items == 0:
            raise ValidationError("Cannot submit cycle count with no items")
        if summary.items_remaining > 0:
            raise IncompleteCount(summary.items_remaining, summary.total_items)

        try:
            self._transition(
                cycle_count, CycleCountAction.SUBMIT, **self._aggregate_values(summary)
            )
            log_action(
                self.db, "submit", "cycle_count", cycle_count.id, user_id=actor_id,
                details={
                    "items_with_variance": summary.items_with_variance,
                    "total_variance_cost": str(summary.total_variance_cost),
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(cycle_count)
        logger.info("Cycle count %s submitted for review", cycle_count.count_number)
        return cycle_count

    def approve(self, cycle_count_id: int, approver_id: Optional[int] = None) -> PublicationResult:
        """Complete the count and post its variances to the stock ledger.

        The status change commits before any adjustment is posted, so a second
        approval fails on the status check and never publishes again.

        Raises:
            AdjustmentPublicationError: when some adjustments failed; the count
                stays COMPLETED and the failures can be retried.
        """
        self._require(Permission.CYCLE_COUNT_APPROVE)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.APPROVE)

        summary = summarize_items(self._items(cycle_count.id))
        try:
            self._transition(
                cycle_count, CycleCountAction.APPROVE,
                approved_by=approver_id, completed_at=_now(),
                **self._aggregate_values(summary),
            )
            log_action(
                self.db, "approve", "cycle_count", cycle_count.id, user_id=approver_id,
                details={
                    "accuracy_percent": str(summary.accuracy_percent),
                    "total_variance_cost": str(summary.total_variance_cost),
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Cycle count %s approved by user=%s", cycle_count.count_number, approver_id)
        return self._publish(cycle_count, approver_id)

    def publish_adjustments(self, cycle_count_id: int, actor_id: Optional[int] = None) -> PublicationResult:
        """Retry adjustments of a completed count that failed earlier."""
        self._require(Permission.CYCLE_COUNT_APPROVE)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.PUBLISH_ADJUSTMENTS)
        return self._publish(cycle_count, actor_id)

    def _publish(self, cycle_count: CycleCount, actor_id: Optional[int]) -> PublicationResult:
        result = AdjustmentPublisher(self.db, self.ledger).publish(cycle_count, actor_id)
        if result.adjustments_created or result.adjustments_failed:
            try:
                log_action(
                    self.db, "publish_adjustments", "cycle_count", cycle_count.id, user_id=actor_id,
                    details={
                        "created": result.adjustments_created,
                        "failed": result.adjustments_failed,
                    },
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        if result.adjustments_failed:
            raise AdjustmentPublicationError(cycle_count.id, result)
        return result

    def reject(
        self,
        cycle_count_id: int,
        reason: str,
        clear_counts: bool = False,
        actor_id: Optional[int] = None,
    ) -> CycleCount:
        """Send a count back for recounting.

        With ``clear_counts`` every entered count is wiped; otherwise counts
        are kept so only the questionable rows need re-entry. Snapshots are
        never touched.
        """
        self._require(Permission.CYCLE_COUNT_APPROVE)
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required", field="reason")
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.REJECT)

        values: Dict[str, Any] = {
            "notes": _append_note(cycle_count.notes, "REJECTED", reason.strip()),
        }
        if clear_counts:
            values.update(
                items_counted=0,
                items_with_variance=0,
                total_variance_cost=Decimal("0"),
                accuracy_percent=None,
            )

        try:
            self._transition(cycle_count, CycleCountAction.REJECT, **values)
            if clear_counts:
                self.db.execute(
                    update(CycleCountItem)
                    .where(CycleCountItem.cycle_count_id == cycle_count.id)
                    .values(
                        counted_quantity=None,
                        variance=None,
                        variance_percent=None,
                        variance_cost=None,
                        counted_by=None,
                        counted_at=None,
                        notes=None,
                    )
                    .execution_options(synchronize_session=False)
                )
            log_action(
                self.db, "reject", "cycle_count", cycle_count.id, user_id=actor_id,
                details={"reason": reason.strip(), "clear_counts": clear_counts},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.expire_all()
        logger.info(
            "Cycle count %s rejected (clear_counts=%s)", cycle_count.count_number, clear_counts
        )
        return cycle_count

    def cancel(
        self,
        cycle_count_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> CycleCount:
        """Abandon a count that has not been completed. No adjustments are made."""
        self._require(Permission.CYCLE_COUNT_CANCEL)
        cycle_count = self._get(cycle_count_id)
        next_status(cycle_count.status, CycleCountAction.CANCEL)

        values: Dict[str, Any] = {"cancelled_at": _now()}
        if reason and reason.strip():
            values["notes"] = _append_note(cycle_count.notes, "CANCELLED", reason.strip())

        try:
            self._transition(cycle_count, CycleCountAction.CANCEL, **values)
            log_action(
                self.db, "cancel", "cycle_count", cycle_count.id, user_id=actor_id,
                details={"reason": reason or ""},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(cycle_count)
        logger.info("Cycle count %s cancelled", cycle_count.count_number)
        return cycle_count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, cycle_count_id: int) -> CycleCount:
        self._require(Permission.CYCLE_COUNT_VIEW)
        return self._get(cycle_count_id)

    def get_status(self, cycle_count_id: int, thresholds: Optional[ThresholdConfig] = None) -> Dict[str, Any]:
        """Header, progress and a freshly computed variance summary."""
        self._require(Permission.CYCLE_COUNT_VIEW)
        thresholds = thresholds or self.thresholds
        cycle_count = self._get(cycle_count_id)
        items = self._items(cycle_count.id)
        summary = summarize_items(items)
        flagged = sum(
            1 for item in items
            if exceeds_threshold(item.variance, item.variance_percent, item.variance_cost, thresholds)
        )
        return {
            "cycle_count": cycle_count,
            "items": items,
            "summary": summary,
            "items_flagged": flagged,
            "thresholds": thresholds,
        }

    def list_counts(
        self,
        warehouse_id: Optional[int] = None,
        status: Optional[CycleCountStatus] = None,
        count_type: Optional[CycleCountType] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[CycleCount], int]:
        self._require(Permission.CYCLE_COUNT_VIEW)
        query = self.db.query(CycleCount)
        if warehouse_id is not None:
            query = query.filter(CycleCount.warehouse_id == warehouse_id)
        if status is not None:
            query = query.filter(CycleCount.status == status)
        if count_type is not None:
            query = query.filter(CycleCount.type == count_type)
        total = query.count()
        counts = query.order_by(CycleCount.id.desc()).offset(skip).limit(limit).all()
        return counts, total

    def get_count_sheet(self, cycle_count_id: int) -> Dict[str, Any]:
        """Rows for the people doing the count.

        Book quantity and variance are left out of blind counts.
        """
        self._require(Permission.CYCLE_COUNT_VIEW)
        cycle_count = self._get(cycle_count_id)
        rows = (
            self.db.query(CycleCountItem, StockItem, StockBatch)
            .join(StockItem, StockItem.id == CycleCountItem.stock_item_id)
            .outerjoin(StockBatch, StockBatch.id == CycleCountItem.batch_id)
            .filter(CycleCountItem.cycle_count_id == cycle_count.id)
            .order_by(StockItem.category, StockItem.name, CycleCountItem.id)
            .all()
        )

        sheet = []
        for item, stock_item, batch in rows:
            row = {
                "item_id": item.id,
                "stock_item_id": stock_item.id,
                "name": stock_item.name,
                "sku": stock_item.sku,
                "category": stock_item.category,
                "unit": stock_item.unit,
                "batch_id": item.batch_id,
                "batch_number": batch.batch_number if batch else None,
                "counted_quantity": item.counted_quantity,
                "notes": item.notes,
            }
            if not cycle_count.blind_count:
                row.update(
                    system_quantity=item.system_quantity,
                    variance=item.variance,
                    variance_percent=item.variance_percent,
                )
            sheet.append(row)

        return {
            "cycle_count_id": cycle_count.id,
            "count_number": cycle_count.count_number,
            "status": cycle_count.status,
            "blind_count": cycle_count.blind_count,
            "items": sheet,
        }
