"""Tests for cycle count item selection."""

from decimal import Decimal

import pytest

from cyclecount.core.exceptions import ValidationError
from cyclecount.models.cycle_count import CycleCountType
from cyclecount.services.item_selector import AbcClass, CountScope, ItemSelector, SelectedItem


class TestFullSelection:
    """Test FULL counts and batch expansion."""

    def test_selects_stocked_active_items(self, db_session, warehouse, make_stock_item):
        stocked = make_stock_item(warehouse, 10, 2)
        make_stock_item(warehouse, 0, 2)
        make_stock_item(warehouse, 5, 2, active=False)

        selected = ItemSelector(db_session).select(CycleCountType.FULL, warehouse.id)

        assert selected == [SelectedItem(stocked.id, None)]

    def test_expands_batches_with_stock(self, db_session, warehouse, make_stock_item):
        item = make_stock_item(
            warehouse, 30, 2,
            batches=[("LOT-A", 20, "1.90"), ("LOT-B", 10, "2.20"), ("LOT-C", 0, "2.00")],
        )

        selected = ItemSelector(db_session).select(CycleCountType.FULL, warehouse.id)

        assert len(selected) == 2
        assert all(s.stock_item_id == item.id and s.batch_id is not None for s in selected)

    def test_batches_can_be_ignored(self, db_session, warehouse, make_stock_item):
        item = make_stock_item(warehouse, 30, 2, batches=[("LOT-A", 20, 2), ("LOT-B", 10, 2)])

        selected = ItemSelector(db_session).select(
            CycleCountType.FULL, warehouse.id, CountScope(include_batches=False)
        )

        assert selected == [SelectedItem(item.id)]

    def test_other_warehouse_is_ignored(self, db_session, warehouse, make_stock_item):
        from cyclecount.models.warehouse import Warehouse

        other = Warehouse(name="Overflow", code="OVF", active=True)
        db_session.add(other)
        db_session.commit()
        make_stock_item(other, 10, 1)

        assert ItemSelector(db_session).select(CycleCountType.FULL, warehouse.id) == []


class TestAbcClassification:
    """Test ABC classification by stock value."""

    def test_classes_by_cumulative_value(self, db_session, warehouse, make_stock_item):
        a = make_stock_item(warehouse, 400, 2)   # 800
        b = make_stock_item(warehouse, 50, 3)    # 150
        c = make_stock_item(warehouse, 50, 1)    # 50

        classes = ItemSelector(db_session).classify_abc(warehouse.id)

        assert classes == {a.id: AbcClass.A, b.id: AbcClass.B, c.id: AbcClass.C}

    def test_zero_value_warehouse_is_all_c(self, db_session, warehouse, make_stock_item):
        items = [make_stock_item(warehouse, 10, 0), make_stock_item(warehouse, 3, 0)]

        classes = ItemSelector(db_session).classify_abc(warehouse.id)

        assert set(classes.values()) == {AbcClass.C}
        assert set(classes) == {i.id for i in items}

    def test_select_class_b(self, db_session, warehouse, make_stock_item):
        make_stock_item(warehouse, 400, 2)
        b = make_stock_item(warehouse, 50, 3)
        make_stock_item(warehouse, 50, 1)

        selected = ItemSelector(db_session).select(CycleCountType.ABC_CLASS_B, warehouse.id)

        assert selected == [SelectedItem(b.id)]


class TestRandomSelection:
    """Test RANDOM sampling."""

    @pytest.fixture
    def ten_items(self, warehouse, make_stock_item):
        return [make_stock_item(warehouse, i + 1, 1) for i in range(10)]

    def test_sample_size_rounds_half_up(self, db_session, warehouse, ten_items):
        selected = ItemSelector(db_session).select(
            CycleCountType.RANDOM, warehouse.id, CountScope(sample_percent=Decimal("25"), seed=7)
        )
        assert len(selected) == 3

    def test_sample_is_at_least_one(self, db_session, warehouse, ten_items):
        selected = ItemSelector(db_session).select(
            CycleCountType.RANDOM, warehouse.id, CountScope(sample_percent=Decimal("1"), seed=7)
        )
        assert len(selected) == 1

    def test_seed_makes_sample_reproducible(self, db_session, warehouse, ten_items):
        selector = ItemSelector(db_session)
        scope = CountScope(sample_percent=Decimal("50"), seed=42)
        first = selector.select(CycleCountType.RANDOM, warehouse.id, scope)
        second = selector.select(CycleCountType.RANDOM, warehouse.id, scope)
        assert first == second
        assert len({s.stock_item_id for s in first}) == 5

    @pytest.mark.parametrize("percent", [None, Decimal("0"), Decimal("-5"), Decimal("100.5")])
    def test_invalid_percent(self, db_session, warehouse, ten_items, percent):
        with pytest.raises(ValidationError) as exc:
            ItemSelector(db_session).select(
                CycleCountType.RANDOM, warehouse.id, CountScope(sample_percent=percent)
            )
        assert exc.value.field == "sample_percent"


class TestSpotSelection:
    """Test SPOT counts."""

    def test_includes_zero_stock_items(self, db_session, warehouse, make_stock_item):
        empty = make_stock_item(warehouse, 0, 1)
        stocked = make_stock_item(warehouse, 4, 1)

        selected = ItemSelector(db_session).select(
            CycleCountType.SPOT, warehouse.id, CountScope(stock_item_ids=[stocked.id, empty.id])
        )

        assert selected == [SelectedItem(empty.id), SelectedItem(stocked.id)]

    def test_requires_items(self, db_session, warehouse):
        with pytest.raises(ValidationError):
            ItemSelector(db_session).select(CycleCountType.SPOT, warehouse.id, CountScope())

    def test_unknown_or_inactive_items_rejected(self, db_session, warehouse, make_stock_item):
        inactive = make_stock_item(warehouse, 3, 1, active=False)

        with pytest.raises(ValidationError) as exc:
            ItemSelector(db_session).select(
                CycleCountType.SPOT, warehouse.id, CountScope(stock_item_ids=[inactive.id, 9999])
            )
        assert "9999" in str(exc.value)
