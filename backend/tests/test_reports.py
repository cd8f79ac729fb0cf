"""Tests for cycle count reporting."""

import csv
import io
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from cyclecount.core.exceptions import CycleCountNotFound, Unauthorized
from cyclecount.core.rbac_policy import RBACPolicy
from cyclecount.models.cycle_count import CycleCountType
from cyclecount.services import report_export
from cyclecount.services.cycle_count_report_service import CycleCountReportService
from cyclecount.services.cycle_count_service import CycleCountService
from cyclecount.services.item_selector import CountScope
from cyclecount.services.variance_service import ThresholdConfig


def _run_count(service, warehouse, items, quantities, approve=True):
    cycle_count = service.create(
        CycleCountType.SPOT, warehouse.id, CountScope(stock_item_ids=[i.id for i in items])
    )
    service.start(cycle_count.id)
    for item, quantity in zip(items, quantities):
        service.record_count(cycle_count.id, quantity, stock_item_id=item.id)
    service.submit_for_review(cycle_count.id)
    if approve:
        service.approve(cycle_count.id, approver_id=1)
    return cycle_count


@pytest.fixture
def service(db_session):
    return CycleCountService(db_session)


@pytest.fixture
def reports(db_session):
    return CycleCountReportService(db_session)


class TestCountReport:
    """Test the per-count variance report."""

    def test_every_row_carries_flag(self, service, reports, warehouse, scenario_items):
        cycle_count = _run_count(service, warehouse, scenario_items, ["10", "4", "2"], approve=False)

        report = reports.get_report(cycle_count.id)

        assert [row["flagged"] for row in report["items"]] == [False, True, True]
        assert report["items_flagged"] == 2
        assert report["summary"].accuracy_percent == Decimal("33.33")
        assert report["thresholds"] == {
            "percent_threshold": Decimal("5"),
            "cost_threshold": Decimal("1000"),
        }

    def test_flagged_only_sorted_by_severity(self, service, reports, warehouse, scenario_items):
        cycle_count = _run_count(service, warehouse, scenario_items, ["10", "4", "2"], approve=False)

        report = reports.get_report(cycle_count.id, flagged_only=True)

        assert [row["name"] for row in report["items"]] == ["Olive Oil 5L", "Sea Salt 1kg"]
        # Summary still covers every row
        assert report["summary"].items_counted == 3

    def test_cost_threshold_alone_flags(self, service, reports, warehouse, scenario_items):
        cycle_count = _run_count(service, warehouse, scenario_items, ["10", "4", "2"], approve=False)

        report = reports.get_report(
            cycle_count.id,
            thresholds=ThresholdConfig(percent_threshold=Decimal("1000"), cost_threshold=Decimal("2.50")),
        )

        flagged = [row["name"] for row in report["items"] if row["flagged"]]
        assert flagged == ["Olive Oil 5L"]

    def test_report_shows_adjustments(self, service, reports, warehouse, scenario_items):
        cycle_count = _run_count(service, warehouse, scenario_items, ["10", "4", "2"])

        rows = reports.get_report(cycle_count.id)["items"]

        assert [row["adjustment_made"] for row in rows] == [False, True, True]
        assert rows[1]["adjustment_id"] is not None

    def test_missing_count(self, reports):
        with pytest.raises(CycleCountNotFound):
            reports.get_report(4242)

    def test_requires_view_permission(self, db_session):
        guest = CycleCountReportService(db_session, capabilities=RBACPolicy.for_role("guest"))
        with pytest.raises(Unauthorized):
            guest.get_inventory_accuracy()


class TestInventoryAccuracy:
    """Test the accuracy trend."""

    def test_accuracy_over_counts(self, service, reports, warehouse, scenario_items):
        _run_count(service, warehouse, scenario_items, ["10", "4", "2"])
        # Books are now [10, 4, 2] after the first count's adjustments
        _run_count(service, warehouse, scenario_items, ["10", "4", "2"])

        data = reports.get_inventory_accuracy(warehouse_id=warehouse.id)

        assert data["counts_completed"] == 2
        assert [p["accuracy_percent"] for p in data["data_points"]] == [Decimal("33.33"), Decimal("100.00")]
        assert data["average_accuracy"] == Decimal("66.67")
        assert data["min_accuracy"] == Decimal("33.33")
        assert data["max_accuracy"] == Decimal("100.00")
        assert data["total_absolute_variance_cost"] == Decimal("5.00")

    def test_open_counts_are_ignored(self, service, reports, warehouse, scenario_items):
        _run_count(service, warehouse, scenario_items, ["10", "4", "2"], approve=False)

        data = reports.get_inventory_accuracy()

        assert data["counts_completed"] == 0
        assert data["average_accuracy"] is None

    def test_date_window(self, service, reports, warehouse, scenario_items):
        _run_count(service, warehouse, scenario_items, ["10", "4", "2"])

        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assert reports.get_inventory_accuracy(start=tomorrow)["counts_completed"] == 0


class TestVarianceAnalysis:
    """Test cross-count variance analysis."""

    def test_analysis(self, service, reports, warehouse, scenario_items, make_stock_item):
        loose = make_stock_item(warehouse, 6, "0.50", name="Paper Bags")
        _run_count(service, warehouse, scenario_items + [loose], ["10", "4", "2", "5"])

        data = reports.get_variance_analysis(warehouse_id=warehouse.id)

        assert data["counts_analyzed"] == 1
        assert data["items_counted"] == 4
        assert data["items_with_variance"] == 3
        assert data["variance_rate_percent"] == Decimal("75.00")
        assert data["total_absolute_variance_cost"] == Decimal("5.50")

        assert data["top_items_by_cost"][0]["name"] == "Olive Oil 5L"
        categories = {b["category"]: b for b in data["variance_by_category"]}
        assert set(categories) == {"Oils", "Dry Goods", "Uncategorized"}
        assert categories["Dry Goods"]["net_variance_cost"] == Decimal("2.00")
        assert categories["Uncategorized"]["absolute_variance_cost"] == Decimal("0.50")

    def test_frequency_across_counts(self, service, reports, warehouse, scenario_items):
        _run_count(service, warehouse, scenario_items, ["10", "4", "2"])
        _run_count(service, warehouse, scenario_items, ["10", "3", "2"])

        data = reports.get_variance_analysis(limit=1)

        top = data["top_items_by_frequency"]
        assert len(top) == 1
        assert top[0]["name"] == "Olive Oil 5L"
        assert top[0]["occurrences"] == 2
        assert top[0]["total_variance"] == Decimal("-2")

    def test_empty(self, reports):
        data = reports.get_variance_analysis()
        assert data["counts_analyzed"] == 0
        assert data["variance_rate_percent"] is None
        assert data["top_items_by_cost"] == []


class TestReportExport:
    """Test CSV, Excel and PDF exports of the variance report."""

    @pytest.fixture
    def report(self, service, reports, warehouse, scenario_items):
        cycle_count = _run_count(service, warehouse, scenario_items, ["10", "4", "2"], approve=False)
        return reports.get_report(cycle_count.id)

    def test_csv(self, report):
        output, media_type, filename = report_export.export_report(report, "csv")

        rows = list(csv.reader(io.StringIO(output.getvalue().decode("utf-8-sig"))))
        assert media_type == "text/csv"
        assert filename == f"cycle_count_{report['cycle_count'].count_number}.csv"
        assert rows[0] == report_export.REPORT_HEADERS
        assert [r[0] for r in rows[1:]] == ["Flour 25kg", "Olive Oil 5L", "Sea Salt 1kg"]
        assert rows[2][10] == "Yes"

    def test_excel(self, report):
        output, _, filename = report_export.export_report(report, "excel")

        workbook = load_workbook(output)
        assert filename.endswith(".xlsx")
        assert workbook.sheetnames == [report["cycle_count"].count_number, "Summary"]
        assert workbook.active.max_row == 4
        assert workbook["Summary"]["A1"].value == "Count number"

    def test_pdf(self, report):
        output, media_type, _ = report_export.export_report(report, "pdf")
        assert media_type == "application/pdf"
        assert output.getvalue().startswith(b"%PDF")

    def test_unknown_format(self, report):
        with pytest.raises(ValueError):
            report_export.export_report(report, "docx")
