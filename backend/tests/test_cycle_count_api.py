"""API tests for cycle count endpoints."""

from decimal import Decimal

import pytest

from cyclecount.models.stock import StockLevel

BASE = "/api/v1/cycle-counts"


def _dec(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def spot_count(client, auth_headers, warehouse, scenario_items):
    """A DRAFT spot count over the three scenario items."""
    response = client.post(BASE, headers=auth_headers, json={
        "type": "spot",
        "warehouse_id": warehouse.id,
        "scope": {"stock_item_ids": [i.id for i in scenario_items]},
        "notes": "Weekly spot check",
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def started_count(client, auth_headers, spot_count):
    response = client.post(f"{BASE}/{spot_count['id']}/start", headers=auth_headers)
    assert response.status_code == 200
    return response.json()


def _count_all(client, headers, cycle_count_id, items, quantities):
    for item, quantity in zip(items, quantities):
        response = client.post(
            f"{BASE}/{cycle_count_id}/counts",
            headers=headers,
            json={"stock_item_id": item.id, "quantity": quantity},
        )
        assert response.status_code == 200


class TestCycleCountFlow:
    """Test the full lifecycle over HTTP."""

    def test_create(self, spot_count):
        assert spot_count["status"] == "draft"
        assert spot_count["type"] == "spot"
        assert spot_count["total_items"] == 3
        assert spot_count["count_number"].startswith("CC-")
        assert spot_count["version"] == 1

    def test_full_lifecycle(self, client, auth_headers, staff_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        assert started_count["status"] == "in_progress"

        _count_all(client, staff_headers, cc_id, scenario_items, ["10", "4", "2"])

        progress = client.get(f"{BASE}/{cc_id}/progress", headers=staff_headers).json()
        assert progress["is_complete"] is True
        assert _dec(progress["progress_percent"]) == 100

        response = client.post(f"{BASE}/{cc_id}/submit", headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "pending_review"

        response = client.post(f"{BASE}/{cc_id}/approve", headers=auth_headers)
        assert response.status_code == 200
        result = response.json()
        assert result["status"] == "completed"
        assert result["adjustments_created"] == 2
        assert result["adjustments_failed"] == 0
        assert len(result["adjustment_ids"]) == 2

        detail = client.get(f"{BASE}/{cc_id}", headers=staff_headers).json()
        assert detail["cycle_count"]["status"] == "completed"
        assert detail["cycle_count"]["approved_by"] == 1
        assert _dec(detail["summary"]["accuracy_percent"]) == Decimal("33.33")
        assert _dec(detail["summary"]["total_variance_cost"]) == Decimal("-1")
        assert detail["summary"]["items_with_variance"] == 2
        assert detail["items_flagged"] == 2
        assert [i["adjustment_made"] for i in detail["items"]] == [False, True, True]

    def test_record_count_returns_variance(self, client, staff_headers, started_count, scenario_items):
        response = client.post(
            f"{BASE}/{started_count['id']}/counts",
            headers=staff_headers,
            json={"stock_item_id": scenario_items[1].id, "quantity": "4", "notes": "one dented"},
        )
        assert response.status_code == 200
        data = response.json()
        assert _dec(data["variance"]) == Decimal("-1")
        assert _dec(data["variance_percent"]) == Decimal("-20")
        assert _dec(data["variance_cost"]) == Decimal("-3")
        assert data["counted_by"] == 2
        assert data["notes"] == "one dented"

    def test_bulk_counts(self, client, staff_headers, started_count, scenario_items):
        response = client.post(
            f"{BASE}/{started_count['id']}/counts/bulk",
            headers=staff_headers,
            json={"entries": [
                {"stock_item_id": i.id, "quantity": q}
                for i, q in zip(scenario_items, ["10", "4", "2"])
            ]},
        )
        assert response.status_code == 200
        assert len(response.json()) == 3

    def test_update_schedule(self, client, auth_headers, spot_count):
        response = client.patch(
            f"{BASE}/{spot_count['id']}",
            headers=auth_headers,
            json={"scheduled_at": "2030-01-15T09:00:00Z"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "scheduled"

    def test_reject_with_clear_counts(self, client, auth_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])
        client.post(f"{BASE}/{cc_id}/submit", headers=auth_headers)

        response = client.post(
            f"{BASE}/{cc_id}/reject",
            headers=auth_headers,
            json={"reason": "recount needed", "clear_counts": True},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"
        assert response.json()["items_counted"] == 0

    def test_cancel_without_body(self, client, auth_headers, spot_count):
        response = client.post(f"{BASE}/{spot_count['id']}/cancel", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_populate_items(self, client, auth_headers, warehouse, spot_count, scenario_items):
        response = client.post(
            f"{BASE}/{spot_count['id']}/items/populate",
            headers=auth_headers,
            json={"stock_item_ids": [scenario_items[0].id]},
        )
        assert response.status_code == 200
        assert response.json()["total_items"] == 1


class TestCycleCountErrors:
    """Test error mapping."""

    def test_requires_authentication(self, client):
        response = client.get(BASE)
        assert response.status_code == 401

    def test_not_found(self, client, auth_headers):
        response = client.get(f"{BASE}/99999", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_incomplete_submit(self, client, staff_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, staff_headers, cc_id, scenario_items[:2], ["10", "4"])

        response = client.post(f"{BASE}/{cc_id}/submit", headers=staff_headers)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "incomplete_count"
        assert body["remaining"] == 1

    def test_invalid_transition(self, client, auth_headers, started_count):
        response = client.post(f"{BASE}/{started_count['id']}/approve", headers=auth_headers)
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["status"] == "in_progress"
        assert body["allowed_from"] == ["pending_review"]

    def test_staff_cannot_approve(self, client, staff_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, staff_headers, cc_id, scenario_items, ["10", "4", "2"])
        client.post(f"{BASE}/{cc_id}/submit", headers=staff_headers)

        response = client.post(f"{BASE}/{cc_id}/approve", headers=staff_headers)

        assert response.status_code == 403
        assert response.json()["permission"] == "cycle_count:approve"

    def test_staff_cannot_create(self, client, staff_headers, warehouse):
        response = client.post(BASE, headers=staff_headers, json={
            "type": "full", "warehouse_id": warehouse.id,
        })
        assert response.status_code == 403

    def test_negative_quantity(self, client, staff_headers, started_count, scenario_items):
        response = client.post(
            f"{BASE}/{started_count['id']}/counts",
            headers=staff_headers,
            json={"stock_item_id": scenario_items[0].id, "quantity": "-2"},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_quantity_finer_than_stored_scale(self, client, staff_headers, started_count, scenario_items):
        response = client.post(
            f"{BASE}/{started_count['id']}/counts",
            headers=staff_headers,
            json={"stock_item_id": scenario_items[1].id, "quantity": "5.0004"},
        )
        assert response.status_code == 422
        assert response.json()["field"] == "quantity"

    def test_random_count_needs_percent(self, client, auth_headers, warehouse, scenario_items):
        response = client.post(BASE, headers=auth_headers, json={
            "type": "random", "warehouse_id": warehouse.id,
        })
        assert response.status_code == 422
        assert response.json()["field"] == "sample_percent"

    def test_reject_requires_reason(self, client, auth_headers, started_count):
        response = client.post(
            f"{BASE}/{started_count['id']}/reject", headers=auth_headers, json={"reason": ""}
        )
        assert response.status_code == 422

    def test_partial_publication(self, client, auth_headers, db_session, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])
        client.post(f"{BASE}/{cc_id}/submit", headers=auth_headers)

        level = (
            db_session.query(StockLevel)
            .filter(StockLevel.stock_item_id == scenario_items[1].id)
            .one()
        )
        level.quantity = Decimal("0")
        db_session.commit()

        response = client.post(f"{BASE}/{cc_id}/approve", headers=auth_headers)
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "adjustment_publication_failed"
        assert body["adjustments_created"] == 1
        assert body["adjustments_failed"] == 1

        level.quantity = Decimal("5")
        db_session.commit()

        response = client.post(f"{BASE}/{cc_id}/adjustments/retry", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["adjustments_created"] == 1


class TestCycleCountQueries:
    """Test listing, count sheets and reports."""

    def test_list_paginates(self, client, auth_headers, warehouse, scenario_items):
        for _ in range(3):
            client.post(BASE, headers=auth_headers, json={"type": "full", "warehouse_id": warehouse.id})

        response = client.get(f"{BASE}?limit=2", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert len(data["items"]) == 2
        assert data["has_more"] is True
        assert data["items"][0]["id"] > data["items"][1]["id"]

    def test_list_filters_by_status(self, client, auth_headers, started_count, warehouse):
        client.post(BASE, headers=auth_headers, json={"type": "full", "warehouse_id": warehouse.id})

        data = client.get(f"{BASE}?status=in_progress", headers=auth_headers).json()

        assert data["total"] == 1
        assert data["items"][0]["id"] == started_count["id"]

    def test_blind_count_sheet(self, client, auth_headers, staff_headers, warehouse, scenario_items):
        created = client.post(BASE, headers=auth_headers, json={
            "type": "spot",
            "warehouse_id": warehouse.id,
            "scope": {"stock_item_ids": [i.id for i in scenario_items]},
            "blind_count": True,
        }).json()
        client.post(f"{BASE}/{created['id']}/start", headers=auth_headers)

        sheet = client.get(f"{BASE}/{created['id']}/count-sheet", headers=staff_headers).json()

        assert sheet["blind_count"] is True
        assert len(sheet["items"]) == 3
        assert all("system_quantity" not in row for row in sheet["items"])

    def test_flagged_report(self, client, auth_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])

        response = client.get(f"{BASE}/{cc_id}/report?flagged_only=true", headers=auth_headers)

        assert response.status_code == 200
        report = response.json()
        assert report["items_flagged"] == 2
        assert [row["name"] for row in report["items"]] == ["Olive Oil 5L", "Sea Salt 1kg"]
        assert all(row["flagged"] for row in report["items"])

    def test_report_threshold_override(self, client, auth_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])

        report = client.get(
            f"{BASE}/{cc_id}/report?percent_threshold=50&cost_threshold=1000", headers=auth_headers
        ).json()

        assert report["items_flagged"] == 1
        assert _dec(report["thresholds"]["percent_threshold"]) == 50

    def test_report_export(self, client, auth_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])

        response = client.get(f"{BASE}/{cc_id}/report/export?format=csv", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert started_count["count_number"] in response.headers["content-disposition"]
        assert "Olive Oil 5L" in response.content.decode("utf-8-sig")

    def test_report_export_rejects_unknown_format(self, client, auth_headers, started_count):
        response = client.get(
            f"{BASE}/{started_count['id']}/report/export?format=docx", headers=auth_headers
        )
        assert response.status_code == 422

    def test_accuracy_report_requires_manager(self, client, staff_headers):
        response = client.get("/api/v1/cycle-count-reports/accuracy", headers=staff_headers)
        assert response.status_code == 403

    def test_accuracy_report(self, client, auth_headers, started_count, scenario_items):
        cc_id = started_count["id"]
        _count_all(client, auth_headers, cc_id, scenario_items, ["10", "4", "2"])
        client.post(f"{BASE}/{cc_id}/submit", headers=auth_headers)
        client.post(f"{BASE}/{cc_id}/approve", headers=auth_headers)

        response = client.get("/api/v1/cycle-count-reports/accuracy", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["counts_completed"] == 1
        assert _dec(data["average_accuracy"]) == Decimal("33.33")

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
