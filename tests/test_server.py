"""
HTTP surface, exercised through FastAPI's TestClient on the memory backend.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FailingInventoryStore
from workshopledger import config, server
from workshopledger.model.inventory import InventoryLedger

CITIES = ["atlanta-feb-2026", "dallas-jan-2026"]


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr("workshopledger.model.LEDGER_BACKEND", "memory")
    monkeypatch.setattr(config, "WORKSHOP_CITIES", list(CITIES))
    monkeypatch.setattr(config, "PUBLIC_LIMITS", {"ga": 35, "vip": 15})
    with TestClient(server.app) as c:
        yield c
    server.app.dependency_overrides.clear()


def paid_order(**overrides):
    body = {
        "session_id": "cs_1",
        "city_id": "dallas-jan-2026",
        "ticket_type": "ga",
        "quantity": 1,
        "email": "member@example.com",
        "is_member": True,
        "original_amount_cents": 10000,
        "discount_amount_cents": 2000,
        "final_amount_cents": 8000,
    }
    body.update(overrides)
    return body


class TestPublicInventory:
    def test_list_seeded_cities(self, client):
        resp = client.get("/api/inventory")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [c["city_id"] for c in data] == CITIES
        assert data[0]["public_available"] == {"ga": 35, "vip": 15}
        assert "actual_limits" not in data[0]

    def test_unknown_city_is_404(self, client):
        resp = client.get("/api/inventory/nowhere-2030")

        assert resp.status_code == 404

    def test_availability(self, client):
        resp = client.get(
            "/api/inventory/dallas-jan-2026/availability",
            params={"tier": "vip", "quantity": 2},
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["message"] == "15 VIP tickets available"

    def test_bad_tier_is_400(self, client):
        resp = client.get(
            "/api/inventory/dallas-jan-2026/availability",
            params={"tier": "gold"},
        )

        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_INPUT"


class TestCheckoutFlow:
    def test_validate(self, client):
        resp = client.post("/api/checkout/validate", json={
            "city_id": "dallas-jan-2026", "ticket_type": "VIP", "quantity": 2,
        })

        assert resp.status_code == 200
        assert resp.json()["data"]["valid"] is True

    def test_fulfill_member_order_then_not_eligible(self, client):
        before = client.post("/api/discount/eligibility", json={
            "email": "Member@Example.com", "ticket_type": "ga",
        }).json()["data"]

        resp = client.post("/api/checkout/fulfill", json=paid_order())

        after = client.post("/api/discount/eligibility", json={
            "email": "member@example.com", "ticket_type": "ga",
        }).json()["data"]
        assert before["eligible"] is True
        assert before["discount_percent"] == 20
        assert resp.status_code == 200
        assert resp.json()["data"]["discount_recorded"] is True
        assert after["eligible"] is False

    def test_eligibility_with_numeric_email(self, client):
        resp = client.post("/api/discount/eligibility", json={
            "email": 123, "ticket_type": "ga",
        })

        assert resp.status_code == 200
        assert resp.json()["data"]["eligible"] is False

    def test_fulfill_unknown_city_is_404(self, client):
        resp = client.post(
            "/api/checkout/fulfill", json=paid_order(city_id="nowhere-2030")
        )

        assert resp.status_code == 404
        assert resp.json()["data"]["code"] == "CITY_NOT_FOUND"

    def test_fulfill_missing_fields_is_400(self, client):
        resp = client.post("/api/checkout/fulfill", json={"session_id": "x"})

        assert resp.status_code == 400


class TestAdminInventory:
    def test_dashboard_flags(self, client):
        resp = client.get(
            "/api/admin/inventory",
            params={"analytics": "true", "alerts": "true"},
        )

        data = resp.json()["data"]
        assert data["summary"]["total_cities"] == 2
        assert len(data["inventories"]) == 2
        assert "city_breakdown" in data["analytics"]
        assert "notification_channels" in data["alert_config"]

    def test_expand_and_audit(self, client):
        resp = client.post(
            "/api/admin/inventory/dallas-jan-2026/expand",
            json={"tier": "ga", "additional_spots": 10,
                  "authorized_by": "admin_1"},
        )
        detail = client.get(
            "/api/admin/inventory/dallas-jan-2026",
            params={"transactions": "true", "expansions": "true"},
        ).json()["data"]

        assert resp.status_code == 200
        assert resp.json()["new_limit"] == 45
        assert detail["inventory"]["actual_limits"]["ga"] == 45
        assert detail["inventory"]["public_limits"]["ga"] == 35
        assert detail["expansions"][0]["reason"] == "Admin expansion via API"
        assert detail["transactions"][0]["operation"] == "expand"

    def test_raise_public_limit(self, client):
        client.post(
            "/api/admin/inventory/dallas-jan-2026/expand",
            json={"tier": "vip", "additional_spots": 5,
                  "authorized_by": "admin_1"},
        )
        ok = client.post(
            "/api/admin/inventory/dallas-jan-2026/public-limit",
            json={"tier": "vip", "additional_spots": 5,
                  "authorized_by": "admin_1", "reason": "open reserve"},
        )
        too_far = client.post(
            "/api/admin/inventory/dallas-jan-2026/public-limit",
            json={"tier": "vip", "additional_spots": 1,
                  "authorized_by": "admin_1", "reason": "open reserve"},
        )

        assert ok.status_code == 200
        assert ok.json()["new_limit"] == 20
        assert too_far.status_code == 400
        assert too_far.json()["code"] == "INVALID_INPUT"

    def test_reset_requires_reason(self, client):
        resp = client.post(
            "/api/admin/inventory/dallas-jan-2026/reset",
            json={"authorized_by": "admin_1"},
        )

        assert resp.status_code == 400

    def test_bulk_expand_partial_failure(self, client):
        resp = client.post("/api/admin/inventory", json={
            "operation": "expand",
            "authorized_by": "admin_1",
            "data": {
                "cities": ["dallas-jan-2026", "invalid-city"],
                "tier": "vip",
                "additional_spots": 3,
            },
        })

        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is False
        assert body["data"]["success_count"] == 1
        assert body["data"]["failure_count"] == 1

    def test_bulk_expand_with_malformed_city_ids(self, client):
        resp = client.post("/api/admin/inventory", json={
            "operation": "expand",
            "authorized_by": "admin_1",
            "data": {
                "cities": ["dallas-jan-2026", {"bad": 1}, 7],
                "tier": "ga",
                "additional_spots": 2,
            },
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["success_count"] == 1
        assert data["failure_count"] == 2

    def test_bulk_unknown_operation(self, client):
        resp = client.post("/api/admin/inventory", json={
            "operation": "delete", "authorized_by": "a", "data": {},
        })

        assert resp.status_code == 400

    def test_manual_alert(self, client):
        resp = client.post("/api/admin/inventory", json={
            "operation": "alert",
            "authorized_by": "admin_1",
            "data": {"message": "check the VIP line"},
        })

        data = resp.json()["data"]
        assert data["urgency"] == "medium"
        assert set(data["alerts"]) == {
            "critical_cities", "low_inventory_cities", "sold_out_cities",
        }

    def test_store_failure_is_503(self, client):
        server.app.dependency_overrides[server.inventory_ledger] = (
            lambda: InventoryLedger(FailingInventoryStore())
        )

        resp = client.get("/api/inventory")

        assert resp.status_code == 503
        assert resp.json()["code"] == "STORE_ERROR"


class TestAdminDiscounts:
    def test_stats_and_reset(self, client):
        client.post("/api/checkout/fulfill", json=paid_order())

        stats = client.get("/api/admin/discounts").json()["data"]
        reset = client.post("/api/admin/discounts/reset", json={
            "email": "member@example.com", "reason": "refund",
            "authorized_by": "admin_1",
        })
        resets = client.get("/api/admin/discounts/resets").json()["items"]

        assert stats["total_count"] == 1
        assert stats["total_discount_given"] == 2000
        assert reset.status_code == 200
        assert resets[0]["email"] == "member@example.com"

    def test_reset_without_record_is_404(self, client):
        resp = client.post("/api/admin/discounts/reset", json={
            "email": "ghost@example.com", "reason": "support",
        })

        assert resp.status_code == 404
        assert resp.json()["code"] == "NO_USAGE_RECORD"

    def test_reset_without_reason_is_400(self, client):
        resp = client.post("/api/admin/discounts/reset", json={
            "email": "ghost@example.com",
        })

        assert resp.status_code == 400


def test_timings_are_exposed(client):
    client.get("/api/inventory")

    items = client.get("/api/admin/timings").json()["items"]

    assert "inventory.list" in {i["kind"] for i in items}


def test_timings_reset_on_read(client):
    client.get("/api/inventory")

    first = client.get("/api/admin/timings", params={"reset": "true"})
    second = client.get("/api/admin/timings")

    assert first.json()["items"]
    assert second.json()["items"] == []
