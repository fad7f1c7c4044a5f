"""Integration tests for Dispatch API endpoints via TestClient."""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from dispatch.api import batch_router, maintenance_router, order_router, register_exception_handlers
from dispatch.domain import dispatch


@pytest.fixture()
def client(services):
    app = FastAPI()

    @app.middleware("http")
    async def domain_context(request: Request, call_next):
        with dispatch.domain_context():
            return await call_next(request)

    app.include_router(order_router)
    app.include_router(batch_router)
    app.include_router(maintenance_router)
    register_exception_handlers(app)
    return TestClient(app)


def _seed(client, order_id, **body):
    payload = {"order_id": order_id, "zone": "Lapasan", "weight": 1000.0, **body}
    response = client.post("/dispatch/orders/fake", json=payload)
    assert response.status_code == 201
    return order_id


def _assign(client, order_id):
    response = client.post(f"/dispatch/orders/{order_id}/assign")
    assert response.status_code == 200
    return response.json()["batch_id"]


class TestOrderEndpoints:
    def test_seed_and_assign(self, client):
        _seed(client, "o1")
        batch_id = _assign(client, "o1")

        response = client.get(f"/dispatch/batches/{batch_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["zone"] == "Lapasan"
        assert body["total_weight"] == 1000.0
        assert body["remaining_capacity"] == 4000.0
        assert body["status"] == "pending"

    def test_seeded_line_items_and_address(self, client, orders):
        _seed(
            client,
            "o1",
            zone=None,
            weight=None,
            address={"address_line": "beside Cagayan de Oro Port"},
            line_items=[{"product_id": "cement-bag", "quantity": 3}],
        )
        batch_id = _assign(client, "o1")

        body = client.get(f"/dispatch/batches/{batch_id}").json()

        assert body["zone"] == "Puerto"
        assert body["total_weight"] == 120.0

    def test_assigning_twice_returns_same_batch(self, client):
        _seed(client, "o1")
        assert _assign(client, "o1") == _assign(client, "o1")

    def test_unapproved_order_is_bad_request(self, client):
        _seed(client, "o1", approval_state="pending")

        response = client.post("/dispatch/orders/o1/assign")

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert "order" in response.json()["detail"]

    def test_unknown_order_is_not_found(self, client):
        response = client.post("/dispatch/orders/missing/assign")
        assert response.status_code == 404

    def test_order_store_outage_is_retryable(self, client, orders):
        _seed(client, "o1")
        orders.configure(should_succeed=False)

        response = client.post("/dispatch/orders/o1/assign")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "2"
        assert response.json()["retryable"] is True

    def test_sweep(self, client):
        _seed(client, "o1")
        _seed(client, "o2", zone="Carmen")

        response = client.post("/dispatch/orders/sweep")

        assert response.status_code == 200
        assert set(response.json()["assigned"]) == {"o1", "o2"}

    def test_withdraw(self, client, orders):
        _seed(client, "o1")
        batch_id = _assign(client, "o1")
        orders.set_approval_state("o1", "rejected")

        response = client.post("/dispatch/orders/o1/withdraw")

        assert response.status_code == 200
        assert response.json()["batch_id"] == batch_id
        assert client.get(f"/dispatch/batches/{batch_id}").status_code == 404


class TestBatchEndpoints:
    def _ready_batch(self, client):
        _seed(client, "o1", weight=2000.0)
        _seed(client, "o2", weight=2000.0)
        _assign(client, "o1")
        return _assign(client, "o2")

    def test_list_filters_by_zone_and_status(self, client):
        self._ready_batch(client)
        _seed(client, "o3", zone="Gusa", weight=10.0)
        _assign(client, "o3")

        assert len(client.get("/dispatch/batches").json()) == 2
        assert len(client.get("/dispatch/batches", params={"zone": "Gusa"}).json()) == 1
        ready = client.get("/dispatch/batches", params={"status": "ready_for_delivery"}).json()
        assert [b["zone"] for b in ready] == ["Lapasan"]

    def test_delivery_flow(self, client):
        batch_id = self._ready_batch(client)

        response = client.put(f"/dispatch/batches/{batch_id}/driver", json={})
        assert response.status_code == 200
        assert response.json()["driver_id"] == "driver-1"

        assert client.put(f"/dispatch/batches/{batch_id}/start-delivery").json() == {"status": "delivering"}
        assert client.post("/dispatch/orders/o1/delivered").json() == {"status": "delivering"}
        assert client.post("/dispatch/orders/o2/delivered").json() == {"status": "delivered"}

    def test_driver_for_pending_batch_is_bad_request(self, client):
        _seed(client, "o1", weight=100.0)
        batch_id = _assign(client, "o1")

        response = client.put(f"/dispatch/batches/{batch_id}/driver", json={"driver_id": "driver-9"})

        assert response.status_code == 400

    def test_dispatch_ready(self, client):
        batch_id = self._ready_batch(client)
        response = client.post("/dispatch/batches/dispatch-ready")
        assert response.json() == {"dispatched": {batch_id: "driver-1"}}

    def test_cancel(self, client):
        _seed(client, "o1", weight=100.0)
        batch_id = _assign(client, "o1")

        response = client.put(f"/dispatch/batches/{batch_id}/cancel", json={"reason": "Flooded road"})

        assert response.status_code == 200
        assert response.json() == {"batch_id": batch_id, "released_orders": 1}

    def test_cancel_requires_reason(self, client):
        response = client.put("/dispatch/batches/any/cancel", json={"reason": ""})
        assert response.status_code == 422

    def test_unknown_batch_is_not_found(self, client):
        assert client.get("/dispatch/batches/missing").status_code == 404


class TestMaintenanceEndpoints:
    def test_consolidation_and_audit(self, client, overwrite):
        _seed(client, "o1")
        batch_id = _assign(client, "o1")
        overwrite(batch_id, total_weight=1500.0)

        audit = client.get("/dispatch/audit").json()
        assert audit["healthy"] is False
        assert audit["violations"][0]["kind"] == "weight_drift"

        report = client.post("/dispatch/consolidation").json()
        assert report["corrected"] == [batch_id]
        assert report["merged"] == []

        assert client.get("/dispatch/audit").json() == {"healthy": True, "violations": []}

    def test_reresolve_unknown_zones(self, client, orders):
        _seed(client, "o1", zone=None, address={"address_line": "Purok 5"})
        _assign(client, "o1")
        orders.update_address("o1", {"address_line": "Gaston Park kiosk"})

        response = client.post("/dispatch/zones/reresolve")

        assert response.status_code == 200
        assert list(response.json()["reassigned"]) == ["o1"]
