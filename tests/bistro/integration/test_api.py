"""Integration tests for the bistro HTTP API via TestClient."""

import contextvars
import threading
import time

import pytest
from bistro.api import ingredient_router, menu_router, order_router, payment_router, register_error_handlers
from bistro.gateway import set_gateway
from bistro.gateway.port import PaymentGateway
from bistro.shared.locks import ingredient_locks
from fastapi import FastAPI
from fastapi.testclient import TestClient


@pytest.fixture()
def client(gateway):
    app = FastAPI()
    for router in (ingredient_router, menu_router, order_router, payment_router):
        app.include_router(router)
    register_error_handlers(app)
    return TestClient(app)


def _kitchen(client, rice_stock=1000.0):
    """Helper: register rice and a fried rice dish, return both ids."""
    response = client.post(
        "/ingredients",
        json={"name": "Rice", "unit_of_measure": "g", "min_stock": 200.0, "initial_stock": rice_stock},
    )
    assert response.status_code == 201
    rice_id = response.json()["ingredient_id"]

    response = client.post(
        "/menu",
        json={
            "name": "Fried Rice",
            "price": 12.5,
            "requirements": [{"ingredient_id": rice_id, "quantity_per_unit": 300.0}],
        },
    )
    assert response.status_code == 201
    return rice_id, response.json()["menu_item_id"]


def _place(client, dish_id, quantity=1):
    response = client.post("/orders", json={"lines": [{"menu_item_id": dish_id, "quantity": quantity}]})
    assert response.status_code == 201
    return response.json()["order_id"]


class TestIngredientEndpoints:
    def test_register_and_read(self, client):
        rice_id, _ = _kitchen(client)
        response = client.get(f"/ingredients/{rice_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["current_stock"] == 1000.0
        assert data["status"] == "Sufficient"

    def test_record_movement(self, client):
        rice_id, _ = _kitchen(client)
        response = client.post(f"/ingredients/{rice_id}/movements", json={"kind": "Out", "quantity": 850.0})
        assert response.status_code == 201
        assert response.json()["new_stock"] == 150.0
        assert response.json()["status"] == "Low"

        log = client.get(f"/ingredients/{rice_id}/movements").json()
        assert [(m["kind"], m["quantity"]) for m in log] == [("In", 1000.0), ("Out", -850.0)]

    def test_overdraw_is_a_conflict(self, client):
        rice_id, _ = _kitchen(client, rice_stock=10.0)
        response = client.post(f"/ingredients/{rice_id}/movements", json={"kind": "Out", "quantity": 11.0})
        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "insufficient_stock"
        assert data["shortages"][0]["available"] == 10.0

    def test_unknown_kind_is_bad_request(self, client):
        rice_id, _ = _kitchen(client)
        response = client.post(f"/ingredients/{rice_id}/movements", json={"kind": "Teleport", "quantity": 1.0})
        assert response.status_code == 400

    def test_unknown_ingredient_is_not_found(self, client):
        assert client.get("/ingredients/missing").status_code == 404

    def test_update_thresholds(self, client):
        rice_id, _ = _kitchen(client)
        response = client.put(f"/ingredients/{rice_id}/thresholds", json={"min_stock": 2000.0})
        assert response.status_code == 200
        assert response.json()["status"] == "Low"


class TestMenuEndpoints:
    def test_availability(self, client):
        _, dish_id = _kitchen(client)
        assert client.get(f"/menu/{dish_id}/availability", params={"quantity": 3}).json()["available"] is True

        data = client.get(f"/menu/{dish_id}/availability", params={"quantity": 4}).json()
        assert data["available"] is False
        assert data["shortages"][0]["required"] == 1200.0

    def test_revise_recipe_bumps_version(self, client):
        rice_id, dish_id = _kitchen(client)
        response = client.put(
            f"/menu/{dish_id}/recipe",
            json={"requirements": [{"ingredient_id": rice_id, "quantity_per_unit": 250.0}]},
        )
        assert response.status_code == 200
        assert response.json()["recipe_version"] == 2

    def test_ordering_an_item_off_sale_is_unprocessable(self, client):
        _, dish_id = _kitchen(client)
        assert client.put(f"/menu/{dish_id}/availability", json={"is_available": False}).status_code == 200
        response = client.post("/orders", json={"lines": [{"menu_item_id": dish_id, "quantity": 1}]})
        assert response.status_code == 422
        assert response.json()["menu_item_ids"] == [dish_id]


class TestOrderEndpoints:
    def test_place_and_read(self, client):
        _, dish_id = _kitchen(client)
        order_id = _place(client, dish_id, quantity=2)

        data = client.get(f"/orders/{order_id}").json()
        assert data["status"] == "Pending"
        assert data["total"] == 25.0

        by_number = client.get(f"/orders/by-number/{data['order_number']}")
        assert by_number.json()["order_id"] == order_id

    def test_rice_scenario(self, client):
        rice_id, dish_id = _kitchen(client)
        first = _place(client, dish_id, quantity=3)
        second = _place(client, dish_id)

        assert client.put(f"/orders/{first}/confirm").json()["status"] == "Confirmed"
        response = client.put(f"/orders/{second}/confirm")
        assert response.status_code == 409
        assert response.json()["shortages"] == [
            {"ingredient_id": rice_id, "required": 300.0, "available": 100.0, "optional": False}
        ]

        client.put(f"/orders/{first}/cancel", json={"reason": "Customer left"})
        assert client.put(f"/orders/{second}/confirm").status_code == 200
        assert client.get(f"/ingredients/{rice_id}").json()["current_stock"] == 700.0

    def test_invalid_transition_is_a_conflict(self, client):
        _, dish_id = _kitchen(client)
        order_id = _place(client, dish_id)
        response = client.put(f"/orders/{order_id}/status", json={"status": "Ready"})
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_transition"
        assert response.json()["from"] == "Pending"

    def test_kitchen_flow_and_listing(self, client):
        _, dish_id = _kitchen(client)
        order_id = _place(client, dish_id)
        client.put(f"/orders/{order_id}/confirm")
        line_id = client.get(f"/orders/{order_id}").json()["lines"][0]["line_id"]

        assert client.put(f"/orders/{order_id}/lines/{line_id}/start").json()["status"] == "Preparing"
        assert client.put(f"/orders/{order_id}/lines/{line_id}/ready").json()["status"] == "Ready"

        rows = client.get("/orders", params={"status": "Ready"}).json()
        assert [r["order_id"] for r in rows] == [order_id]

    def test_edit_lines(self, client):
        _, dish_id = _kitchen(client)
        order_id = _place(client, dish_id)
        line_id = client.post(f"/orders/{order_id}/lines", json={"menu_item_id": dish_id, "quantity": 1}).json()[
            "line_id"
        ]
        assert client.get(f"/orders/{order_id}").json()["total"] == 25.0

        assert client.delete(f"/orders/{order_id}/lines/{line_id}").status_code == 200
        assert client.get(f"/orders/{order_id}").json()["total"] == 12.5


class TestPaymentEndpoints:
    def _confirmed(self, client):
        _, dish_id = _kitchen(client)
        order_id = _place(client, dish_id)
        client.put(f"/orders/{order_id}/confirm")
        return order_id

    def test_webhook_settles_the_order(self, client):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]

        response = client.post(
            "/payments/webhook",
            json={"authorization_id": authorization_id, "status": "succeeded"},
            headers={"X-Gateway-Signature": "test-signature"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Succeeded"
        assert client.get(f"/orders/{order_id}").json()["payment_status"] == "Paid"

    def test_webhook_with_bad_signature(self, client):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]
        response = client.post(
            "/payments/webhook",
            json={"authorization_id": authorization_id, "status": "succeeded"},
            headers={"X-Gateway-Signature": "forged"},
        )
        assert response.status_code == 401
        assert client.get(f"/payments/{authorization_id}").json()["status"] == "Awaiting_Payment_Method"

    def test_contradicting_webhook_is_a_conflict(self, client):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]
        headers = {"X-Gateway-Signature": "test-signature"}
        client.post("/payments/webhook", json={"authorization_id": authorization_id, "status": "failed"}, headers=headers)

        response = client.post(
            "/payments/webhook", json={"authorization_id": authorization_id, "status": "succeeded"}, headers=headers
        )
        assert response.status_code == 409
        assert response.json()["code"] == "payment_already_terminal"

    def test_expiry_sweep(self, client):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]

        response = client.post("/payments/maintenance/expire", json={"as_of": "2999-01-01T00:00:00+00:00"})
        assert response.json()["expired"] == [authorization_id]
        assert client.get(f"/orders/{order_id}").json()["payment_status"] == "Unpaid"

    def test_gateway_outage_is_service_unavailable(self, client):
        order_id = self._confirmed(client)
        assert client.post("/payments/gateway/configure", json={"available": False}).json()["available"] is False
        response = client.post("/payments", json={"order_id": order_id})
        assert response.status_code == 503
        assert response.json()["code"] == "gateway_unavailable"

    def test_settle_at_fake_gateway(self, client, gateway):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]
        reference = client.get(f"/payments/{authorization_id}").json()["external_reference"]

        response = client.post(f"/payments/gateway/authorizations/{reference}", json={"status": "succeeded"})
        assert response.status_code == 200
        assert gateway.fetch_status(reference).status == "succeeded"

    def test_cancel_payment(self, client):
        order_id = self._confirmed(client)
        authorization_id = client.post("/payments", json={"order_id": order_id}).json()["authorization_id"]
        response = client.put(f"/payments/{authorization_id}/cancel", json={"reason": "Paid cash"})
        assert response.json()["status"] == "Cancelled"
        assert response.json()["cancellation_reason"] == "Paid cash"

    def test_gateway_configuration_blocked_in_production(self, client, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        assert client.post("/payments/gateway/configure", json={"available": False}).status_code == 403

    def test_gateway_configuration_needs_fake_gateway(self, client):
        class RealGateway(PaymentGateway):
            def create_authorization(self, order_id, amount, currency, idempotency_key):
                raise NotImplementedError

            def fetch_status(self, external_reference):
                raise NotImplementedError

            def cancel_authorization(self, external_reference):
                raise NotImplementedError

            def verify_webhook_signature(self, payload, signature):
                return False

        set_gateway(RealGateway())
        assert client.post("/payments/gateway/configure", json={"available": False}).status_code == 400


class TestLockContention:
    def test_lock_timeout_is_a_retryable_service_unavailable(self, client, settings):
        settings(
            LOCK_TIMEOUT_SECONDS=0.05,
            CONFLICT_MAX_RETRIES=1,
            CONFLICT_BASE_DELAY_MS=1,
            CONFLICT_MAX_DELAY_MS=5,
            CONFLICT_JITTER_MS=0,
        )
        rice_id, _ = _kitchen(client)

        with ingredient_locks.hold(rice_id):
            response = client.post(f"/ingredients/{rice_id}/movements", json={"kind": "Out", "quantity": 100.0})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        data = response.json()
        assert data["code"] == "concurrency_conflict"
        assert data["retryable"] is True
        assert client.get(f"/ingredients/{rice_id}").json()["current_stock"] == 1000.0

    def test_health_answers_while_a_write_waits_on_a_lock(self, gateway):
        app = FastAPI()
        app.include_router(ingredient_router)
        app.include_router(menu_router)
        register_error_handlers(app)

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        with TestClient(app) as client:
            rice_id, _ = _kitchen(client)
            results = {}

            def write():
                results["movement"] = client.post(
                    f"/ingredients/{rice_id}/movements", json={"kind": "Out", "quantity": 100.0}
                )

            with ingredient_locks.hold(rice_id):
                writer = threading.Thread(target=contextvars.copy_context().run, args=(write,))
                writer.start()
                time.sleep(0.2)

                started = time.monotonic()
                assert client.get("/health").status_code == 200
                elapsed = time.monotonic() - started
                assert writer.is_alive()

            writer.join(timeout=5)

        assert elapsed < 1.0
        assert results["movement"].status_code == 201
        assert results["movement"].json()["new_stock"] == 900.0
