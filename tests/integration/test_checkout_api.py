"""Integration tests for the marketplace HTTP API."""

import inspect
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from marketplace.api import routes
from marketplace.api.errors import register_exception_handlers
from marketplace.api.routes import ALL_ROUTERS
from marketplace.batch.batch import Batch
from marketplace.catalogue.product import Product
from marketplace.order.order import Order
from protean import current_domain

BUYER = {"X-User-Id": "user-buyer-001"}
SELLER = {"X-User-Id": "user-seller-001"}
SIGNED = {"stripe-signature": "test-signature", "content-type": "application/json"}


@pytest.fixture()
def client():
    app = FastAPI()
    register_exception_handlers(app)
    for router in ALL_ROUTERS:
        app.include_router(router)
    return TestClient(app)


def _create_intent(client, product, headers=BUYER):
    response = client.post(
        "/checkout/intents",
        json={"seller_id": str(product.seller_entity_id), "product_id": str(product.id), "show_id": "show-001"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["intent_id"]


def _authorize(client, intent_id, headers=BUYER):
    return client.post(f"/checkout/intents/{intent_id}/authorize", headers=headers)


def _deliver(client, event):
    return client.post("/webhooks/stripe", content=json.dumps(event), headers=SIGNED)


def _succeeded(body):
    return {
        "id": "evt_api_0001",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": body["payment_intent_id"],
                "object": "payment_intent",
                "metadata": {"order_id": body["order_id"]},
            }
        },
    }


def _paid(client, product):
    body = _authorize(client, _create_intent(client, product)).json()
    _deliver(client, _succeeded(body))
    return body


class TestCheckoutEndpoints:
    def test_full_checkout_flow(self, client, product):
        intent_id = _create_intent(client, product)

        response = _authorize(client, intent_id)
        assert response.status_code == 200
        body = response.json()
        assert body["amount"] == 2500
        assert body["application_fee"] == 125
        assert body["client_secret"]

        ack = _deliver(client, _succeeded(body))
        assert ack.status_code == 200
        assert ack.json() == {"received": True, "event_id": "evt_api_0001", "action": "paid"}

        order = client.get(f"/orders/{body['order_id']}", headers=BUYER).json()
        assert order["status"] == "paid"
        assert order["completion_code"]

        intent = client.get(f"/checkout/intents/{intent_id}", headers=BUYER).json()
        assert intent["status"] == "consumed"
        assert intent["converted_order_id"] == body["order_id"]

    def test_unknown_product(self, client, seller):
        response = client.post(
            "/checkout/intents",
            json={"seller_id": str(seller.id), "product_id": "missing"},
            headers=BUYER,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "PRODUCT_UNAVAILABLE"

    def test_missing_user_header(self, client, product):
        response = client.post(
            "/checkout/intents",
            json={"seller_id": str(product.seller_entity_id), "product_id": str(product.id)},
        )
        assert response.status_code == 422

    def test_intent_hidden_from_other_users(self, client, product):
        intent_id = _create_intent(client, product)
        response = client.get(f"/checkout/intents/{intent_id}", headers=SELLER)
        assert response.status_code == 404

    def test_second_authorize_returns_session_expired(self, client, product):
        intent_id = _create_intent(client, product)
        _authorize(client, intent_id)

        response = _authorize(client, intent_id)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "SESSION_EXPIRED"
        assert "intent_locked" not in json.dumps(body)

    def test_unconnected_seller(self, client, make_seller, make_product):
        product = make_product(make_seller(connected=False))
        response = _authorize(client, _create_intent(client, product))
        assert response.status_code == 400
        assert response.json()["error"] == "SELLER_NOT_CONNECTED"

    def test_processor_failure_is_coarse(self, client, product, gateway):
        gateway.configure(should_succeed=False, failure_reason="card_declined: insufficient funds")

        response = _authorize(client, _create_intent(client, product))

        assert response.status_code == 500
        assert response.json()["error"] == "CHECKOUT_FAILED"
        assert "insufficient" not in response.text
        assert current_domain.repository_for(Product).get(product.id).quantity == 3


class TestWebhookEndpoint:
    def test_invalid_signature(self, client):
        response = client.post(
            "/webhooks/stripe",
            content=json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}),
            headers={"stripe-signature": "forged"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_SIGNATURE"

    def test_malformed_payload(self, client):
        response = client.post("/webhooks/stripe", content=b"not json", headers=SIGNED)
        assert response.status_code == 400

    def test_duplicate_delivery(self, client, product):
        body = _authorize(client, _create_intent(client, product)).json()
        _deliver(client, _succeeded(body))

        response = _deliver(client, _succeeded(body))

        assert response.status_code == 200
        assert response.json()["action"] == "already_paid"

    def test_unhandled_event_is_acknowledged(self, client):
        response = _deliver(client, {"id": "evt_2", "type": "customer.created", "data": {"object": {}}})
        assert response.status_code == 200
        assert response.json()["action"] == "ignored"


class TestOrderEndpoints:
    def test_seller_sees_order_without_code(self, client, product):
        body = _paid(client, product)
        order = client.get(f"/orders/{body['order_id']}", headers=SELLER).json()
        assert order["status"] == "paid"
        assert order["completion_code"] is None

    def test_stranger_cannot_see_order(self, client, product):
        body = _paid(client, product)
        response = client.get(f"/orders/{body['order_id']}", headers={"X-User-Id": "stranger"})
        assert response.status_code == 404

    def test_refund(self, client, product):
        body = _paid(client, product)

        response = client.post(f"/orders/{body['order_id']}/refund", json={"reason": "damaged"}, headers=SELLER)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "refunded"
        assert data["batch_auto_completed"] is True

        again = client.post(f"/orders/{body['order_id']}/refund", headers=SELLER).json()
        assert again["refund_id"] == data["refund_id"]
        assert again["already_refunded"] is True

    def test_refund_by_buyer_is_forbidden(self, client, product):
        body = _paid(client, product)
        response = client.post(f"/orders/{body['order_id']}/refund", headers=BUYER)
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_refund_unknown_order(self, client):
        response = client.post("/orders/missing/refund", headers=SELLER)
        assert response.status_code == 404
        assert response.json()["error"] == "ORDER_NOT_FOUND"

    def test_refund_pending_order(self, client, product):
        body = _authorize(client, _create_intent(client, product)).json()
        response = client.post(f"/orders/{body['order_id']}/refund", headers=SELLER)
        assert response.status_code == 400
        assert response.json()["error"] == "ORDER_NOT_REFUNDABLE"


class TestBatchEndpoints:
    def test_ready_then_pickup(self, client, product):
        body = _paid(client, product)
        batch_id = current_domain.repository_for(Order).get(body["order_id"]).batch_id
        code = current_domain.repository_for(Batch).get(batch_id).completion_code

        ready = client.post(f"/batches/{batch_id}/ready", headers=SELLER)
        assert ready.status_code == 200
        assert ready.json()["status"] == "ready"

        pickup = client.post("/batches/pickup", json={"completion_code": code}, headers=SELLER)
        assert pickup.status_code == 200
        assert pickup.json()["status"] == "picked_up"

        repeat = client.post("/batches/pickup", json={"completion_code": code}, headers=SELLER)
        assert repeat.status_code == 409
        assert repeat.json()["error"] == "BATCH_ALREADY_COMPLETED"

    def test_unknown_code(self, client):
        response = client.post("/batches/pickup", json={"completion_code": "NOPE99"}, headers=SELLER)
        assert response.status_code == 404
        assert response.json()["error"] == "BATCH_NOT_FOUND"


class TestSellerAndMaintenanceEndpoints:
    def test_onboarding_return_syncs_seller(self, client, make_seller):
        make_seller(connected=False)
        response = client.get("/sellers/stripe/return", params={"account": "acct_seller001"})
        assert response.status_code == 200
        assert response.json() == {"account_id": "acct_seller001", "connected": True}

    def test_onboarding_return_unknown_account(self, client):
        response = client.get("/sellers/stripe/return", params={"account": "acct_unknown"})
        assert response.status_code == 404

    def test_expire_pending_sweep(self, client, product):
        body = _authorize(client, _create_intent(client, product)).json()

        response = client.post("/sweeps/expire-pending-orders", json={"as_of": "2999-01-01T00:00:00+00:00"})

        assert response.status_code == 200
        assert response.json()["order_ids"] == [body["order_id"]]

    def test_stale_sweep_without_body(self, client):
        response = client.post("/sweeps/complete-stale-orders")
        assert response.status_code == 200
        assert response.json()["evaluated"] == 0

    def test_configure_gateway(self, client, gateway):
        response = client.post(
            "/sweeps/gateway/configure",
            json={"should_succeed": False, "failure_reason": "Refunds down", "methods": ["create_refund"]},
        )
        assert response.status_code == 200
        assert response.json()["failing_methods"] == ["create_refund"]
        assert "create_refund" in gateway.failing_methods

    def test_configure_gateway_blocked_in_production(self, client, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        response = client.post("/sweeps/gateway/configure", json={"should_succeed": False})
        assert response.status_code == 403


class TestBlockingEndpoints:
    @pytest.mark.parametrize("endpoint", [routes.authorize_intent, routes.refund, routes.stripe_return])
    def test_gateway_calls_run_off_the_event_loop(self, endpoint):
        assert not inspect.iscoroutinefunction(endpoint)

    def test_webhook_reconciles_in_a_worker_thread(self, client, product, monkeypatch):
        offloaded = []
        run_in_threadpool = routes.run_in_threadpool

        async def _recording(func, *args):
            offloaded.append(func.__name__)
            return await run_in_threadpool(func, *args)

        monkeypatch.setattr(routes, "run_in_threadpool", _recording)
        body = _authorize(client, _create_intent(client, product)).json()

        response = _deliver(client, _succeeded(body))

        assert response.json()["action"] == "paid"
        assert offloaded == ["reconcile_event"]
