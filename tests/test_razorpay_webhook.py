"""
Webhook endpoint tests through the FastAPI app
"""

import json
import pytest
from fastapi.testclient import TestClient
from services.razorpay_service import compute_signature
from webhook_server import create_app

WEBHOOK_PATH = "/payments/razorpay/webhook"
# Matches the gateway fixture in conftest
TEST_WEBHOOK_SECRET = "test_webhook_secret"


@pytest.fixture
def app(session_factory, gateway):
    return create_app(session_factory=session_factory, gateway=gateway, run_scheduler=False)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def pending_order(lifecycle, seed):
    seller = seed.seller()
    mug = seed.product(seller, "500")
    placed = lifecycle.create_order(801, [{"product_id": mug.id, "quantity": 1}], 9)
    seed.set_order_fields(placed["id"], gateway_order_id="order_WH001")
    return placed


def _post(client, event, secret=TEST_WEBHOOK_SECRET, signature=None):
    body = json.dumps(event).encode() if not isinstance(event, bytes) else event
    headers = {"Content-Type": "application/json"}
    sig = signature if signature is not None else compute_signature(body, secret)
    if sig:
        headers["X-Razorpay-Signature"] = sig
    return client.post(WEBHOOK_PATH, content=body, headers=headers)


def _captured(payment_id="pay_WH1", gateway_order_id="order_WH001", event="payment.captured"):
    return {"event": event, "payload": {"payment": {"entity": {"id": payment_id, "order_id": gateway_order_id}}}}


class TestRazorpayWebhook:

    def test_missing_signature_is_rejected(self, client, pending_order, seed):
        response = _post(client, _captured(), signature="")

        assert response.status_code == 401
        assert seed.order(pending_order["id"]).status == "pending"

    def test_forged_signature_is_rejected(self, client, pending_order, seed):
        response = _post(client, _captured(), secret="not_the_secret")

        assert response.status_code == 401
        assert seed.order(pending_order["id"]).status == "pending"

    def test_malformed_json_is_rejected(self, client):
        assert _post(client, b"{not json").status_code == 400

    def test_captured_payment_settles_order(self, client, pending_order, seed):
        response = _post(client, _captured())

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "result": "settled"}
        order = seed.order(pending_order["id"])
        assert order.status == "confirmed"
        assert order.payment_status == "paid"

    def test_redelivered_capture_is_idempotent(self, client, pending_order, seed):
        _post(client, _captured())
        response = _post(client, _captured())

        assert response.json()["result"] == "already_settled"
        completed = [t for t in seed.transactions(pending_order["id"]) if t.payment_status == "completed"]
        assert len(completed) == 1

    def test_unhandled_event_is_acknowledged(self, client):
        response = _post(client, {"event": "order.paid", "payload": {}})

        assert response.status_code == 200
        assert response.json()["result"] == "ignored"

    def test_capture_without_ids_maps_to_bad_request(self, client):
        response = _post(client, {"event": "payment.captured", "payload": {"payment": {"entity": {}}}})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_failed"

    def test_health_reports_database(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"
