import json
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest
import requests
from sqlalchemy import func, select

import sql_db
import receipts
from models import PaymentIntent, UserSubscription
from errors import UpstreamPaymentError, ValidationError
from payments import PaymentGateway
from helpers import WEBHOOK_SECRET, add_plan, intent_event, post_webhook


def _place(client, menu, **extra):
    body = {"items": [{"id": menu["dosa"], "quantity": 2}]}
    body.update(extra)
    return client.post("/api/orders", json=body).get_json()


def _intent_count():
    with sql_db.SessionLocal() as s:
        return s.scalar(select(func.count()).select_from(PaymentIntent))


def test_order_intent_charges_the_stored_total(user_client, menu, gateway):
    order = _place(user_client, menu)

    resp = user_client.post("/api/create-payment-intent", json={"orderId": order["id"], "amount": 1})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["clientSecret"] == "pi_test_1_secret_x"
    assert body["amount"] == 130.0
    assert gateway.created[0]["amount"] == Decimal("130.00")
    assert gateway.created[0]["metadata"] == {"purpose": "order", "userId": user_client.user["id"], "orderId": order["id"]}

    refreshed = user_client.get(f"/api/orders/{order['id']}").get_json()
    assert refreshed["paymentId"] == "pi_test_1"
    assert refreshed["paymentStatus"] == "pending"
    assert refreshed["status"] == "pending"


def test_successful_order_payment_is_applied_once(user_client, menu, monkeypatch):
    sent = []
    monkeypatch.setattr(receipts, "get_secret", lambda name: "https://receipts.invalid/fn")
    monkeypatch.setattr(receipts.requests, "post", lambda url, json, timeout: sent.append(json) or _Resp(200, {}))

    order = _place(user_client, menu)
    intent_id = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]}).get_json()["paymentIntentId"]

    first = post_webhook(user_client, intent_event(intent_id))
    assert first.get_json() == {"received": True, "outcome": "applied"}
    paid = user_client.get(f"/api/orders/{order['id']}").get_json()
    assert paid["paymentStatus"] == "completed"
    assert paid["status"] == "preparing"
    assert paid["total"] == paid["subtotal"] + paid["deliveryFee"]

    again = post_webhook(user_client, intent_event(intent_id))
    assert again.get_json()["outcome"] == "duplicate"
    assert len(sent) == 1
    assert sent[0]["reference"] == str(order["id"])


def test_payment_success_never_moves_an_order_backwards(user_client, admin_client, menu):
    order = _place(user_client, menu)
    intent_id = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]}).get_json()["paymentIntentId"]
    admin_client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "out-for-delivery"})

    post_webhook(user_client, intent_event(intent_id))
    assert user_client.get(f"/api/orders/{order['id']}").get_json()["status"] == "out-for-delivery"


def test_failed_order_payment(user_client, menu):
    order = _place(user_client, menu)
    intent_id = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]}).get_json()["paymentIntentId"]

    resp = post_webhook(user_client, intent_event(intent_id, "payment_intent.payment_failed"))
    assert resp.get_json()["outcome"] == "failed"
    failed = user_client.get(f"/api/orders/{order['id']}").get_json()
    assert failed["paymentStatus"] == "failed"
    assert failed["status"] == "pending"

    # the client may retry with a fresh intent
    retry = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]})
    assert retry.status_code == 200
    assert user_client.get(f"/api/orders/{order['id']}").get_json()["paymentStatus"] == "pending"


def test_cannot_pay_someone_elses_or_a_paid_order(user_client, other_client, menu):
    order = _place(user_client, menu)
    assert other_client.post("/api/create-payment-intent", json={"orderId": order["id"]}).status_code == 403

    intent_id = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]}).get_json()["paymentIntentId"]
    post_webhook(user_client, intent_event(intent_id))
    again = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]})
    assert again.status_code == 409


def test_subscription_payment_creates_the_subscription(user_client):
    plan_id = add_plan(price=499, duration=7, meals_per_day=2)

    resp = user_client.post("/api/subscriptions/subscribe", json={"planId": plan_id})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["plan"]["id"] == plan_id
    assert user_client.get("/api/subscriptions/mine").get_json() == []

    post_webhook(user_client, intent_event(body["paymentIntentId"]))
    post_webhook(user_client, intent_event(body["paymentIntentId"]))

    subs = user_client.get("/api/subscriptions/mine").get_json()
    assert len(subs) == 1
    sub = subs[0]
    assert sub["remainingMeals"] == 14
    assert sub["isActive"] is True
    assert sub["paymentId"] == body["paymentIntentId"]
    start = date.fromisoformat(sub["startDate"])
    assert date.fromisoformat(sub["endDate"]) == start + timedelta(days=7)


def test_failed_subscription_payment_creates_nothing(user_client):
    plan_id = add_plan()
    intent_id = user_client.post("/api/subscriptions/subscribe", json={"planId": plan_id}).get_json()["paymentIntentId"]

    post_webhook(user_client, intent_event(intent_id, "payment_intent.payment_failed"))
    with sql_db.SessionLocal() as s:
        assert s.scalar(select(func.count()).select_from(UserSubscription)) == 0


def test_topup_is_credited_once(user_client):
    intent_id = user_client.post("/api/create-payment-intent", json={"amount": "150.25"}).get_json()["paymentIntentId"]

    post_webhook(user_client, intent_event(intent_id))
    post_webhook(user_client, intent_event(intent_id))

    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 150.25}


def test_failed_topup_credits_nothing(user_client):
    intent_id = user_client.post("/api/wallet/add", json={"amount": 80}).get_json()["paymentIntentId"]
    post_webhook(user_client, intent_event(intent_id, "payment_intent.payment_failed"))
    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 0.0}


def test_webhook_signature_is_checked(user_client):
    intent_id = user_client.post("/api/wallet/add", json={"amount": 80}).get_json()["paymentIntentId"]

    forged = post_webhook(user_client, intent_event(intent_id), secret="whsec_wrong")
    assert forged.status_code == 400
    assert forged.get_json() == {"message": "Invalid webhook signature"}

    stale = post_webhook(user_client, intent_event(intent_id), timestamp=time.time() - 3600)
    assert stale.status_code == 400

    unsigned = user_client.post("/api/payment-webhook", json=intent_event(intent_id))
    assert unsigned.status_code == 400

    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 0.0}


def test_unsigned_webhooks_accepted_without_a_secret(user_client, gateway):
    gateway.webhook_secret = None
    intent_id = user_client.post("/api/wallet/add", json={"amount": 80}).get_json()["paymentIntentId"]

    resp = user_client.post("/api/payment-webhook", json=intent_event(intent_id))
    assert resp.get_json()["outcome"] == "applied"
    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 80.0}


def test_unknown_intents_and_event_types_are_acknowledged(client):
    unknown = post_webhook(client, intent_event("pi_never_created"))
    assert unknown.status_code == 200
    assert unknown.get_json()["outcome"] == "unknown"

    other = post_webhook(client, {"type": "charge.refunded", "data": {"object": {}}})
    assert other.get_json()["outcome"] == "ignored"


@pytest.mark.parametrize("data, status", [
    ("x", 400),
    (None, 400),
    ({"object": "pi_1"}, 400),
    ({"object": [1, 2]}, 400),
    ({"object": {"id": ["pi_1"]}}, 200),
])
def test_malformed_event_bodies_are_rejected(user_client, data, status):
    intent_id = user_client.post("/api/wallet/add", json={"amount": 80}).get_json()["paymentIntentId"]

    resp = post_webhook(user_client, {"type": "payment_intent.succeeded", "data": data})
    assert resp.status_code == status
    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 0.0}
    assert post_webhook(user_client, intent_event(intent_id)).get_json()["outcome"] == "applied"


def test_gateway_failure_leaves_no_partial_state(user_client, menu, gateway):
    order = _place(user_client, menu)
    gateway.fail_next = True

    resp = user_client.post("/api/create-payment-intent", json={"orderId": order["id"]})
    assert resp.status_code == 502
    assert resp.get_json() == {"message": "Payment processing failed, please try again"}
    assert _intent_count() == 0
    assert user_client.get(f"/api/orders/{order['id']}").get_json()["paymentId"] is None


def test_intent_requires_login(client):
    assert client.post("/api/create-payment-intent", json={"amount": 10}).status_code == 401


# -----------------------
# PaymentGateway against a stubbed HTTP layer
# -----------------------
class _Resp:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = json.dumps(body)

    def json(self):
        return self._body


def _gateway(**kw):
    opts = dict(api_key="sk_test", api_base="https://api.example/v1", timeout=3.5, webhook_secret=WEBHOOK_SECRET)
    opts.update(kw)
    return PaymentGateway(**opts)


def test_create_intent_posts_amount_in_paise(monkeypatch):
    calls = []

    def fake_post(url, data, auth, timeout):
        calls.append((url, data, auth, timeout))
        return _Resp(200, {"id": "pi_123", "client_secret": "pi_123_secret"})

    monkeypatch.setattr(requests, "post", fake_post)
    result = _gateway().create_intent(Decimal("130.50"), "inr", {"purpose": "order", "orderId": 7})

    assert result == {"id": "pi_123", "client_secret": "pi_123_secret"}
    url, data, auth, timeout = calls[0]
    assert url == "https://api.example/v1/payment_intents"
    assert data["amount"] == "13050"
    assert data["currency"] == "inr"
    assert data["metadata[orderId]"] == "7"
    assert auth == ("sk_test", "")
    assert timeout == 3.5


def test_create_intent_timeout_raises_upstream_error(monkeypatch):
    def slow_post(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "post", slow_post)
    with pytest.raises(UpstreamPaymentError):
        _gateway().create_intent(Decimal("10"), "inr", {})


def test_create_intent_gateway_rejection(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Resp(402, {"error": {"message": "card declined"}}))
    with pytest.raises(UpstreamPaymentError):
        _gateway().create_intent(Decimal("10"), "inr", {})


def test_create_intent_without_api_key():
    with pytest.raises(UpstreamPaymentError):
        _gateway(api_key=None).create_intent(Decimal("10"), "inr", {})


def test_construct_event_rejects_malformed_header():
    with pytest.raises(ValidationError):
        _gateway().construct_event(b"{}", "garbage")
    with pytest.raises(ValidationError):
        _gateway().construct_event(b"{}", None)


def test_construct_event_rejects_non_json_payload():
    with pytest.raises(ValidationError):
        _gateway(webhook_secret=None).construct_event(b"not json", None)
