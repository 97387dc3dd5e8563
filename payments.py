"""
Payment gateway adapter (Stripe REST API over requests) and webhook
reconciliation.

Creating an intent never touches the wallet, orders' fulfillment or
subscriptions; those change only when the gateway reports the outcome.
"""
import hmac
import json
import time
import logging
from decimal import Decimal
from hashlib import sha256

import requests
from flask import current_app
from sqlalchemy import update

import wallet
import ordering
import subscriptions
from models import Order, PaymentIntent, SubscriptionPlan, utcnow
from errors import AccessDenied, Conflict, UpstreamPaymentError, ValidationError

log = logging.getLogger(__name__)

PURPOSE_ORDER = "order"
PURPOSE_SUBSCRIPTION = "subscription"
PURPOSE_TOPUP = "wallet-topup"

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


class PaymentGateway:
    def __init__(self, api_key, api_base, timeout, webhook_secret=None, tolerance=300):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("STRIPE_SECRET_KEY"),
            api_base=config["PAYMENT_API_BASE"],
            timeout=config["PAYMENT_TIMEOUT_SECONDS"],
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            tolerance=config["WEBHOOK_TOLERANCE_SECONDS"],
        )

    def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> dict:
        if not self.api_key:
            log.error("STRIPE_SECRET_KEY not set; cannot create payment intent")
            raise UpstreamPaymentError()

        data = {
            # smallest currency unit (paise)
            "amount": str(int((Decimal(amount) * 100).to_integral_value())),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)

        try:
            resp = requests.post(
                f"{self.api_base}/payment_intents",
                data=data,
                auth=(self.api_key, ""),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("Payment gateway unreachable: %s", e)
            raise UpstreamPaymentError()

        if resp.status_code >= 400:
            log.error("Payment gateway rejected intent: %s %s", resp.status_code, resp.text)
            raise UpstreamPaymentError()

        body = resp.json()
        return {"id": body["id"], "client_secret": body["client_secret"]}

    def construct_event(self, payload: bytes, sig_header: str | None) -> dict:
        """Verify the Stripe-Signature header and decode the event."""
        if not self.webhook_secret:
            log.warning("STRIPE_WEBHOOK_SECRET not set; accepting unsigned webhook")
        else:
            self._verify_signature(payload, sig_header)

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        return event

    def _verify_signature(self, payload: bytes, sig_header: str | None):
        timestamp = None
        signatures = []
        for part in (sig_header or "").split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if not timestamp or not signatures:
            log.warning("Webhook rejected: malformed signature header")
            raise ValidationError("Invalid webhook signature")

        try:
            age = abs(time.time() - int(timestamp))
        except ValueError:
            raise ValidationError("Invalid webhook signature")
        if age > self.tolerance:
            log.warning("Webhook rejected: timestamp outside tolerance (%ss)", int(age))
            raise ValidationError("Invalid webhook signature")

        signed = timestamp.encode() + b"." + payload
        expected = hmac.new(self.webhook_secret.encode(), signed, sha256).hexdigest()
        if not any(hmac.compare_digest(expected, sig) for sig in signatures):
            log.warning("Webhook rejected: signature mismatch")
            raise ValidationError("Invalid webhook signature")


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]


# -----------------------
# Intent creation
# -----------------------
def _open_intent(s, user_id, purpose, amount, order_id=None, plan_id=None):
    currency = current_app.config["CURRENCY"]
    metadata = {"purpose": purpose, "userId": user_id}
    if order_id:
        metadata["orderId"] = order_id
    if plan_id:
        metadata["planId"] = plan_id

    created = get_gateway().create_intent(amount, currency, metadata)

    intent = PaymentIntent(
        id=created["id"],
        user_id=user_id,
        purpose=purpose,
        amount=amount,
        currency=currency,
        order_id=order_id,
        plan_id=plan_id,
        status="pending",
    )
    s.add(intent)
    return intent, created["client_secret"]


def create_order_intent(s, user, order_id: int):
    order = ordering.get_order_for(s, user, order_id)
    if order.user_id != user.id:
        raise AccessDenied()
    if order.payment_status == "completed":
        raise Conflict("Order is already paid")

    # charge what was stored at checkout, never a client amount
    intent, client_secret = _open_intent(s, user.id, PURPOSE_ORDER, Decimal(order.total), order_id=order.id)
    order.payment_status = "pending"
    order.payment_id = intent.id
    return intent, client_secret


def create_subscription_intent(s, user, plan_id):
    plan = subscriptions.get_purchasable_plan(s, plan_id)
    subscriptions.ensure_can_subscribe(s, user.id)
    return _open_intent(s, user.id, PURPOSE_SUBSCRIPTION, Decimal(plan.price), plan_id=plan.id)


def create_topup_intent(s, user, amount):
    return _open_intent(s, user.id, PURPOSE_TOPUP, wallet.parse_amount(amount))


# -----------------------
# Webhook reconciliation
# -----------------------
def handle_event(s, event: dict) -> tuple[str, PaymentIntent | None]:
    """
    Apply a gateway event. Returns (outcome, intent) where outcome is one of
    applied, duplicate, failed, ignored or unknown.
    """
    event_type = event.get("type")
    if event_type not in (EVENT_SUCCEEDED, EVENT_FAILED):
        log.info("Ignoring webhook event type %s", event_type)
        return "ignored", None

    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise ValidationError("Invalid webhook payload")

    intent_id = obj.get("id")
    intent = s.get(PaymentIntent, intent_id) if isinstance(intent_id, str) and intent_id else None
    if intent is None:
        log.warning("Webhook for unknown payment intent %s", intent_id)
        return "unknown", None

    if event_type == EVENT_SUCCEEDED:
        return _apply_success(s, intent), intent
    return _apply_failure(s, intent), intent


def _apply_success(s, intent: PaymentIntent) -> str:
    # claim the transition once; redelivered events match no row
    claimed = s.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent.id, PaymentIntent.status != "succeeded")
        .values(status="succeeded", updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    ).rowcount
    if not claimed:
        log.info("Payment %s already applied; skipping duplicate event", intent.id)
        return "duplicate"

    if intent.purpose == PURPOSE_ORDER:
        order = s.get(Order, intent.order_id) if intent.order_id is not None else None
        if order:
            ordering.mark_paid(order)
    elif intent.purpose == PURPOSE_SUBSCRIPTION:
        plan = s.get(SubscriptionPlan, intent.plan_id)
        subscriptions.activate(s, intent.user_id, plan, intent.id)
    elif intent.purpose == PURPOSE_TOPUP:
        wallet.credit(s, intent.user_id, Decimal(intent.amount))

    log.info("Payment %s succeeded (%s)", intent.id, intent.purpose)
    return "applied"


def _apply_failure(s, intent: PaymentIntent) -> str:
    changed = s.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent.id, PaymentIntent.status == "pending")
        .values(status="failed", updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    ).rowcount
    if not changed:
        return "duplicate"

    if intent.purpose == PURPOSE_ORDER:
        order = s.get(Order, intent.order_id) if intent.order_id is not None else None
        if order:
            ordering.mark_payment_failed(order)

    log.info("Payment %s failed (%s)", intent.id, intent.purpose)
    return "failed"
