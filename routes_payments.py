import logging

from flask import Blueprint, jsonify, request

import payments
from sql_db import SessionLocal
from models import User
from auth import login_required, current_user
from firestore_db import record_event
from receipts import send_receipt
from validation import json_body, parse_int

log = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.post("/create-payment-intent")
@login_required
def create_payment_intent():
    """
    One endpoint for all three purposes:
      {"orderId": 12}  pay an order (amount comes from the order)
      {"planId": 3}    buy a subscription plan
      {"amount": 250}  top up the wallet
    """
    data = json_body()
    user = current_user()

    with SessionLocal() as s:
        if data.get("orderId") is not None:
            order_id = parse_int(data["orderId"], "Order ID", minimum=1)
            intent, client_secret = payments.create_order_intent(s, user, order_id)
        elif data.get("planId") is not None:
            intent, client_secret = payments.create_subscription_intent(s, user, data["planId"])
        else:
            intent, client_secret = payments.create_topup_intent(s, user, data.get("amount"))
        s.commit()

        return jsonify({
            "clientSecret": client_secret,
            "paymentIntentId": intent.id,
            "purpose": intent.purpose,
            "amount": float(intent.amount),
        })


@payments_bp.post("/payment-webhook")
def payment_webhook():
    event = payments.get_gateway().construct_event(
        request.get_data(), request.headers.get("Stripe-Signature")
    )

    with SessionLocal() as s:
        outcome, intent = payments.handle_event(s, event)
        s.commit()

        if intent is None or outcome not in ("applied", "failed"):
            return jsonify({"received": True, "outcome": outcome})

        user = s.get(User, intent.user_id)
        email = user.email if user else ""
        reference = intent.order_id or intent.id
        purpose = intent.purpose
        amount = float(intent.amount)

    if outcome == "applied":
        record_event(reference, email, "PAYMENT_SUCCEEDED", {"purpose": purpose, "amount": amount})
        send_receipt(reference, email, amount, purpose=purpose)
    else:
        record_event(reference, email, "PAYMENT_FAILED", {"purpose": purpose, "amount": amount})

    return jsonify({"received": True, "outcome": outcome})
