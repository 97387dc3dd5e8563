import logging

from flask import Blueprint, jsonify

import wallet
import payments
import subscriptions
from sql_db import SessionLocal
from auth import login_required, current_user
from errors import NoActiveSubscription, ValidationError
from firestore_db import record_event
from validation import json_body

log = logging.getLogger(__name__)

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")
subs_bp = Blueprint("subscriptions", __name__, url_prefix="/api/subscriptions")


# -----------------------
# Wallet
# -----------------------
@wallet_bp.get("/balance")
@login_required
def wallet_balance():
    with SessionLocal() as s:
        return jsonify({"balance": float(wallet.balance(s, current_user().id))})


@wallet_bp.post("/add")
@login_required
def wallet_add():
    """Top-ups go through the gateway; the credit lands when the webhook confirms."""
    data = json_body()
    with SessionLocal() as s:
        intent, client_secret = payments.create_topup_intent(s, current_user(), data.get("amount"))
        s.commit()
        return jsonify({
            "clientSecret": client_secret,
            "paymentIntentId": intent.id,
            "amount": float(intent.amount),
        })


@wallet_bp.post("/deduct")
@login_required
def wallet_deduct():
    data = json_body()
    user = current_user()
    amount = wallet.parse_amount(data.get("amount"))

    with SessionLocal() as s:
        new_balance = wallet.debit(s, user.id, amount)
        s.commit()

    record_event(user.id, user.email, "WALLET_DEBITED", {"amount": float(amount)})
    return jsonify({"balance": float(new_balance)})


# -----------------------
# Subscriptions
# -----------------------
@subs_bp.get("/plans")
def list_plans():
    with SessionLocal() as s:
        return jsonify([p.to_dict() for p in subscriptions.list_active_plans(s)])


@subs_bp.get("/plans/<int:plan_id>")
def get_plan(plan_id: int):
    with SessionLocal() as s:
        return jsonify(subscriptions.get_plan(s, plan_id).to_dict())


@subs_bp.post("/subscribe")
@login_required
def subscribe():
    data = json_body()
    user = current_user()
    method = data.get("paymentMethod") or "card"

    with SessionLocal() as s:
        plan = subscriptions.get_purchasable_plan(s, data.get("planId"))

        if method == "wallet":
            sub = subscriptions.subscribe_with_wallet(s, user.id, plan)
            s.commit()
            body = sub.to_dict()
            record_event(body["id"], user.email, "SUBSCRIPTION_ACTIVATED", {"planId": plan.id})
            return jsonify(body), 201

        if method != "card":
            raise ValidationError("Payment method must be card or wallet")

        intent, client_secret = payments.create_subscription_intent(s, user, plan.id)
        s.commit()
        return jsonify({
            "clientSecret": client_secret,
            "paymentIntentId": intent.id,
            "plan": plan.to_dict(),
        })


@subs_bp.get("/mine")
@login_required
def my_subscriptions():
    with SessionLocal() as s:
        subs = subscriptions.user_subscriptions(s, current_user().id)
        s.commit()
        return jsonify([sub.to_dict() for sub in subs])


@subs_bp.get("/active")
@login_required
def active_subscription():
    with SessionLocal() as s:
        sub = subscriptions.active_subscription(s, current_user().id)
        s.commit()
        if not sub:
            raise NoActiveSubscription()
        return jsonify(sub.to_dict())


@subs_bp.post("/<int:subscription_id>/cancel")
@login_required
def cancel_subscription(subscription_id: int):
    user = current_user()
    with SessionLocal() as s:
        sub = subscriptions.cancel(s, user, subscription_id)
        s.commit()
        body = sub.to_dict()

    record_event(subscription_id, user.email, "SUBSCRIPTION_CANCELLED")
    return jsonify(body)


@subs_bp.post("/deduct-meal")
@login_required
def deduct_meal():
    with SessionLocal() as s:
        sub = subscriptions.deduct_meal(s, current_user().id)
        s.commit()
        return jsonify(sub.to_dict())
