import hmac
import json
import time
from decimal import Decimal
from hashlib import sha256

from sqlalchemy import select

import sql_db
from models import FoodItem, SubscriptionPlan, User

WEBHOOK_SECRET = "whsec_test_secret"


def register(client, email="asha@mlrit.ac.in", name="Asha", password="secret123", **extra):
    body = {"name": name, "email": email, "password": password}
    body.update(extra)
    return client.post("/api/auth/register", json=body)


def make_admin(email, is_admin=True):
    with sql_db.SessionLocal() as s:
        u = s.scalar(select(User).where(User.email == email))
        u.is_admin = is_admin
        s.commit()


def add_food(name, price, category="Meals", available=True):
    with sql_db.SessionLocal() as s:
        item = FoodItem(
            name=name, description="", price=Decimal(str(price)),
            category=category, available=available,
        )
        s.add(item)
        s.commit()
        return item.id


def add_plan(name="Weekly Basic", price=499, duration=7, meals_per_day=2, is_active=True):
    with sql_db.SessionLocal() as s:
        plan = SubscriptionPlan(
            name=name, description="", price=Decimal(str(price)),
            duration=duration, meals_per_day=meals_per_day, is_active=is_active,
        )
        s.add(plan)
        s.commit()
        return plan.id


def set_balance(user_id, amount):
    with sql_db.SessionLocal() as s:
        s.get(User, user_id).wallet_balance = Decimal(str(amount))
        s.commit()


def intent_event(intent_id, event_type="payment_intent.succeeded"):
    return {"type": event_type, "data": {"object": {"id": intent_id}}}


def post_webhook(client, event, secret=WEBHOOK_SECRET, timestamp=None):
    payload = json.dumps(event).encode()
    t = str(int(timestamp if timestamp is not None else time.time()))
    sig = hmac.new(secret.encode(), t.encode() + b"." + payload, sha256).hexdigest()
    return client.post(
        "/api/payment-webhook",
        data=payload,
        headers={"Stripe-Signature": f"t={t},v1={sig}"},
        content_type="application/json",
    )
