from datetime import date, timedelta

import pytest
from sqlalchemy import select

import sql_db
import subscriptions
from models import SubscriptionPlan, UserSubscription, utcnow
from errors import NoMealsRemaining
from helpers import add_plan, set_balance


def _subscribe_with_wallet(client, plan_id, balance=5000):
    set_balance(client.user["id"], balance)
    return client.post("/api/subscriptions/subscribe", json={"planId": plan_id, "paymentMethod": "wallet"})


def test_plan_listing_hides_retired_plans(client, admin_client):
    weekly = add_plan("Weekly Basic")
    monthly = add_plan("Monthly Basic", price=1899, duration=30)

    assert admin_client.delete(f"/api/admin/plans/{monthly}").status_code == 204

    names = [p["name"] for p in client.get("/api/subscriptions/plans").get_json()]
    assert names == ["Weekly Basic"]

    # retired plans are kept for existing subscribers
    retired = client.get(f"/api/subscriptions/plans/{monthly}").get_json()
    assert retired["isActive"] is False
    assert client.get(f"/api/subscriptions/plans/{weekly}").status_code == 200
    assert client.get("/api/subscriptions/plans/9999").status_code == 404


def test_wallet_subscription_activates_immediately(user_client):
    plan_id = add_plan(price=499, duration=7, meals_per_day=2)

    resp = _subscribe_with_wallet(user_client, plan_id, balance=600)
    assert resp.status_code == 201
    sub = resp.get_json()
    assert sub["remainingMeals"] == 14
    assert sub["isActive"] is True
    assert date.fromisoformat(sub["endDate"]) == date.fromisoformat(sub["startDate"]) + timedelta(days=7)
    assert user_client.get("/api/wallet/balance").get_json() == {"balance": 101.0}


def test_wallet_subscription_needs_funds(user_client):
    plan_id = add_plan(price=499)
    resp = _subscribe_with_wallet(user_client, plan_id, balance=100)
    assert resp.status_code == 400
    assert user_client.get("/api/subscriptions/mine").get_json() == []


def test_only_one_active_subscription(user_client):
    plan_id = add_plan()
    assert _subscribe_with_wallet(user_client, plan_id).status_code == 201

    again = _subscribe_with_wallet(user_client, plan_id)
    assert again.status_code == 409
    card = user_client.post("/api/subscriptions/subscribe", json={"planId": plan_id})
    assert card.status_code == 409


def test_retired_plan_cannot_be_bought(user_client):
    plan_id = add_plan(is_active=False)
    resp = _subscribe_with_wallet(user_client, plan_id)
    assert resp.status_code == 400


def test_deduct_meal_until_exhausted(user_client):
    plan_id = add_plan(duration=1, meals_per_day=2)
    _subscribe_with_wallet(user_client, plan_id)

    first = user_client.post("/api/subscriptions/deduct-meal").get_json()
    assert first["remainingMeals"] == 1
    assert first["isActive"] is True

    last = user_client.post("/api/subscriptions/deduct-meal").get_json()
    assert last["remainingMeals"] == 0
    assert last["isActive"] is False

    none_left = user_client.post("/api/subscriptions/deduct-meal")
    assert none_left.status_code == 404
    assert none_left.get_json() == {"message": "No active subscription found"}
    assert user_client.get("/api/subscriptions/active").status_code == 404


def test_cancel_keeps_history(user_client, other_client):
    plan_id = add_plan()
    sub = _subscribe_with_wallet(user_client, plan_id).get_json()

    assert other_client.post(f"/api/subscriptions/{sub['id']}/cancel").status_code == 403

    cancelled = user_client.post(f"/api/subscriptions/{sub['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.get_json()["isActive"] is False
    assert cancelled.get_json()["remainingMeals"] == 14

    history = user_client.get("/api/subscriptions/mine").get_json()
    assert [h["id"] for h in history] == [sub["id"]]
    assert user_client.post("/api/subscriptions/deduct-meal").status_code == 404

    # a fresh subscription is allowed once the old one is cancelled
    assert _subscribe_with_wallet(user_client, plan_id).status_code == 201
    assert len(user_client.get("/api/subscriptions/mine").get_json()) == 2


def test_lapsed_subscription_expires(user_client):
    plan_id = add_plan()
    sub = _subscribe_with_wallet(user_client, plan_id).get_json()

    with sql_db.SessionLocal() as s:
        row = s.get(UserSubscription, sub["id"])
        row.start_date = utcnow().date() - timedelta(days=10)
        row.end_date = utcnow().date() - timedelta(days=3)
        s.commit()

    assert user_client.get("/api/subscriptions/active").status_code == 404
    history = user_client.get("/api/subscriptions/mine").get_json()
    assert history[0]["isActive"] is False
    assert history[0]["remainingMeals"] == 14


def test_activate_is_idempotent_and_supersedes(user_client):
    user_id = user_client.user["id"]
    plan_id = add_plan()

    with sql_db.SessionLocal() as s:
        plan = s.get(SubscriptionPlan, plan_id)
        first = subscriptions.activate(s, user_id, plan, "pi_first")
        assert subscriptions.activate(s, user_id, plan, "pi_first").id == first.id

        second = subscriptions.activate(s, user_id, plan, "pi_second")
        s.commit()

        active = s.scalars(
            select(UserSubscription).where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
        ).all()
        assert [a.id for a in active] == [second.id]


def test_no_meals_remaining_on_inconsistent_row(user_client):
    user_id = user_client.user["id"]
    plan_id = add_plan()
    _subscribe_with_wallet(user_client, plan_id)

    with sql_db.SessionLocal() as s:
        row = s.scalar(select(UserSubscription).where(UserSubscription.user_id == user_id))
        row.remaining_meals = 0
        s.commit()

        with pytest.raises(NoMealsRemaining):
            subscriptions.deduct_meal(s, user_id)


def test_subscription_endpoints_require_login(client):
    assert client.get("/api/subscriptions/plans").status_code == 200
    assert client.post("/api/subscriptions/subscribe", json={"planId": 1}).status_code == 401
    assert client.get("/api/subscriptions/mine").status_code == 401


def test_unknown_subscription_payment_method(user_client):
    plan_id = add_plan()
    resp = user_client.post("/api/subscriptions/subscribe", json={"planId": plan_id, "paymentMethod": "barter"})
    assert resp.status_code == 400
