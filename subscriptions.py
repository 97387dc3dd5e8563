import uuid
import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import case, select, update

import wallet
from models import SubscriptionPlan, UserSubscription, utcnow
from errors import AccessDenied, Conflict, NoActiveSubscription, NoMealsRemaining, NotFound, ValidationError
from validation import optional_str, parse_bool, parse_int, require_str

log = logging.getLogger(__name__)


# -----------------------
# Plans
# -----------------------
def list_active_plans(s) -> list[SubscriptionPlan]:
    return list(s.scalars(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price, SubscriptionPlan.id)
    ))


def get_plan(s, plan_id: int) -> SubscriptionPlan:
    plan = s.get(SubscriptionPlan, plan_id)
    if not plan:
        raise NotFound("Subscription plan not found")
    return plan


def get_purchasable_plan(s, plan_id) -> SubscriptionPlan:
    plan = get_plan(s, parse_int(plan_id, "Plan ID", minimum=1))
    if not plan.is_active:
        raise ValidationError("This subscription plan is no longer available")
    return plan


def plan_fields(data: dict, partial: bool = False) -> dict:
    fields = {}
    if not partial or "name" in data:
        fields["name"] = require_str(data, "name", "Name", max_len=120)
    if not partial or "description" in data:
        fields["description"] = optional_str(data, "description", max_len=500) or ""
    if not partial or "price" in data:
        fields["price"] = wallet.parse_amount(data.get("price"), "price")
    if not partial or "duration" in data:
        fields["duration"] = parse_int(data.get("duration"), "Duration", minimum=1)
    if not partial or "mealsPerDay" in data:
        fields["meals_per_day"] = parse_int(data.get("mealsPerDay"), "Meals per day", minimum=1)
    if "isActive" in data:
        fields["is_active"] = parse_bool(data["isActive"], "isActive")
    return fields


def retire_plan(plan: SubscriptionPlan):
    # existing subscribers keep pointing at the plan
    plan.is_active = False


# -----------------------
# User subscriptions
# -----------------------
def expire_lapsed(s, user_id: int):
    s.execute(
        update(UserSubscription)
        .where(
            UserSubscription.user_id == user_id,
            UserSubscription.is_active.is_(True),
            UserSubscription.end_date < utcnow().date(),
        )
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )


def active_subscription(s, user_id: int) -> UserSubscription | None:
    expire_lapsed(s, user_id)
    return s.scalars(
        select(UserSubscription)
        .where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
        .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
    ).first()


def user_subscriptions(s, user_id: int) -> list[UserSubscription]:
    expire_lapsed(s, user_id)
    return list(s.scalars(
        select(UserSubscription)
        .where(UserSubscription.user_id == user_id)
        .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
    ))


def ensure_can_subscribe(s, user_id: int):
    if active_subscription(s, user_id):
        raise Conflict("You already have an active subscription")


def activate(s, user_id: int, plan: SubscriptionPlan, payment_ref: str) -> UserSubscription:
    """Create the subscription paid for by `payment_ref`; repeat calls return the same row."""
    existing = s.scalar(select(UserSubscription).where(UserSubscription.payment_id == payment_ref))
    if existing:
        return existing

    # a newer paid plan supersedes any still-active one
    s.execute(
        update(UserSubscription)
        .where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )

    start = utcnow().date()
    sub = UserSubscription(
        user_id=user_id,
        plan_id=plan.id,
        start_date=start,
        end_date=start + timedelta(days=plan.duration),
        is_active=True,
        payment_id=payment_ref,
        remaining_meals=plan.duration * plan.meals_per_day,
    )
    s.add(sub)
    s.flush()
    log.info("subscription %s activated for user=%s plan=%s", sub.id, user_id, plan.id)
    return sub


def subscribe_with_wallet(s, user_id: int, plan: SubscriptionPlan) -> UserSubscription:
    ensure_can_subscribe(s, user_id)
    wallet.debit(s, user_id, Decimal(plan.price))
    return activate(s, user_id, plan, f"wallet-{uuid.uuid4().hex}")


def deduct_meal(s, user_id: int) -> UserSubscription:
    sub = active_subscription(s, user_id)
    if not sub:
        raise NoActiveSubscription()

    result = s.execute(
        update(UserSubscription)
        .where(
            UserSubscription.id == sub.id,
            UserSubscription.is_active.is_(True),
            UserSubscription.remaining_meals > 0,
        )
        .values(
            remaining_meals=UserSubscription.remaining_meals - 1,
            # the last meal closes the subscription
            is_active=case((UserSubscription.remaining_meals > 1, True), else_=False),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise NoMealsRemaining()

    s.refresh(sub)
    return sub


def cancel(s, user, subscription_id: int) -> UserSubscription:
    sub = s.get(UserSubscription, subscription_id)
    if not sub:
        raise NotFound("Subscription not found")
    if sub.user_id != user.id and not user.is_admin:
        raise AccessDenied()

    # no refund; remaining meals are forfeited
    sub.is_active = False
    return sub
