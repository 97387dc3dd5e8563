import os
import logging

from flask import Blueprint, jsonify, request, current_app
from werkzeug.utils import secure_filename
from sqlalchemy import select

import wallet
import ordering
import reviews
import subscriptions
from sql_db import SessionLocal
from models import FoodItem, Order, SubscriptionPlan, User, UserSubscription
from auth import admin_required, current_user
from errors import NotFound, ValidationError
from firestore_db import record_event
from validation import json_body, optional_str, parse_bool, require_str

log = logging.getLogger(__name__)

admin = Blueprint("admin", __name__, url_prefix="/api/admin")


# -----------------------
# Users
# -----------------------
@admin.get("/users")
@admin_required
def list_users():
    with SessionLocal() as s:
        users = s.scalars(select(User).order_by(User.id)).all()
        return jsonify([u.to_dict() for u in users])


@admin.patch("/users/<int:user_id>")
@admin_required
def set_admin_flag(user_id: int):
    data = json_body()
    if "isAdmin" not in data:
        raise ValidationError("isAdmin is required")
    is_admin = parse_bool(data["isAdmin"], "isAdmin")

    with SessionLocal() as s:
        u = s.get(User, user_id)
        if not u:
            raise NotFound("User not found")
        u.is_admin = is_admin
        s.commit()
        log.info("admin %s set is_admin=%s on user %s", current_user().id, is_admin, user_id)
        return jsonify(u.to_dict())


@admin.post("/users/<int:user_id>/wallet/credit")
@admin_required
def credit_wallet(user_id: int):
    amount = wallet.parse_amount(json_body().get("amount"))

    with SessionLocal() as s:
        new_balance = wallet.credit(s, user_id, amount)
        s.commit()

    record_event(user_id, current_user().email, "WALLET_CREDITED", {"amount": float(amount), "by": "admin"})
    return jsonify({"balance": float(new_balance)})


# -----------------------
# Food images
# -----------------------
FOOD_IMAGE_EXTS = {"png", "jpg", "jpeg", "webp"}


def _free_name(directory: str, stem: str, ext: str) -> str:
    """stem.ext, or stem_1.ext, stem_2.ext ... if taken."""
    name = f"{stem}.{ext}"
    n = 0
    while os.path.exists(os.path.join(directory, name)):
        n += 1
        name = f"{stem}_{n}.{ext}"
    return name


def store_food_image(upload) -> str:
    """Save an uploaded menu photo under IMAGE_UPLOAD_DIR; returns the stored file name."""
    if not upload or not upload.filename:
        raise ValidationError("Image file is required")

    stem, _, ext = secure_filename(upload.filename).rpartition(".")
    ext = ext.lower()
    if not stem or ext not in FOOD_IMAGE_EXTS:
        raise ValidationError("Invalid file type. Use png, jpg, jpeg, webp.")

    folder = os.path.join(current_app.root_path, current_app.config["IMAGE_UPLOAD_DIR"])
    os.makedirs(folder, exist_ok=True)

    name = _free_name(folder, stem, ext)
    upload.save(os.path.join(folder, name))
    log.info("stored food image %s", name)
    return name


# -----------------------
# Food items
# -----------------------
def _food_fields(data: dict, partial: bool = False) -> dict:
    fields = {}
    if not partial or "name" in data:
        fields["name"] = require_str(data, "name", "Name", max_len=120)
    if not partial or "category" in data:
        fields["category"] = require_str(data, "category", "Category", max_len=60)
    if not partial or "price" in data:
        fields["price"] = wallet.parse_amount(data.get("price"), "price")
    if "description" in data:
        fields["description"] = optional_str(data, "description", max_len=500) or ""
    if "imageUrl" in data:
        fields["image_url"] = optional_str(data, "imageUrl")
    if "available" in data:
        fields["available"] = parse_bool(data["available"], "available")
    return fields


@admin.get("/food")
@admin_required
def admin_food():
    with SessionLocal() as s:
        items = s.scalars(select(FoodItem).order_by(FoodItem.id.desc())).all()
        return jsonify([i.to_dict() for i in items])


@admin.post("/food")
@admin_required
def admin_food_create():
    with SessionLocal() as s:
        item = FoodItem(**_food_fields(json_body()))
        s.add(item)
        s.commit()
        return jsonify(item.to_dict()), 201


@admin.put("/food/<int:item_id>")
@admin_required
def admin_food_update(item_id: int):
    fields = _food_fields(json_body(), partial=True)

    with SessionLocal() as s:
        item = s.get(FoodItem, item_id)
        if not item:
            raise NotFound("Food item not found")
        for key, value in fields.items():
            setattr(item, key, value)
        s.commit()
        return jsonify(item.to_dict())


@admin.post("/food/<int:item_id>/image")
@admin_required
def admin_food_image(item_id: int):
    with SessionLocal() as s:
        item = s.get(FoodItem, item_id)
        if not item:
            raise NotFound("Food item not found")

        item.image_url = store_food_image(request.files.get("image"))
        s.commit()
        return jsonify(item.to_dict())


@admin.delete("/food/<int:item_id>")
@admin_required
def admin_food_delete(item_id: int):
    with SessionLocal() as s:
        item = s.get(FoodItem, item_id)
        if not item:
            raise NotFound("Food item not found")
        # orders keep their own snapshot of the item
        s.delete(item)
        s.commit()
    return "", 204


# -----------------------
# Orders
# -----------------------
@admin.get("/orders")
@admin_required
def admin_orders():
    with SessionLocal() as s:
        return jsonify([o.to_dict() for o in ordering.list_orders(s)])


@admin.patch("/orders/<int:order_id>/status")
@admin_required
def admin_order_status(order_id: int):
    status = json_body().get("status")

    with SessionLocal() as s:
        order = s.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        previous = order.status
        ordering.update_status(order, status)
        s.commit()
        body = order.to_dict()

    if previous != body["status"]:
        record_event(order_id, current_user().email, "STATUS_CHANGED", {"from": previous, "to": body["status"]})
    return jsonify(body)


@admin.post("/orders/<int:order_id>/confirm-delivery")
@admin_required
def admin_confirm_delivery(order_id: int):
    code = json_body().get("code")

    with SessionLocal() as s:
        order = s.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        ordering.confirm_delivery(order, code)
        s.commit()
        body = order.to_dict()

    record_event(order_id, current_user().email, "DELIVERY_CONFIRMED")
    return jsonify(body)


@admin.delete("/orders/<int:order_id>")
@admin_required
def admin_order_delete(order_id: int):
    with SessionLocal() as s:
        order = s.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        ordering.delete_order(s, order)
        s.commit()

    record_event(order_id, current_user().email, "ORDER_DELETED")
    return "", 204


# -----------------------
# Subscription plans
# -----------------------
@admin.get("/plans")
@admin_required
def admin_plans():
    with SessionLocal() as s:
        plans = s.scalars(select(SubscriptionPlan).order_by(SubscriptionPlan.id)).all()
        return jsonify([p.to_dict() for p in plans])


@admin.post("/plans")
@admin_required
def admin_plan_create():
    with SessionLocal() as s:
        plan = SubscriptionPlan(**subscriptions.plan_fields(json_body()))
        s.add(plan)
        s.commit()
        return jsonify(plan.to_dict()), 201


@admin.put("/plans/<int:plan_id>")
@admin_required
def admin_plan_update(plan_id: int):
    fields = subscriptions.plan_fields(json_body(), partial=True)

    with SessionLocal() as s:
        plan = subscriptions.get_plan(s, plan_id)
        for key, value in fields.items():
            setattr(plan, key, value)
        s.commit()
        return jsonify(plan.to_dict())


@admin.delete("/plans/<int:plan_id>")
@admin_required
def admin_plan_delete(plan_id: int):
    with SessionLocal() as s:
        subscriptions.retire_plan(subscriptions.get_plan(s, plan_id))
        s.commit()
    return "", 204


# -----------------------
# Subscriptions and reviews
# -----------------------
@admin.get("/subscriptions")
@admin_required
def admin_subscriptions():
    with SessionLocal() as s:
        subs = s.scalars(
            select(UserSubscription).order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
        ).all()
        return jsonify([sub.to_dict() for sub in subs])


@admin.get("/reviews")
@admin_required
def admin_reviews():
    with SessionLocal() as s:
        return jsonify([r.to_dict() for r in reviews.reviews_by_user(s)])
