import logging

from flask import Blueprint, jsonify, request

import ordering
import reviews
from sql_db import SessionLocal
from models import FoodItem, User
from auth import login_required, current_user
from errors import NotFound, ValidationError
from firestore_db import record_event
from receipts import send_receipt
from routes_auth import profile_fields
from validation import json_body, optional_str

log = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


# -----------------------
# Menu (with category filter)
# -----------------------
@api.get("/food")
def list_food():
    selected = request.args.get("category", "").strip()
    only_available = request.args.get("available", "").strip().lower() in ("1", "true")

    with SessionLocal() as s:
        q = s.query(FoodItem)
        if selected:
            q = q.filter(FoodItem.category == selected)
        if only_available:
            q = q.filter(FoodItem.available.is_(True))
        items = q.order_by(FoodItem.category, FoodItem.name).all()
        return jsonify([i.to_dict() for i in items])


@api.get("/food/categories")
def food_categories():
    with SessionLocal() as s:
        categories = [
            c[0]
            for c in s.query(FoodItem.category).distinct().order_by(FoodItem.category).all()
            if c[0]
        ]
    return jsonify(categories)


@api.get("/food/<int:item_id>")
def get_food(item_id: int):
    with SessionLocal() as s:
        item = s.get(FoodItem, item_id)
        if not item:
            raise NotFound("Food item not found")
        return jsonify(item.to_dict())


# -----------------------
# Profile
# -----------------------
@api.put("/profile")
@login_required
def update_profile():
    data = json_body()
    fields = profile_fields(data)
    if "name" in data:
        name = optional_str(data, "name", max_len=120)
        if not name:
            raise ValidationError("Name is required")
        fields["name"] = name

    with SessionLocal() as s:
        u = s.get(User, current_user().id)
        if not u:
            raise NotFound("User not found")
        for key, value in fields.items():
            setattr(u, key, value)
        s.commit()
        return jsonify(u.to_dict())


# -----------------------
# Orders
# -----------------------
@api.post("/orders")
@login_required
def place_order():
    data = json_body()
    user = current_user()

    with SessionLocal() as s:
        order = ordering.place_order(
            s, user, data.get("items"),
            delivery=data,
            payment_method=data.get("paymentMethod") or "card",
        )
        s.commit()
        body = order.to_dict()

    record_event(body["id"], user.email, "ORDER_PLACED", {
        "total": body["total"], "paymentMethod": body["paymentMethod"],
    })
    if body["paymentStatus"] == "completed":
        send_receipt(body["id"], user.email, body["total"], purpose="order")

    return jsonify(body), 201


@api.get("/orders")
@login_required
def list_orders():
    user = current_user()
    with SessionLocal() as s:
        # admins see every order
        orders_list = ordering.list_orders(s, None if user.is_admin else user.id)
        return jsonify([o.to_dict() for o in orders_list])


@api.get("/orders/<int:order_id>")
@login_required
def get_order(order_id: int):
    with SessionLocal() as s:
        order = ordering.get_order_for(s, current_user(), order_id)
        return jsonify(order.to_dict())


@api.post("/orders/<int:order_id>/verification-code")
@login_required
def order_verification_code(order_id: int):
    with SessionLocal() as s:
        order = ordering.get_order_for(s, current_user(), order_id)
        ordering.generate_verification_code(order)
        s.commit()
        return jsonify(order.to_dict())


# -----------------------
# Reviews
# -----------------------
@api.post("/reviews")
@login_required
def add_review():
    with SessionLocal() as s:
        review = reviews.add_review(s, current_user(), json_body())
        s.commit()
        return jsonify(review.to_dict()), 201


@api.get("/reviews/food/<int:item_id>")
def food_reviews(item_id: int):
    with SessionLocal() as s:
        return jsonify([r.to_dict() for r in reviews.reviews_for_food(s, item_id)])


@api.get("/reviews/mine")
@login_required
def my_reviews():
    with SessionLocal() as s:
        return jsonify([r.to_dict() for r in reviews.reviews_by_user(s, current_user().id)])


@api.delete("/reviews/<int:review_id>")
@login_required
def delete_review(review_id: int):
    with SessionLocal() as s:
        reviews.delete_review(s, current_user(), review_id)
        s.commit()
    return "", 204
