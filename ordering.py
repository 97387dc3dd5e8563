"""
Order placement and the fulfillment lifecycle.

    pending -> preparing -> out-for-delivery -> delivered

Payment runs alongside as pending -> completed | failed. Line items are a
snapshot taken from the catalog at checkout; client prices are never used.
"""
import secrets
import uuid
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import delete, select, update

import wallet
import reviews
import subscriptions
from models import FoodItem, Order, PaymentIntent, Review, utcnow
from errors import AccessDenied, NotFound, ValidationError
from validation import parse_int

ORDER_STATUSES = ("pending", "preparing", "out-for-delivery", "delivered")
STATUS_RANK = {name: i for i, name in enumerate(ORDER_STATUSES)}

PAYMENT_METHODS = ("card", "wallet", "subscription")
DELIVERY_TYPES = ("pickup", "hostel")
HOSTEL_TYPES = ("boys", "girls")

CENT = Decimal("0.01")


def _parse_lines(items) -> dict[int, int]:
    """[{id, quantity}, ...] -> {food_item_id: quantity}, duplicates merged."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Your cart is empty.")

    lines: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item needs an id and quantity")
        item_id = parse_int(raw.get("id"), "Item id", minimum=1)
        qty = parse_int(raw.get("quantity", 1), "Quantity", minimum=1)
        lines[item_id] = lines.get(item_id, 0) + qty
    return lines


def _delivery_fields(user, delivery: dict) -> dict:
    delivery_type = delivery.get("deliveryType") or "pickup"
    if delivery_type not in DELIVERY_TYPES:
        raise ValidationError("Delivery type must be pickup or hostel")

    if delivery_type == "pickup":
        return {"delivery_type": "pickup", "hostel_type": None, "hostel_block": None, "room_number": None}

    # hostel delivery falls back to the saved profile
    hostel_type = delivery.get("hostelType") or user.hostel_type
    hostel_block = delivery.get("hostelBlock") or user.hostel_block
    room_number = delivery.get("roomNumber") or user.room_number

    if hostel_type not in HOSTEL_TYPES:
        raise ValidationError("Hostel type must be boys or girls")
    if not hostel_block or not room_number:
        raise ValidationError("Hostel block and room number are required for hostel delivery")

    return {
        "delivery_type": "hostel",
        "hostel_type": hostel_type,
        "hostel_block": str(hostel_block).strip(),
        "room_number": str(room_number).strip(),
    }


def delivery_fee() -> Decimal:
    return Decimal(str(current_app.config["DELIVERY_FEE"])).quantize(CENT)


def place_order(s, user, items, delivery: dict | None = None, payment_method: str = "card") -> Order:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be card, wallet or subscription")

    lines = _parse_lines(items)
    address = _delivery_fields(user, delivery or {})

    food = {
        f.id: f
        for f in s.scalars(select(FoodItem).where(FoodItem.id.in_(list(lines))))
    }

    snapshot = []
    subtotal = Decimal("0.00")
    for item_id, qty in lines.items():
        fi = food.get(item_id)
        if fi is None:
            raise NotFound(f"Food item {item_id} not found")
        if not fi.available:
            raise ValidationError(f"{fi.name} is currently unavailable")

        price = Decimal(fi.price).quantize(CENT)
        subtotal += price * qty
        snapshot.append({"id": fi.id, "name": fi.name, "price": float(price), "quantity": qty})

    fee = delivery_fee()
    minutes = current_app.config["ESTIMATED_DELIVERY_MINUTES"]

    order = Order(
        user_id=user.id,
        items=snapshot,
        subtotal=subtotal,
        delivery_fee=fee,
        total=subtotal + fee,
        status="pending",
        payment_status="pending",
        payment_method=payment_method,
        estimated_delivery_time=utcnow() + timedelta(minutes=minutes),
        **address,
    )
    s.add(order)
    s.flush()

    if payment_method == "wallet":
        wallet.debit(s, user.id, order.total)
        order.payment_id = f"wallet-{uuid.uuid4().hex}"
        mark_paid(order)
    elif payment_method == "subscription":
        sub = subscriptions.deduct_meal(s, user.id)
        order.payment_id = f"subscription-{sub.id}"
        mark_paid(order)

    return order


def mark_paid(order: Order):
    order.payment_status = "completed"
    if STATUS_RANK[order.status] < STATUS_RANK["preparing"]:
        order.status = "preparing"


def mark_payment_failed(order: Order):
    if order.payment_status != "completed":
        order.payment_status = "failed"


def get_order_for(s, user, order_id: int) -> Order:
    order = s.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if order.user_id != user.id and not user.is_admin:
        raise AccessDenied()
    return order


def list_orders(s, user_id: int | None = None) -> list[Order]:
    q = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if user_id is not None:
        q = q.where(Order.user_id == user_id)
    return list(s.scalars(q))


def update_status(order: Order, new_status) -> Order:
    if new_status not in STATUS_RANK:
        raise ValidationError("Invalid status")

    current = STATUS_RANK[order.status]
    target = STATUS_RANK[new_status]
    if target < current:
        raise ValidationError(f"Cannot move order from {order.status} back to {new_status}")
    if target == current:
        return order

    order.status = new_status
    if new_status == "delivered":
        order.delivered_at = utcnow()
    return order


def generate_verification_code(order: Order) -> str:
    if order.verification_code:
        return order.verification_code

    if STATUS_RANK[order.status] < STATUS_RANK["out-for-delivery"]:
        raise ValidationError("A verification code is available once the order is out for delivery")

    order.verification_code = secrets.token_hex(6).upper()
    return order.verification_code


def confirm_delivery(order: Order, code) -> Order:
    supplied = str(code or "").strip().upper()
    if not order.verification_code or not secrets.compare_digest(order.verification_code, supplied):
        raise AccessDenied("Verification code does not match")
    return update_status(order, "delivered")


def delete_order(s, order: Order):
    """
    Admin removal of an order. Its reviews go with it and the affected
    ratings are rebuilt; payment intents are kept for reconciliation with
    the order link cleared.
    """
    rated = set(s.scalars(select(Review.food_item_id).where(Review.order_id == order.id)))
    s.execute(delete(Review).where(Review.order_id == order.id))
    s.execute(
        update(PaymentIntent)
        .where(PaymentIntent.order_id == order.id)
        .values(order_id=None)
        .execution_options(synchronize_session="fetch")
    )
    s.delete(order)
    s.flush()

    for food_item_id in sorted(rated):
        reviews.recompute_rating(s, food_item_id)
