from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    String, Integer, Float, Boolean, Numeric, Text, JSON, Date,
    ForeignKey, DateTime, UniqueConstraint, func,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _money(value) -> float:
    return float(value or 0)


def _iso(value):
    return value.isoformat() if value else None


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), default="student", nullable=False)

    # delivery profile
    hostel_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    hostel_block: Mapped[str | None] = mapped_column(String(20), nullable=True)
    room_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    wallet_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "userType": self.user_type,
            "hostelType": self.hostel_type,
            "hostelBlock": self.hostel_block,
            "roomNumber": self.room_number,
            "isAdmin": bool(self.is_admin),
            "walletBalance": _money(self.wallet_balance),
        }


class AuthSession(Base):
    """Server-side login session; the cookie only carries the token."""

    __tablename__ = "auth_sessions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class FoodItem(Base):
    __tablename__ = "food_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # url, or a filename like "dosa.jpg" (in static/images/)
    image_url: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # derived from reviews, see reviews.recompute_rating
    average_rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": _money(self.price),
            "imageUrl": self.image_url,
            "category": self.category,
            "available": bool(self.available),
            "averageRating": float(self.average_rating or 0),
            "ratingCount": int(self.rating_count or 0),
        }


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)

    # snapshot of [{"id", "name", "price", "quantity"}] at checkout
    items: Mapped[list] = mapped_column(JSON, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)
    delivery_type: Mapped[str] = mapped_column(String(20), nullable=False)
    hostel_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    hostel_block: Mapped[str | None] = mapped_column(String(20), nullable=True)
    room_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    payment_method: Mapped[str] = mapped_column(String(20), default="card", nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    verification_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    estimated_delivery_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def item_ids(self) -> set[int]:
        return {int(line["id"]) for line in self.items or []}

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "items": self.items,
            "subtotal": _money(self.subtotal),
            "deliveryFee": _money(self.delivery_fee),
            "total": _money(self.total),
            "status": self.status,
            "deliveryType": self.delivery_type,
            "hostelType": self.hostel_type,
            "hostelBlock": self.hostel_block,
            "roomNumber": self.room_number,
            "paymentMethod": self.payment_method,
            "paymentId": self.payment_id,
            "paymentStatus": self.payment_status,
            "verificationCode": self.verification_code,
            "estimatedDeliveryTime": _iso(self.estimated_delivery_time),
            "deliveredAt": _iso(self.delivered_at),
            "createdAt": _iso(self.created_at),
        }


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "order_id", "food_item_id", name="uq_review_per_order_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    # no FK: food items are hard-deleted while their history stays
    food_item_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "foodItemId": self.food_item_id,
            "orderId": self.order_id,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": _iso(self.created_at),
        }


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # days
    meals_per_day: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": _money(self.price),
            "duration": self.duration,
            "mealsPerDay": self.meals_per_day,
            "isActive": bool(self.is_active),
        }


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    payment_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    remaining_meals: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "isActive": bool(self.is_active),
            "paymentId": self.payment_id,
            "remainingMeals": self.remaining_meals,
            "createdAt": _iso(self.created_at),
        }


class PaymentIntent(Base):
    """Local record of a gateway payment intent, used to reconcile webhooks."""

    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), nullable=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("subscription_plans.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=func.now(), nullable=True)
