from sqlalchemy import func, select

from models import FoodItem, Order, Review
from errors import AccessDenied, Conflict, NotEligible, NotFound, ValidationError
from validation import optional_str, parse_int


def parse_rating(value) -> int:
    rating = parse_int(value, "Rating")
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    return rating


def recompute_rating(s, food_item_id: int) -> FoodItem | None:
    """
    Rebuild a food item's rating from its current reviews.
    Holds the item's row lock so concurrent review changes apply one at a time.
    """
    item = s.scalar(
        select(FoodItem).where(FoodItem.id == food_item_id).with_for_update()
    )
    if item is None:
        return None

    avg_rating, count = s.execute(
        select(func.avg(Review.rating), func.count(Review.id))
        .where(Review.food_item_id == food_item_id)
    ).one()

    item.rating_count = int(count or 0)
    item.average_rating = float(avg_rating) if item.rating_count else 0.0
    return item


def add_review(s, user, data: dict) -> Review:
    food_item_id = parse_int(data.get("foodItemId"), "Food item ID", minimum=1)
    order_id = parse_int(data.get("orderId"), "Order ID", minimum=1)
    rating = parse_rating(data.get("rating"))
    comment = optional_str(data, "comment", max_len=2000)

    if not s.get(FoodItem, food_item_id):
        raise NotFound("Food item not found")

    # the order must be the reviewer's and must contain the item
    order = s.get(Order, order_id)
    if not order or order.user_id != user.id or food_item_id not in order.item_ids():
        raise NotEligible()

    already = s.scalar(
        select(Review.id).where(
            Review.user_id == user.id,
            Review.order_id == order_id,
            Review.food_item_id == food_item_id,
        )
    )
    if already:
        raise Conflict("You have already reviewed this item for this order")

    review = Review(
        user_id=user.id,
        food_item_id=food_item_id,
        order_id=order_id,
        rating=rating,
        comment=comment,
    )
    s.add(review)
    s.flush()

    recompute_rating(s, food_item_id)
    return review


def delete_review(s, user, review_id: int):
    review = s.get(Review, review_id)
    if not review:
        raise NotFound("Review not found")
    if review.user_id != user.id and not user.is_admin:
        raise AccessDenied()

    food_item_id = review.food_item_id
    s.delete(review)
    s.flush()

    recompute_rating(s, food_item_id)


def reviews_for_food(s, food_item_id: int) -> list[Review]:
    return list(s.scalars(
        select(Review)
        .where(Review.food_item_id == food_item_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
    ))


def reviews_by_user(s, user_id: int | None = None) -> list[Review]:
    q = select(Review).order_by(Review.created_at.desc(), Review.id.desc())
    if user_id is not None:
        q = q.where(Review.user_id == user_id)
    return list(s.scalars(q))
