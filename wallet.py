"""
Per-user wallet ledger.

Balances only move through credit() and debit(), each a single UPDATE
statement, so concurrent requests for the same user cannot lose an update
or take the balance below zero.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select, update

from models import User
from errors import InsufficientFunds, NotFound, ValidationError

log = logging.getLogger(__name__)

CENT = Decimal("0.01")
# largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")


def parse_amount(value, field: str = "amount") -> Decimal:
    """Validate a client-supplied money amount: positive, finite, 2dp, rounded half-up."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Valid {field} is required")
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount <= 0:
            raise ValidationError(f"Valid {field} is required")
        # raises InvalidOperation past the context precision
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Valid {field} is required")

    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field.capitalize()} must not exceed {MAX_AMOUNT}")

    if amount <= 0:
        raise ValidationError(f"Valid {field} is required")
    return amount


def balance(s, user_id: int) -> Decimal:
    value = s.scalar(select(User.wallet_balance).where(User.id == user_id))
    if value is None:
        raise NotFound("User not found")
    return Decimal(value)


def credit(s, user_id: int, amount: Decimal) -> Decimal:
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")

    result = s.execute(
        update(User)
        .where(User.id == user_id)
        .values(wallet_balance=User.wallet_balance + amount)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise NotFound("User not found")

    new_balance = balance(s, user_id)
    log.info("wallet credit user=%s amount=%s balance=%s", user_id, amount, new_balance)
    return new_balance


def debit(s, user_id: int, amount: Decimal) -> Decimal:
    if amount <= 0:
        raise ValidationError("Debit amount must be positive")

    # check-and-decrement in one statement
    result = s.execute(
        update(User)
        .where(User.id == user_id, User.wallet_balance >= amount)
        .values(wallet_balance=User.wallet_balance - amount)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        # distinguishes a missing user from a short balance
        balance(s, user_id)
        raise InsufficientFunds()

    new_balance = balance(s, user_id)
    log.info("wallet debit user=%s amount=%s balance=%s", user_id, amount, new_balance)
    return new_balance
