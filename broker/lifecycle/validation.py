"""Input validation for orders, responses and reviews."""

import math

from broker.config.schema import TradingConfig
from broker.lifecycle.errors import ValidationError
from broker.models.order import OrderSide

MIN_RATING = 1
MAX_RATING = 5
# Ratings at or below this need a comment explaining them.
COMMENT_REQUIRED_AT_OR_BELOW = 2


def parse_side(side: str | OrderSide) -> OrderSide:
    try:
        return OrderSide(side)
    except ValueError:
        raise ValidationError(f"unknown order side: {side!r}") from None


def validate_order_input(
    config: TradingConfig,
    crypto: str,
    fiat: str,
    amount: float,
    price: float,
    payment_methods: list[str] | tuple[str, ...],
    note: str,
    min_limit: float,
    max_limit: float,
) -> None:
    if crypto not in config.supported_cryptos:
        raise ValidationError(f"unsupported cryptocurrency: {crypto}")
    if fiat not in config.supported_fiats:
        raise ValidationError(f"unsupported fiat currency: {fiat}")
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError("amount must be a positive number")
    if not math.isfinite(price) or price <= 0:
        raise ValidationError("price must be a positive number")
    if not (math.isfinite(min_limit) and math.isfinite(max_limit)):
        raise ValidationError("limits must be finite numbers")
    if min_limit < 0 or max_limit < 0:
        raise ValidationError("limits cannot be negative")
    if max_limit > 0 and max_limit < min_limit:
        raise ValidationError("max_limit must not be below min_limit")
    if not payment_methods:
        raise ValidationError("at least one payment method is required")
    unknown = [m for m in payment_methods if m not in config.payment_methods]
    if unknown:
        raise ValidationError(f"unsupported payment methods: {', '.join(unknown)}")
    validate_text(note, config.max_message_length, "note")


def validate_text(text: str, max_length: int, field_name: str) -> None:
    if len(text) > max_length:
        raise ValidationError(f"{field_name} exceeds {max_length} characters")


def validate_review(config: TradingConfig, rating: int, comment: str) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"rating must be between {MIN_RATING} and {MAX_RATING}")
    if rating <= COMMENT_REQUIRED_AT_OR_BELOW and not comment.strip():
        raise ValidationError("a comment is required for low ratings")
    validate_text(comment, config.max_comment_length, "comment")
