"""Direct order-to-order compatibility checks and ranking.

Legacy pairing path. New deals go through responses; this stays for
clients that still match orders directly.
"""

from broker.models.order import Order, OrderSide


def _buy_sell(a: Order, b: Order) -> tuple[Order, Order] | None:
    if a.side == b.side:
        return None
    return (a, b) if a.side == OrderSide.BUY else (b, a)


def is_price_compatible(a: Order, b: Order) -> bool:
    """A buyer willing to pay at least the seller's price."""
    pair = _buy_sell(a, b)
    if pair is None:
        return False
    buy, sell = pair
    return buy.price >= sell.price


def is_amount_compatible(a: Order, b: Order) -> bool:
    """The tradable quantity fits each side's fiat limits.

    A zero limit means unbounded on that end.
    """
    qty = min(a.amount, b.amount)
    for order in (a, b):
        fiat_value = qty * order.price
        if order.min_limit > 0 and fiat_value < order.min_limit:
            return False
        if order.max_limit > 0 and fiat_value > order.max_limit:
            return False
    return True


def has_common_payment_methods(a: Order, b: Order) -> bool:
    return bool(set(a.payment_methods) & set(b.payment_methods))


def is_compatible(a: Order, b: Order) -> bool:
    return (
        a.crypto == b.crypto
        and a.fiat == b.fiat
        and is_price_compatible(a, b)
        and is_amount_compatible(a, b)
        and has_common_payment_methods(a, b)
    )


def rank_candidates(order: Order, candidates: list[Order], limit: int = 10) -> list[Order]:
    """Best price first, then oldest, then lowest id.

    A buyer wants the cheapest sell. A seller wants the highest bid.
    """
    if order.side == OrderSide.BUY:
        key = lambda c: (c.price, c.created_at, c.id)  # noqa: E731
    else:
        key = lambda c: (-c.price, c.created_at, c.id)  # noqa: E731
    return sorted(candidates, key=key)[:limit]
