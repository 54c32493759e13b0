"""Closed transition tables for orders, responses and deals."""

from broker.lifecycle.errors import InvalidState
from broker.models.deal import DealStatus
from broker.models.order import OrderStatus
from broker.models.response import ResponseStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.ACTIVE: frozenset({
        OrderStatus.HAS_RESPONSES,
        OrderStatus.IN_DEAL,
        OrderStatus.MATCHED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.HAS_RESPONSES: frozenset({
        OrderStatus.IN_DEAL,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.IN_DEAL: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.MATCHED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}

RESPONSE_TRANSITIONS: dict[ResponseStatus, frozenset[ResponseStatus]] = {
    ResponseStatus.WAITING: frozenset({ResponseStatus.ACCEPTED, ResponseStatus.REJECTED}),
    ResponseStatus.ACCEPTED: frozenset(),
    ResponseStatus.REJECTED: frozenset(),
}

DEAL_TRANSITIONS: dict[DealStatus, frozenset[DealStatus]] = {
    DealStatus.IN_PROGRESS: frozenset({
        DealStatus.WAITING_CONFIRMATION,
        DealStatus.COMPLETED,
        DealStatus.EXPIRED,
        DealStatus.DISPUTE,
        DealStatus.CANCELLED,
    }),
    DealStatus.WAITING_CONFIRMATION: frozenset({
        DealStatus.COMPLETED,
        DealStatus.EXPIRED,
        DealStatus.DISPUTE,
        DealStatus.CANCELLED,
    }),
    DealStatus.DISPUTE: frozenset(),
    DealStatus.COMPLETED: frozenset(),
    DealStatus.EXPIRED: frozenset(),
    DealStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}
)
TERMINAL_DEAL_STATUSES = frozenset(
    {DealStatus.COMPLETED, DealStatus.EXPIRED, DealStatus.CANCELLED}
)


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_transition_deal(current: DealStatus, target: DealStatus) -> bool:
    return target in DEAL_TRANSITIONS[current]


def ensure_order_transition(order_id: int, current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition_order(current, target):
        raise InvalidState(
            f"order {order_id} cannot move from {current} to {target}",
            entity="order",
            entity_id=order_id,
        )


def ensure_response_transition(
    response_id: int, current: ResponseStatus, target: ResponseStatus
) -> None:
    if target not in RESPONSE_TRANSITIONS[current]:
        raise InvalidState(
            f"response {response_id} cannot move from {current} to {target}",
            entity="response",
            entity_id=response_id,
        )


def ensure_deal_transition(deal_id: int, current: DealStatus, target: DealStatus) -> None:
    if not can_transition_deal(current, target):
        raise InvalidState(
            f"deal {deal_id} cannot move from {current} to {target}",
            entity="deal",
            entity_id=deal_id,
        )


def deal_status_for(author_confirmed: bool, counterparty_confirmed: bool) -> DealStatus:
    """Status implied by the confirmation flags of a live deal."""
    if author_confirmed and counterparty_confirmed:
        return DealStatus.COMPLETED
    if author_confirmed or counterparty_confirmed:
        return DealStatus.WAITING_CONFIRMATION
    return DealStatus.IN_PROGRESS
