"""Message builders for lifecycle events.

Each builder maps an entity snapshot plus actor names to a (title, body)
pair. No clock, no I/O: output depends only on the arguments.
"""

from broker.models.deal import Deal
from broker.models.order import Order
from broker.models.response import Response
from broker.models.user import User


def display_name(user: User) -> str:
    if user.external_handle:
        return f"{user.display_name} (@{user.external_handle})"
    return user.display_name


def _crypto(amount: float, code: str) -> str:
    return f"{amount:.8f} {code}"


def _fiat(amount: float, code: str) -> str:
    return f"{amount:.2f} {code}"


def _pair(side: str, crypto: str, fiat: str) -> str:
    return f"{side.upper()} {crypto}/{fiat}"


def format_new_response(order: Order, response: Response, responder_name: str) -> tuple[str, str]:
    title = "New response to your order"
    body = (
        f"{responder_name} responded to your order #{order.id} "
        f"{_pair(order.side, order.crypto, order.fiat)} at {_fiat(order.price, order.fiat)}.\n\n"
        f'Message: "{response.message}"\n\n'
        f"Volume: {_crypto(order.amount, order.crypto)} ({_fiat(order.total, order.fiat)})"
    )
    return title, body


def format_response_accepted(order: Order, author_name: str) -> tuple[str, str]:
    title = "Your response was accepted"
    body = (
        f"{author_name} accepted your response to order #{order.id} "
        f"{_pair(order.side, order.crypto, order.fiat)}.\n\n"
        f"Deal amount: {_crypto(order.amount, order.crypto)} ({_fiat(order.total, order.fiat)})\n\n"
        "Open the app to proceed with the deal."
    )
    return title, body


def format_response_rejected(order: Order, author_name: str, reason: str = "") -> tuple[str, str]:
    title = "Your response was declined"
    body = (
        f"{author_name} declined your response to order #{order.id} "
        f"{_pair(order.side, order.crypto, order.fiat)}."
    )
    if reason:
        body += f"\n\nReason: {reason}"
    body += "\n\nOther orders are still open for responses."
    return title, body


def format_deal_created(deal: Deal, counterparty_name: str) -> tuple[str, str]:
    title = f"Deal #{deal.id} created"
    body = (
        f"A new deal #{deal.id} was opened between you and {counterparty_name}.\n\n"
        f"- {_pair(deal.side, deal.crypto, deal.fiat)}\n"
        f"- Volume: {_crypto(deal.amount, deal.crypto)}\n"
        f"- Price: {_fiat(deal.price, deal.fiat)}\n"
        f"- Total: {_fiat(deal.total, deal.fiat)}\n"
        f"- Payment: {', '.join(deal.payment_methods)}\n\n"
        "Confirm your side in the app once payment is settled."
    )
    return title, body


def format_deal_confirmed(deal: Deal, confirmed_by_name: str, waiting_for_name: str) -> tuple[str, str]:
    title = f"Deal #{deal.id} confirmed by one side"
    body = (
        f"{confirmed_by_name} confirmed their side of deal #{deal.id}.\n\n"
        f"- {confirmed_by_name}: confirmed\n"
        f"- {waiting_for_name}: waiting for confirmation\n\n"
        "Check the payment and confirm your side."
    )
    return title, body


def format_deal_completed(deal: Deal, author_name: str, counterparty_name: str) -> tuple[str, str]:
    title = f"Deal #{deal.id} completed"
    body = (
        f"Deal #{deal.id} is complete.\n\n"
        f"- Volume: {_crypto(deal.amount, deal.crypto)}\n"
        f"- Total: {_fiat(deal.total, deal.fiat)}\n"
        f"- Participants: {author_name} and {counterparty_name}\n\n"
        "Leave a review to build your rating."
    )
    return title, body


def format_deal_disputed(deal: Deal, raised_by_name: str, reason: str) -> tuple[str, str]:
    title = f"Deal #{deal.id} disputed"
    body = f"{raised_by_name} opened a dispute on deal #{deal.id}."
    if reason:
        body += f"\n\nReason: {reason}"
    return title, body


def format_order_expired(order: Order, timeout_hours: float) -> tuple[str, str]:
    title = f"Order #{order.id} expired"
    body = (
        f"Your order #{order.id} {_pair(order.side, order.crypto, order.fiat)} "
        f"for {_crypto(order.amount, order.crypto)} at {_fiat(order.price, order.fiat)} "
        f"received no accepted response within {timeout_hours:g} hours and was closed.\n\n"
        "Post a new order to keep trading."
    )
    return title, body


def format_deal_expired(deal: Deal, timeout_hours: float) -> tuple[str, str]:
    title = f"Deal #{deal.id} expired"
    body = (
        f"Deal #{deal.id} ({_pair(deal.side, deal.crypto, deal.fiat)}, "
        f"{_crypto(deal.amount, deal.crypto)}) was not confirmed by both sides "
        f"within {timeout_hours:g} hours and has expired.\n\n"
        "Orders held by this deal were cancelled; you can post new ones."
    )
    return title, body
