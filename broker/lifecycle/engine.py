"""Lifecycle engine: the single writer of order, response and deal state.

Every state change re-reads its entities inside a BEGIN IMMEDIATE
transaction, validates the move against the transition tables, writes, and
commits. Notifications are handed to the dispatcher only after commit, so a
failed delivery never undoes a transition. An engine may be shared by
several threads; its connection is only ever used under the engine lock.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from broker.config.schema import TradingConfig
from broker.lifecycle import transitions
from broker.lifecycle.errors import (
    AlreadyResolved,
    Forbidden,
    InvalidState,
    NotFound,
    Unavailable,
    ValidationError,
)
from broker.lifecycle.validation import (
    parse_side,
    validate_order_input,
    validate_review,
    validate_text,
)
from broker.matching.compatibility import is_compatible, rank_candidates
from broker.models.common import Clock, to_iso, utc_now
from broker.models.deal import LIVE_DEAL_STATUSES, Deal, DealExpiry, DealStatus
from broker.models.notification import Notification, NotificationType
from broker.models.order import Order, OrderFilter, OrderSide, OrderStatus
from broker.models.reporting import UserStats
from broker.models.response import Response, ResponseFilter, ResponseStatus
from broker.models.review import Review, UserRating
from broker.models.user import User
from broker.notifications import formatters
from broker.notifications.dispatcher import NotificationDispatcher
from broker.storage import deal_repo, order_repo, response_repo, review_repo, user_repo
from broker.storage.database import StoreError, store_errors, transaction

logger = logging.getLogger(__name__)

REASON_OTHER_ACCEPTED = "another response was accepted"
REASON_ORDER_CANCELLED = "the order was cancelled"
REASON_ORDER_EXPIRED = "the order expired"

# Page size for the matching candidate scan.
MATCH_SCAN_LIMIT = 500


class LifecycleEngine:
    def __init__(
        self,
        conn: sqlite3.Connection,
        dispatcher: NotificationDispatcher,
        trading_config: TradingConfig,
        clock: Clock = utc_now,
    ):
        self.conn = conn
        self.dispatcher = dispatcher
        self.config = trading_config
        self.clock = clock
        # The connection is shared by every thread driving this engine.
        self._lock = threading.RLock()

    # --- Users ---

    def register_user(self, external_id: str, display_name: str, handle: str = "") -> User:
        """Create a directory entry, or return the existing one for external_id."""
        if not external_id.strip():
            raise ValidationError("external_id is required")
        if not display_name.strip():
            raise ValidationError("display_name is required")
        with self._transaction():
            existing = user_repo.get_user_by_external_id(self.conn, external_id)
            if existing is not None:
                return existing
            user_id = user_repo.create_user(
                self.conn, external_id, display_name.strip(), handle.lstrip("@"),
                self._now_iso(),
            )
            user = user_repo.get_user(self.conn, user_id)
        assert user is not None
        logger.info("Registered user %d (external_id=%s)", user.id, external_id)
        return user

    def get_user(self, user_id: int) -> User:
        with self._reading():
            user = user_repo.get_user(self.conn, user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found", entity="user", entity_id=user_id)
        return user

    def get_user_stats(self, user_id: int) -> UserStats:
        user = self.get_user(user_id)
        with self._reading():
            orders = order_repo.query_orders(self.conn, OrderFilter(owner_id=user.id, limit=-1))
            deals = deal_repo.get_deals_for_user(self.conn, user.id, limit=-1)
            rating = review_repo.get_user_rating(self.conn, user.id)

        stats = UserStats(user_id=user.id, total_orders=len(orders), total_deals=len(deals))
        for order in orders:
            if order.status == OrderStatus.ACTIVE:
                stats.active_orders += 1
            elif order.status == OrderStatus.COMPLETED:
                stats.completed_orders += 1
        for deal in deals:
            if deal.status == DealStatus.COMPLETED:
                stats.completed_deals += 1
                stats.total_volume += deal.total
            elif deal.status in (DealStatus.CANCELLED, DealStatus.EXPIRED):
                stats.cancelled_deals += 1
        if deals:
            stats.success_rate = round(stats.completed_deals / len(deals) * 100, 1)
        stats.average_rating = rating.average
        stats.total_reviews = rating.count
        return stats

    # --- Orders ---

    def create_order(
        self,
        owner_id: int,
        side: str | OrderSide,
        crypto: str,
        fiat: str,
        amount: float,
        price: float,
        payment_methods: list[str] | tuple[str, ...],
        note: str = "",
        min_limit: float = 0,
        max_limit: float = 0,
    ) -> Order:
        order_side = parse_side(side)
        validate_order_input(
            self.config, crypto, fiat, amount, price, payment_methods, note,
            min_limit, max_limit,
        )
        with self._transaction():
            self._require_user(owner_id)
            order_id = order_repo.create_order(
                self.conn, owner_id, order_side, crypto, fiat, amount, price,
                payment_methods, note, min_limit, max_limit, self._now_iso(),
            )
            order = order_repo.get_order(self.conn, order_id)
        assert order is not None
        logger.info(
            "Order %d created: %s %s/%s amount=%.8f price=%.2f by user %d",
            order.id, order.side, crypto, fiat, amount, price, owner_id,
        )
        return order

    def get_order(self, order_id: int) -> Order:
        with self._reading():
            order = order_repo.get_order(self.conn, order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found", entity="order", entity_id=order_id)
        return order

    def list_orders(self, flt: OrderFilter | None = None) -> list[Order]:
        with self._reading():
            return order_repo.query_orders(self.conn, flt or OrderFilter())

    def cancel_order(self, owner_id: int, order_id: int) -> Order:
        """Owner withdraws an open order. Waiting responses are rejected with it."""
        now = self._now_iso()
        with self._transaction():
            order = self._load_order(order_id)
            if order.owner_id != owner_id:
                raise Forbidden(
                    f"user {owner_id} does not own order {order_id}",
                    entity="order", entity_id=order_id,
                )
            if not order.is_open:
                raise InvalidState(
                    f"order {order_id} is {order.status} and cannot be cancelled",
                    entity="order", entity_id=order_id,
                )
            rejected = self._reject_waiting(order.id, now, REASON_ORDER_CANCELLED)
            transitions.ensure_order_transition(order.id, order.status, OrderStatus.CANCELLED)
            order_repo.update_order_status(
                self.conn, order.id, OrderStatus.CANCELLED, now, expected=order.status
            )
            order = self._load_order(order.id)
        logger.info(
            "Order %d cancelled by owner, %d waiting responses rejected",
            order.id, len(rejected),
        )

        users = self._directory(owner_id, *(r.responder_id for r in rejected))
        author_name = self._name(users, owner_id)
        for r in rejected:
            self._notify(
                users, r.responder_id, NotificationType.RESPONSE_REJECTED,
                formatters.format_response_rejected(order, author_name, REASON_ORDER_CANCELLED),
                order_id=order.id, response_id=r.id,
            )
        return order

    # --- Responses ---

    def create_response(self, responder_id: int, order_id: int, message: str) -> Response:
        validate_text(message, self.config.max_message_length, "message")
        now = self._now_iso()
        with self._transaction():
            order = self._load_order(order_id)
            if order.owner_id == responder_id:
                raise Forbidden(
                    "cannot respond to your own order", entity="order", entity_id=order_id
                )
            if not order.is_open:
                raise InvalidState(
                    f"order {order_id} is {order.status} and not accepting responses",
                    entity="order", entity_id=order_id,
                )
            self._require_user(responder_id)
            response_id = response_repo.create_response(
                self.conn, order.id, responder_id, message, now
            )
            if order.status == OrderStatus.ACTIVE:
                transitions.ensure_order_transition(
                    order.id, order.status, OrderStatus.HAS_RESPONSES
                )
                order_repo.update_order_status(
                    self.conn, order.id, OrderStatus.HAS_RESPONSES, now,
                    expected=OrderStatus.ACTIVE,
                )
            response = response_repo.get_response(self.conn, response_id)
        assert response is not None
        logger.info(
            "Response %d created on order %d by user %d",
            response.id, order.id, responder_id,
        )

        users = self._directory(order.owner_id, responder_id)
        self._notify(
            users, order.owner_id, NotificationType.NEW_RESPONSE,
            formatters.format_new_response(order, response, self._name(users, responder_id)),
            order_id=order.id, response_id=response.id,
        )
        return response

    def accept_response(self, owner_id: int, response_id: int) -> Deal:
        """Accept one response and open a deal, rejecting its waiting siblings.

        All writes happen in one transaction. Under concurrent accepts on the
        same order, the first to take the write lock wins and later ones see
        the recorded acceptance and fail with AlreadyResolved.
        """
        now = self._now_iso()
        with self._transaction():
            response, order = self._load_response_for_owner(owner_id, response_id)
            if order.accepted_response_id is not None or order.status in (
                OrderStatus.IN_DEAL, OrderStatus.COMPLETED,
            ):
                raise AlreadyResolved(
                    f"order {order.id} already has an accepted response",
                    entity="order", entity_id=order.id,
                )
            transitions.ensure_response_transition(
                response.id, response.status, ResponseStatus.ACCEPTED
            )
            if not order.is_open:
                raise InvalidState(
                    f"order {order.id} is {order.status} and cannot enter a deal",
                    entity="order", entity_id=order.id,
                )
            transitions.ensure_order_transition(order.id, order.status, OrderStatus.IN_DEAL)

            try:
                response_repo.update_response_status(
                    self.conn, response.id, ResponseStatus.ACCEPTED, now,
                    expected=ResponseStatus.WAITING,
                )
                rejected = self._reject_waiting(order.id, now, REASON_OTHER_ACCEPTED)
                deal_id = deal_repo.create_deal(
                    self.conn, response.id, order, response.responder_id, now
                )
            except sqlite3.IntegrityError as e:
                raise AlreadyResolved(
                    f"order {order.id} already has a deal",
                    entity="order", entity_id=order.id,
                ) from e
            if not order_repo.set_accepted_response(self.conn, order.id, response.id, now):
                raise AlreadyResolved(
                    f"order {order.id} left the open states",
                    entity="order", entity_id=order.id,
                )
            deal = deal_repo.get_deal(self.conn, deal_id)
        assert deal is not None
        logger.info(
            "Response %d accepted on order %d: deal %d opened, %d siblings rejected",
            response.id, order.id, deal.id, len(rejected),
        )

        users = self._directory(
            deal.author_id, deal.counterparty_id, *(r.responder_id for r in rejected)
        )
        author_name = self._name(users, deal.author_id)
        counterparty_name = self._name(users, deal.counterparty_id)
        self._notify(
            users, deal.counterparty_id, NotificationType.RESPONSE_ACCEPTED,
            formatters.format_response_accepted(order, author_name),
            order_id=order.id, response_id=response.id, deal_id=deal.id,
        )
        for r in rejected:
            self._notify(
                users, r.responder_id, NotificationType.RESPONSE_REJECTED,
                formatters.format_response_rejected(order, author_name, REASON_OTHER_ACCEPTED),
                order_id=order.id, response_id=r.id,
            )
        self._notify(
            users, deal.author_id, NotificationType.DEAL_CREATED,
            formatters.format_deal_created(deal, counterparty_name), deal_id=deal.id,
        )
        self._notify(
            users, deal.counterparty_id, NotificationType.DEAL_CREATED,
            formatters.format_deal_created(deal, author_name), deal_id=deal.id,
        )
        return deal

    def reject_response(self, owner_id: int, response_id: int, reason: str = "") -> Response:
        """Reject one response. Siblings and the order are left as they are."""
        validate_text(reason, self.config.max_message_length, "reason")
        now = self._now_iso()
        with self._transaction():
            response, order = self._load_response_for_owner(owner_id, response_id)
            transitions.ensure_response_transition(
                response.id, response.status, ResponseStatus.REJECTED
            )
            response_repo.update_response_status(
                self.conn, response.id, ResponseStatus.REJECTED, now,
                expected=ResponseStatus.WAITING, reason=reason,
            )
            response = response_repo.get_response(self.conn, response.id)
        assert response is not None
        logger.info("Response %d rejected on order %d", response.id, order.id)

        users = self._directory(owner_id, response.responder_id)
        self._notify(
            users, response.responder_id, NotificationType.RESPONSE_REJECTED,
            formatters.format_response_rejected(order, self._name(users, owner_id), reason),
            order_id=order.id, response_id=response.id,
        )
        return response

    def list_my_responses(self, user_id: int) -> list[Response]:
        with self._reading():
            return response_repo.query_responses(
                self.conn, ResponseFilter(responder_id=user_id)
            )

    def list_responses_to_my_orders(self, owner_id: int) -> list[Response]:
        with self._reading():
            return response_repo.query_responses(
                self.conn, ResponseFilter(order_owner_id=owner_id)
            )

    # --- Deals ---

    def confirm_deal(self, user_id: int, deal_id: int, as_author: bool, proof: str = "") -> Deal:
        """Record one side's confirmation. Completes the deal once both sides confirmed.

        Confirming a side that is already confirmed returns the deal as is:
        nothing is written, no notification goes out and no counter moves.
        """
        validate_text(proof, self.config.max_message_length, "proof")
        now = self._now_iso()
        with self._transaction():
            deal = self._load_deal(deal_id)
            expected_user = deal.author_id if as_author else deal.counterparty_id
            if user_id != expected_user:
                role = "author" if as_author else "counterparty"
                raise Forbidden(
                    f"user {user_id} is not the {role} of deal {deal_id}",
                    entity="deal", entity_id=deal_id,
                )
            if deal.is_confirmed_by(as_author):
                logger.info(
                    "Deal %d: user %d already confirmed, nothing to do", deal.id, user_id
                )
                return deal
            if deal.status not in LIVE_DEAL_STATUSES:
                raise InvalidState(
                    f"deal {deal_id} is {deal.status} and cannot be confirmed",
                    entity="deal", entity_id=deal_id,
                )

            deal_repo.update_deal_confirmation(self.conn, deal.id, as_author, proof)
            new_status = transitions.deal_status_for(
                deal.author_confirmed or as_author,
                deal.counterparty_confirmed or not as_author,
            )
            if new_status != deal.status:
                transitions.ensure_deal_transition(deal.id, deal.status, new_status)
                deal_repo.update_deal_status(
                    self.conn, deal.id, new_status, expected=deal.status,
                    completed_at=now if new_status == DealStatus.COMPLETED else None,
                )
            if new_status == DealStatus.COMPLETED:
                self._complete_order(deal.order_id, now)
                for participant in deal.participant_ids:
                    user_repo.increment_deal_stats(self.conn, participant, successful=True)
            deal = self._load_deal(deal.id)
        logger.info(
            "Deal %d confirmed by user %d as %s, status now %s",
            deal.id, user_id, "author" if as_author else "counterparty", deal.status,
        )

        users = self._directory(*deal.participant_ids)
        author_name = self._name(users, deal.author_id)
        counterparty_name = self._name(users, deal.counterparty_id)
        if deal.status == DealStatus.COMPLETED:
            message = formatters.format_deal_completed(deal, author_name, counterparty_name)
            for participant in deal.participant_ids:
                self._notify(
                    users, participant, NotificationType.DEAL_COMPLETED, message,
                    deal_id=deal.id,
                )
        elif deal.status == DealStatus.WAITING_CONFIRMATION:
            waiting_for = deal.other_party(user_id)
            self._notify(
                users, waiting_for, NotificationType.DEAL_CONFIRMED,
                formatters.format_deal_confirmed(
                    deal, self._name(users, user_id), self._name(users, waiting_for)
                ),
                deal_id=deal.id,
            )
        return deal

    def open_dispute(self, user_id: int, deal_id: int, reason: str) -> Deal:
        """Flag a live deal as disputed. Resolution happens outside the engine."""
        if not reason.strip():
            raise ValidationError("a dispute reason is required")
        validate_text(reason, self.config.max_message_length, "reason")
        with self._transaction():
            deal = self._load_deal(deal_id)
            self._require_participant(deal, user_id)
            transitions.ensure_deal_transition(deal.id, deal.status, DealStatus.DISPUTE)
            deal_repo.update_deal_status(
                self.conn, deal.id, DealStatus.DISPUTE, expected=deal.status,
                dispute_reason=reason,
            )
            deal = self._load_deal(deal.id)
        logger.warning("Deal %d disputed by user %d: %s", deal.id, user_id, reason)

        users = self._directory(*deal.participant_ids)
        message = formatters.format_deal_disputed(deal, self._name(users, user_id), reason)
        for participant in deal.participant_ids:
            self._notify(
                users, participant, NotificationType.DEAL_DISPUTED, message, deal_id=deal.id
            )
        return deal

    def get_deal(self, user_id: int, deal_id: int) -> Deal:
        with self._reading():
            deal = deal_repo.get_deal(self.conn, deal_id)
        if deal is None:
            raise NotFound(f"deal {deal_id} not found", entity="deal", entity_id=deal_id)
        self._require_participant(deal, user_id)
        return deal

    def list_user_deals(self, user_id: int, status: DealStatus | None = None) -> list[Deal]:
        with self._reading():
            return deal_repo.get_deals_for_user(self.conn, user_id, status=status)

    def list_stale_deals(self, cutoff: datetime, limit: int, offset: int = 0) -> list[Deal]:
        """Live deals created before cutoff, oldest first."""
        with self._reading():
            return deal_repo.get_expired_deals(self.conn, to_iso(cutoff), limit, offset)

    # --- Reviews ---

    def leave_review(
        self, from_user_id: int, deal_id: int, rating: int, comment: str = ""
    ) -> Review:
        validate_review(self.config, rating, comment)
        with self._transaction():
            deal = self._load_deal(deal_id)
            self._require_participant(deal, from_user_id)
            if deal.status != DealStatus.COMPLETED:
                raise InvalidState(
                    f"deal {deal_id} is {deal.status}; only completed deals can be reviewed",
                    entity="deal", entity_id=deal_id,
                )
            if review_repo.has_review(self.conn, deal.id, from_user_id):
                raise AlreadyResolved(
                    f"user {from_user_id} already reviewed deal {deal_id}",
                    entity="deal", entity_id=deal_id,
                )
            try:
                review_id = review_repo.create_review(
                    self.conn, deal.id, from_user_id, deal.other_party(from_user_id),
                    rating, comment, self._now_iso(),
                )
            except sqlite3.IntegrityError as e:
                raise AlreadyResolved(
                    f"user {from_user_id} already reviewed deal {deal_id}",
                    entity="deal", entity_id=deal_id,
                ) from e
            review = review_repo.get_review(self.conn, review_id)
        assert review is not None
        logger.info(
            "Review %d on deal %d: user %d rated user %d %d/5",
            review.id, deal.id, review.from_user_id, review.to_user_id, rating,
        )
        return review

    def get_user_rating(self, user_id: int) -> UserRating:
        with self._reading():
            return review_repo.get_user_rating(self.conn, user_id)

    # --- Legacy direct matching ---

    def get_matching_orders(self, order_id: int) -> list[Order]:
        """Active opposite-side orders compatible with this one, best first."""
        order = self.get_order(order_id)
        is_buy = order.side == OrderSide.BUY
        # Pages arrive in rank order, so the first match_limit hits are the best.
        compatible: list[Order] = []
        offset = 0
        while len(compatible) < self.config.match_limit:
            with self._reading():
                page = order_repo.query_orders(
                    self.conn,
                    OrderFilter(
                        side=order.side.opposite,
                        crypto=order.crypto,
                        fiat=order.fiat,
                        statuses=(OrderStatus.ACTIVE,),
                        exclude_owner_id=order.owner_id,
                        max_price=order.price if is_buy else None,
                        min_price=None if is_buy else order.price,
                        price_order="asc" if is_buy else "desc",
                        limit=MATCH_SCAN_LIMIT,
                        offset=offset,
                    ),
                )
            compatible.extend(c for c in page if is_compatible(order, c))
            if len(page) < MATCH_SCAN_LIMIT:
                break
            offset += MATCH_SCAN_LIMIT
        return rank_candidates(order, compatible, self.config.match_limit)

    def match_orders(self, order_id: int, other_id: int) -> tuple[Order, Order]:
        """Pair two active orders directly. Both flip to matched or neither does."""
        now = self._now_iso()
        with self._transaction():
            order = self._load_order(order_id)
            other = self._load_order(other_id)
            if order.owner_id == other.owner_id:
                raise Forbidden(
                    "cannot match orders of the same owner",
                    entity="order", entity_id=order_id,
                )
            if not is_compatible(order, other):
                raise ValidationError(
                    f"orders {order_id} and {other_id} are not compatible",
                    entity="order", entity_id=order_id,
                )
            for a, b in ((order, other), (other, order)):
                if not order_repo.mark_matched(self.conn, a.id, b.id, now):
                    raise Unavailable(
                        f"order {a.id} is no longer active",
                        entity="order", entity_id=a.id,
                    )
            order = self._load_order(order_id)
            other = self._load_order(other_id)
        logger.info("Orders %d and %d matched", order.id, other.id)
        return order, other

    # --- Expiry entry points ---

    def expire_order(self, order_id: int, cutoff: datetime) -> Order | None:
        """Expire an open order created before cutoff.

        Returns None if the order has meanwhile left the open states or is
        newer than cutoff. Its waiting responses are rejected with it.
        """
        now = self._now_iso()
        with self._transaction():
            order = self._load_order(order_id)
            if not order.is_open or order.created_at >= cutoff:
                return None
            transitions.ensure_order_transition(order.id, order.status, OrderStatus.EXPIRED)
            if not order_repo.update_order_status(
                self.conn, order.id, OrderStatus.EXPIRED, now, expected=order.status
            ):
                return None
            rejected = self._reject_waiting(order.id, now, REASON_ORDER_EXPIRED)
            order = self._load_order(order.id)
        logger.info("Order %d expired (created %s)", order.id, to_iso(order.created_at))

        users = self._directory(order.owner_id, *(r.responder_id for r in rejected))
        self._notify(
            users, order.owner_id, NotificationType.ORDER_EXPIRED,
            formatters.format_order_expired(order, self._hours_since(cutoff)),
            order_id=order.id, reason="expired",
        )
        author_name = self._name(users, order.owner_id)
        for r in rejected:
            self._notify(
                users, r.responder_id, NotificationType.RESPONSE_REJECTED,
                formatters.format_response_rejected(order, author_name, REASON_ORDER_EXPIRED),
                order_id=order.id, response_id=r.id,
            )
        return order

    def expire_deal(self, deal_id: int, cutoff: datetime) -> DealExpiry | None:
        """Expire a live deal created before cutoff and release its orders.

        In the same transaction, every in_deal order owned by either
        participant is cancelled unless another live deal still holds it.
        Returns None if the deal has meanwhile left the live states or is
        newer than cutoff.
        """
        now = self._now_iso()
        with self._transaction():
            deal = self._load_deal(deal_id)
            if deal.status not in LIVE_DEAL_STATUSES or deal.created_at >= cutoff:
                return None
            transitions.ensure_deal_transition(deal.id, deal.status, DealStatus.EXPIRED)
            if not deal_repo.update_deal_status(
                self.conn, deal.id, DealStatus.EXPIRED, expected=deal.status
            ):
                return None

            cancelled: list[Order] = []
            held = order_repo.get_orders_in_deal_for_users(self.conn, deal.participant_ids)
            for order in held:
                if deal_repo.has_live_deal_for_order(self.conn, order.id, exclude_deal_id=deal.id):
                    continue
                transitions.ensure_order_transition(
                    order.id, order.status, OrderStatus.CANCELLED
                )
                if order_repo.update_order_status(
                    self.conn, order.id, OrderStatus.CANCELLED, now,
                    expected=OrderStatus.IN_DEAL,
                ):
                    cancelled.append(self._load_order(order.id))
            deal = self._load_deal(deal.id)
        logger.info(
            "Deal %d expired (created %s), %d orders cancelled",
            deal.id, to_iso(deal.created_at), len(cancelled),
        )

        users = self._directory(*deal.participant_ids)
        message = formatters.format_deal_expired(deal, self._hours_since(cutoff))
        for participant in deal.participant_ids:
            self._notify(
                users, participant, NotificationType.DEAL_EXPIRED, message,
                deal_id=deal.id, reason="expired",
            )
        return DealExpiry(deal=deal, cancelled_orders=tuple(cancelled))

    # --- Internals ---

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock, transaction(self.conn) as conn:
            yield conn

    @contextmanager
    def _reading(self) -> Iterator[None]:
        with self._lock, store_errors():
            yield

    def _now_iso(self) -> str:
        return to_iso(self.clock())

    def _hours_since(self, cutoff: datetime) -> float:
        return round((self.clock() - cutoff).total_seconds() / 3600, 1)

    def _require_user(self, user_id: int) -> User:
        user = user_repo.get_user(self.conn, user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found", entity="user", entity_id=user_id)
        return user

    def _load_order(self, order_id: int) -> Order:
        order = order_repo.get_order(self.conn, order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found", entity="order", entity_id=order_id)
        return order

    def _load_deal(self, deal_id: int) -> Deal:
        deal = deal_repo.get_deal(self.conn, deal_id)
        if deal is None:
            raise NotFound(f"deal {deal_id} not found", entity="deal", entity_id=deal_id)
        return deal

    def _load_response_for_owner(self, owner_id: int, response_id: int) -> tuple[Response, Order]:
        response = response_repo.get_response(self.conn, response_id)
        if response is None:
            raise NotFound(
                f"response {response_id} not found", entity="response", entity_id=response_id
            )
        order = self._load_order(response.order_id)
        if order.owner_id != owner_id:
            raise Forbidden(
                f"user {owner_id} does not own order {order.id}",
                entity="response", entity_id=response_id,
            )
        return response, order

    @staticmethod
    def _require_participant(deal: Deal, user_id: int) -> None:
        if not deal.is_participant(user_id):
            raise Forbidden(
                f"user {user_id} is not a participant of deal {deal.id}",
                entity="deal", entity_id=deal.id,
            )

    def _reject_waiting(self, order_id: int, now: str, reason: str) -> list[Response]:
        """Reject every waiting response on an order. Caller owns the transaction."""
        rejected = []
        for r in response_repo.waiting_responses_for_order(self.conn, order_id):
            if response_repo.update_response_status(
                self.conn, r.id, ResponseStatus.REJECTED, now,
                expected=ResponseStatus.WAITING, reason=reason,
            ):
                rejected.append(r)
        return rejected

    def _complete_order(self, order_id: int, now: str) -> None:
        order = self._load_order(order_id)
        if order.status != OrderStatus.IN_DEAL:
            logger.warning(
                "Deal completed but order %d is %s, leaving it as is", order.id, order.status
            )
            return
        transitions.ensure_order_transition(order.id, order.status, OrderStatus.COMPLETED)
        order_repo.update_order_status(
            self.conn, order.id, OrderStatus.COMPLETED, now, expected=OrderStatus.IN_DEAL
        )

    def _directory(self, *user_ids: int) -> dict[int, User]:
        """Look up users for notification text. A store failure leaves them out."""
        users: dict[int, User] = {}
        for user_id in dict.fromkeys(user_ids):
            try:
                with self._reading():
                    user = user_repo.get_user(self.conn, user_id)
            except StoreError:
                logger.exception("User lookup failed for %d, notifying without it", user_id)
                continue
            if user is not None:
                users[user_id] = user
        return users

    @staticmethod
    def _name(users: dict[int, User], user_id: int) -> str:
        user = users.get(user_id)
        return formatters.display_name(user) if user else f"user #{user_id}"

    def _notify(
        self,
        users: dict[int, User],
        recipient_id: int,
        ntype: NotificationType,
        message: tuple[str, str],
        **context,
    ) -> None:
        title, body = message
        user = users.get(recipient_id)
        self.dispatcher.submit(
            Notification(
                recipient_id=recipient_id,
                address=user.external_id if user else None,
                type=ntype,
                title=title,
                body=body,
                context=context,
            )
        )
