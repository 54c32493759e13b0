"""Deal models: the agreement formed once a response is accepted."""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from broker.models.common import from_iso
from broker.models.order import Order, OrderSide


class DealStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    WAITING_CONFIRMATION = "waiting_confirmation"
    COMPLETED = "completed"
    EXPIRED = "expired"
    DISPUTE = "dispute"
    CANCELLED = "cancelled"


# Deals still waiting on participant action.
LIVE_DEAL_STATUSES: frozenset[DealStatus] = frozenset(
    {DealStatus.IN_PROGRESS, DealStatus.WAITING_CONFIRMATION}
)


@dataclass(frozen=True)
class Deal:
    id: int
    response_id: int
    order_id: int
    author_id: int
    counterparty_id: int
    crypto: str
    fiat: str
    amount: float
    price: float
    total: float
    payment_methods: tuple[str, ...]
    side: OrderSide
    status: DealStatus
    created_at: datetime
    completed_at: datetime | None = None
    author_confirmed: bool = False
    counterparty_confirmed: bool = False
    author_proof: str = ""
    counterparty_proof: str = ""
    dispute_reason: str = ""

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.author_id, self.counterparty_id)

    def is_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_party(self, user_id: int) -> int:
        if user_id == self.author_id:
            return self.counterparty_id
        if user_id == self.counterparty_id:
            return self.author_id
        raise ValueError(f"user {user_id} is not a participant of deal {self.id}")

    def is_confirmed_by(self, as_author: bool) -> bool:
        return self.author_confirmed if as_author else self.counterparty_confirmed

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Deal":
        return cls(
            id=row["id"],
            response_id=row["response_id"],
            order_id=row["order_id"],
            author_id=row["author_id"],
            counterparty_id=row["counterparty_id"],
            crypto=row["crypto"],
            fiat=row["fiat"],
            amount=row["amount"],
            price=row["price"],
            total=row["total"],
            payment_methods=tuple(json.loads(row["payment_methods"])),
            side=OrderSide(row["side"]),
            status=DealStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            completed_at=from_iso(row["completed_at"]),
            author_confirmed=bool(row["author_confirmed"]),
            counterparty_confirmed=bool(row["counterparty_confirmed"]),
            author_proof=row["author_proof"],
            counterparty_proof=row["counterparty_proof"],
            dispute_reason=row["dispute_reason"],
        )


@dataclass(frozen=True)
class DealExpiry:
    """Outcome of expiring one deal: the expired deal and the orders it released."""

    deal: Deal
    cancelled_orders: tuple[Order, ...] = ()
