"""Order models: a standing buy/sell offer owned by one user."""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from broker.models.common import from_iso


class OrderSide(StrEnum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderStatus(StrEnum):
    ACTIVE = "active"
    HAS_RESPONSES = "has_responses"
    IN_DEAL = "in_deal"
    MATCHED = "matched"  # legacy direct-matching path only
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses in which an order is still on the market and can take responses.
OPEN_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.ACTIVE, OrderStatus.HAS_RESPONSES}
)


@dataclass(frozen=True)
class Order:
    id: int
    owner_id: int
    side: OrderSide
    crypto: str
    fiat: str
    amount: float
    price: float
    total: float
    min_limit: float
    max_limit: float
    payment_methods: tuple[str, ...]
    note: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    accepted_response_id: int | None = None
    matched_order_id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ORDER_STATUSES

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Order":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            side=OrderSide(row["side"]),
            crypto=row["crypto"],
            fiat=row["fiat"],
            amount=row["amount"],
            price=row["price"],
            total=row["total"],
            min_limit=row["min_limit"],
            max_limit=row["max_limit"],
            payment_methods=tuple(json.loads(row["payment_methods"])),
            note=row["note"],
            status=OrderStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            completed_at=from_iso(row["completed_at"]),
            accepted_response_id=row["accepted_response_id"],
            matched_order_id=row["matched_order_id"],
        )


@dataclass(frozen=True)
class OrderFilter:
    """Query filter for orders. Unset fields do not constrain the result."""

    side: OrderSide | None = None
    crypto: str | None = None
    fiat: str | None = None
    statuses: tuple[OrderStatus, ...] = ()
    owner_id: int | None = None
    exclude_owner_id: int | None = None
    min_price: float | None = None
    max_price: float | None = None
    created_before: datetime | None = None
    created_after: datetime | None = None
    # "asc" or "desc" sorts by price before age; None keeps oldest first.
    price_order: str | None = None
    limit: int = 100
    offset: int = 0
