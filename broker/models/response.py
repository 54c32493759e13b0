"""Response models: a counter-party's bid to take an order."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from broker.models.common import from_iso


class ResponseStatus(StrEnum):
    WAITING = "waiting"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Response:
    id: int
    order_id: int
    responder_id: int
    message: str
    status: ResponseStatus
    created_at: datetime
    updated_at: datetime
    reviewed_at: datetime | None = None
    reject_reason: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Response":
        return cls(
            id=row["id"],
            order_id=row["order_id"],
            responder_id=row["responder_id"],
            message=row["message"],
            status=ResponseStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            reviewed_at=from_iso(row["reviewed_at"]),
            reject_reason=row["reject_reason"],
        )


@dataclass(frozen=True)
class ResponseFilter:
    order_id: int | None = None
    responder_id: int | None = None
    order_owner_id: int | None = None  # responses to orders owned by this user
    status: ResponseStatus | None = None
    limit: int = 100
    offset: int = 0
