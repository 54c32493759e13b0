"""Review and rating models."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from broker.models.common import from_iso


@dataclass(frozen=True)
class Review:
    id: int
    deal_id: int
    from_user_id: int
    to_user_id: int
    rating: int
    comment: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Review":
        return cls(
            id=row["id"],
            deal_id=row["deal_id"],
            from_user_id=row["from_user_id"],
            to_user_id=row["to_user_id"],
            rating=row["rating"],
            comment=row["comment"],
            created_at=from_iso(row["created_at"]),
        )


@dataclass(frozen=True)
class UserRating:
    user_id: int
    average: float
    count: int
