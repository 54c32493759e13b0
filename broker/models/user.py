"""User directory record."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from broker.models.common import from_iso


@dataclass(frozen=True)
class User:
    id: int
    external_id: str  # delivery address, e.g. a Telegram chat id
    display_name: str
    external_handle: str
    total_deals: int
    successful_deals: int
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        return cls(
            id=row["id"],
            external_id=row["external_id"],
            display_name=row["display_name"],
            external_handle=row["external_handle"],
            total_deals=row["total_deals"],
            successful_deals=row["successful_deals"],
            created_at=from_iso(row["created_at"]),
        )
