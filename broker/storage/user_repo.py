"""Repository for the user directory and deal statistics."""

import sqlite3

from broker.models.user import User


def create_user(
    conn: sqlite3.Connection,
    external_id: str,
    display_name: str,
    external_handle: str,
    created_at: str,
) -> int:
    """Insert a user. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO users (external_id, display_name, external_handle, created_at) "
        "VALUES (?, ?, ?, ?)",
        (external_id, display_name, external_handle, created_at),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_user(conn: sqlite3.Connection, user_id: int) -> User | None:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return User.from_row(row)


def get_user_by_external_id(conn: sqlite3.Connection, external_id: str) -> User | None:
    row = conn.execute(
        "SELECT * FROM users WHERE external_id = ?", (external_id,)
    ).fetchone()
    if row is None:
        return None
    return User.from_row(row)


def increment_deal_stats(conn: sqlite3.Connection, user_id: int, successful: bool) -> None:
    """Bump a user's deal counters by one."""
    conn.execute(
        "UPDATE users SET total_deals = total_deals + 1, "
        "successful_deals = successful_deals + ? WHERE id = ?",
        (1 if successful else 0, user_id),
    )
