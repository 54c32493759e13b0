"""Repository for deals."""

import json
import sqlite3

from broker.models.deal import LIVE_DEAL_STATUSES, Deal, DealStatus
from broker.models.order import Order


def create_deal(
    conn: sqlite3.Connection,
    response_id: int,
    order: Order,
    counterparty_id: int,
    created_at: str,
) -> int:
    """Insert a deal snapshotting the order's terms. Returns the row id.

    The unique constraints on response_id and order_id reject a second deal
    for the same order with sqlite3.IntegrityError.
    """
    cursor = conn.execute(
        "INSERT INTO deals "
        "(response_id, order_id, author_id, counterparty_id, crypto, fiat, amount, "
        "price, total, payment_methods, side, status, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            response_id,
            order.id,
            order.owner_id,
            counterparty_id,
            order.crypto,
            order.fiat,
            order.amount,
            order.price,
            order.total,
            json.dumps(list(order.payment_methods)),
            order.side.value,
            DealStatus.IN_PROGRESS.value,
            created_at,
        ),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_deal(conn: sqlite3.Connection, deal_id: int) -> Deal | None:
    row = conn.execute("SELECT * FROM deals WHERE id = ?", (deal_id,)).fetchone()
    if row is None:
        return None
    return Deal.from_row(row)


def get_deals_for_user(
    conn: sqlite3.Connection,
    user_id: int,
    status: DealStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Deal]:
    """Deals the user takes part in, newest first."""
    sql = "SELECT * FROM deals WHERE (author_id = ? OR counterparty_id = ?)"
    params: list = [user_id, user_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(status.value)
    sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    return [Deal.from_row(r) for r in conn.execute(sql, params).fetchall()]


def update_deal_confirmation(
    conn: sqlite3.Connection, deal_id: int, as_author: bool, proof: str
) -> None:
    """Set one side's confirmation flag and proof."""
    if as_author:
        sql = "UPDATE deals SET author_confirmed = 1, author_proof = ? WHERE id = ?"
    else:
        sql = (
            "UPDATE deals SET counterparty_confirmed = 1, counterparty_proof = ? "
            "WHERE id = ?"
        )
    conn.execute(sql, (proof, deal_id))


def update_deal_status(
    conn: sqlite3.Connection,
    deal_id: int,
    status: DealStatus,
    expected: DealStatus | tuple[DealStatus, ...] | None = None,
    completed_at: str | None = None,
    dispute_reason: str | None = None,
) -> bool:
    """Set a deal's status. With `expected`, only if the current status is one of them.

    Returns True if a row was updated.
    """
    sql = (
        "UPDATE deals SET status = ?, completed_at = COALESCE(?, completed_at), "
        "dispute_reason = COALESCE(?, dispute_reason) WHERE id = ?"
    )
    params: list = [status.value, completed_at, dispute_reason, deal_id]
    if expected is not None:
        allowed = (expected,) if isinstance(expected, DealStatus) else expected
        sql += f" AND status IN ({', '.join('?' for _ in allowed)})"
        params.extend(s.value for s in allowed)
    cursor = conn.execute(sql, params)
    return cursor.rowcount == 1


def get_expired_deals(
    conn: sqlite3.Connection, cutoff: str, limit: int, offset: int = 0
) -> list[Deal]:
    """Live deals created before the cutoff, oldest first."""
    rows = conn.execute(
        "SELECT * FROM deals WHERE status IN (?, ?) AND created_at < ? "
        "ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
        (
            DealStatus.IN_PROGRESS.value,
            DealStatus.WAITING_CONFIRMATION.value,
            cutoff,
            limit,
            offset,
        ),
    ).fetchall()
    return [Deal.from_row(r) for r in rows]


def has_live_deal_for_order(
    conn: sqlite3.Connection, order_id: int, exclude_deal_id: int | None = None
) -> bool:
    live = sorted(s.value for s in LIVE_DEAL_STATUSES)
    row = conn.execute(
        f"SELECT 1 FROM deals WHERE order_id = ? AND id != ? "
        f"AND status IN ({', '.join('?' for _ in live)}) LIMIT 1",
        (order_id, exclude_deal_id or -1, *live),
    ).fetchone()
    return row is not None
