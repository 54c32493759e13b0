"""Repository for orders."""

import json
import sqlite3

from broker.models.common import to_iso
from broker.models.order import Order, OrderFilter, OrderSide, OrderStatus


def create_order(
    conn: sqlite3.Connection,
    owner_id: int,
    side: OrderSide,
    crypto: str,
    fiat: str,
    amount: float,
    price: float,
    payment_methods: list[str] | tuple[str, ...],
    note: str,
    min_limit: float,
    max_limit: float,
    created_at: str,
) -> int:
    """Persist an active order. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO orders "
        "(owner_id, side, crypto, fiat, amount, price, total, min_limit, max_limit, "
        "payment_methods, note, status, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            owner_id,
            side.value,
            crypto,
            fiat,
            amount,
            price,
            amount * price,
            min_limit,
            max_limit,
            json.dumps(list(payment_methods)),
            note,
            OrderStatus.ACTIVE.value,
            created_at,
            created_at,
        ),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_order(conn: sqlite3.Connection, order_id: int) -> Order | None:
    row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
    if row is None:
        return None
    return Order.from_row(row)


def query_orders(conn: sqlite3.Connection, flt: OrderFilter) -> list[Order]:
    """Query orders matching a filter, oldest first unless price_order is set."""
    where: list[str] = []
    params: list = []

    if flt.side is not None:
        where.append("side = ?")
        params.append(flt.side.value)
    if flt.crypto is not None:
        where.append("crypto = ?")
        params.append(flt.crypto)
    if flt.fiat is not None:
        where.append("fiat = ?")
        params.append(flt.fiat)
    if flt.statuses:
        where.append(f"status IN ({', '.join('?' for _ in flt.statuses)})")
        params.extend(s.value for s in flt.statuses)
    if flt.owner_id is not None:
        where.append("owner_id = ?")
        params.append(flt.owner_id)
    if flt.exclude_owner_id is not None:
        where.append("owner_id != ?")
        params.append(flt.exclude_owner_id)
    if flt.min_price is not None:
        where.append("price >= ?")
        params.append(flt.min_price)
    if flt.max_price is not None:
        where.append("price <= ?")
        params.append(flt.max_price)
    if flt.created_before is not None:
        where.append("created_at < ?")
        params.append(to_iso(flt.created_before))
    if flt.created_after is not None:
        where.append("created_at > ?")
        params.append(to_iso(flt.created_after))

    sql = "SELECT * FROM orders"
    if where:
        sql += " WHERE " + " AND ".join(where)
    if flt.price_order == "asc":
        sql += " ORDER BY price ASC, created_at ASC, id ASC"
    elif flt.price_order == "desc":
        sql += " ORDER BY price DESC, created_at ASC, id ASC"
    else:
        sql += " ORDER BY created_at ASC, id ASC"
    sql += " LIMIT ? OFFSET ?"
    params.extend([flt.limit, flt.offset])

    return [Order.from_row(r) for r in conn.execute(sql, params).fetchall()]


def update_order_status(
    conn: sqlite3.Connection,
    order_id: int,
    status: OrderStatus,
    updated_at: str,
    expected: OrderStatus | None = None,
) -> bool:
    """Set an order's status. With `expected`, only if the current status matches.

    Returns True if a row was updated.
    """
    completed_at = updated_at if status == OrderStatus.COMPLETED else None
    sql = (
        "UPDATE orders SET status = ?, updated_at = ?, "
        "completed_at = COALESCE(?, completed_at) WHERE id = ?"
    )
    params: list = [status.value, updated_at, completed_at, order_id]
    if expected is not None:
        sql += " AND status = ?"
        params.append(expected.value)
    cursor = conn.execute(sql, params)
    return cursor.rowcount == 1


def set_accepted_response(
    conn: sqlite3.Connection, order_id: int, response_id: int, updated_at: str
) -> bool:
    """Move an open order into a deal, recording the accepted response."""
    cursor = conn.execute(
        "UPDATE orders SET status = ?, accepted_response_id = ?, updated_at = ? "
        "WHERE id = ? AND accepted_response_id IS NULL "
        "AND status IN (?, ?)",
        (
            OrderStatus.IN_DEAL.value,
            response_id,
            updated_at,
            order_id,
            OrderStatus.ACTIVE.value,
            OrderStatus.HAS_RESPONSES.value,
        ),
    )
    return cursor.rowcount == 1


def mark_matched(
    conn: sqlite3.Connection, order_id: int, matched_order_id: int, updated_at: str
) -> bool:
    """Flip an active order to matched. Returns False if it is no longer active."""
    cursor = conn.execute(
        "UPDATE orders SET status = ?, matched_order_id = ?, updated_at = ? "
        "WHERE id = ? AND status = ?",
        (
            OrderStatus.MATCHED.value,
            matched_order_id,
            updated_at,
            order_id,
            OrderStatus.ACTIVE.value,
        ),
    )
    return cursor.rowcount == 1


def get_orders_in_deal_for_users(
    conn: sqlite3.Connection, user_ids: tuple[int, ...]
) -> list[Order]:
    """Get all in_deal orders owned by any of the given users."""
    rows = conn.execute(
        f"SELECT * FROM orders WHERE status = ? "
        f"AND owner_id IN ({', '.join('?' for _ in user_ids)}) ORDER BY id",
        (OrderStatus.IN_DEAL.value, *user_ids),
    ).fetchall()
    return [Order.from_row(r) for r in rows]
