"""Repository for responses to orders."""

import sqlite3

from broker.models.response import Response, ResponseFilter, ResponseStatus


def create_response(
    conn: sqlite3.Connection,
    order_id: int,
    responder_id: int,
    message: str,
    created_at: str,
) -> int:
    """Persist a waiting response. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO responses (order_id, responder_id, message, status, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            order_id,
            responder_id,
            message,
            ResponseStatus.WAITING.value,
            created_at,
            created_at,
        ),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_response(conn: sqlite3.Connection, response_id: int) -> Response | None:
    row = conn.execute(
        "SELECT * FROM responses WHERE id = ?", (response_id,)
    ).fetchone()
    if row is None:
        return None
    return Response.from_row(row)


def query_responses(conn: sqlite3.Connection, flt: ResponseFilter) -> list[Response]:
    """Query responses matching a filter, newest first."""
    where: list[str] = []
    params: list = []

    if flt.order_id is not None:
        where.append("r.order_id = ?")
        params.append(flt.order_id)
    if flt.responder_id is not None:
        where.append("r.responder_id = ?")
        params.append(flt.responder_id)
    if flt.order_owner_id is not None:
        where.append("o.owner_id = ?")
        params.append(flt.order_owner_id)
    if flt.status is not None:
        where.append("r.status = ?")
        params.append(flt.status.value)

    sql = "SELECT r.* FROM responses r JOIN orders o ON o.id = r.order_id"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY r.created_at DESC, r.id DESC LIMIT ? OFFSET ?"
    params.extend([flt.limit, flt.offset])

    return [Response.from_row(r) for r in conn.execute(sql, params).fetchall()]


def update_response_status(
    conn: sqlite3.Connection,
    response_id: int,
    status: ResponseStatus,
    reviewed_at: str,
    expected: ResponseStatus | None = None,
    reason: str = "",
) -> bool:
    """Review a response. With `expected`, only if the current status matches."""
    sql = (
        "UPDATE responses SET status = ?, updated_at = ?, reviewed_at = ?, "
        "reject_reason = ? WHERE id = ?"
    )
    params: list = [status.value, reviewed_at, reviewed_at, reason, response_id]
    if expected is not None:
        sql += " AND status = ?"
        params.append(expected.value)
    cursor = conn.execute(sql, params)
    return cursor.rowcount == 1


def waiting_responses_for_order(conn: sqlite3.Connection, order_id: int) -> list[Response]:
    rows = conn.execute(
        "SELECT * FROM responses WHERE order_id = ? AND status = ? ORDER BY id",
        (order_id, ResponseStatus.WAITING.value),
    ).fetchall()
    return [Response.from_row(r) for r in rows]
