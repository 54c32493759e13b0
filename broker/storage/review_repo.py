"""Repository for post-deal reviews."""

import sqlite3

from broker.models.review import Review, UserRating


def create_review(
    conn: sqlite3.Connection,
    deal_id: int,
    from_user_id: int,
    to_user_id: int,
    rating: int,
    comment: str,
    created_at: str,
) -> int:
    """Insert a review. A second review of the same deal by the same user
    raises sqlite3.IntegrityError.
    """
    cursor = conn.execute(
        "INSERT INTO reviews (deal_id, from_user_id, to_user_id, rating, comment, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (deal_id, from_user_id, to_user_id, rating, comment, created_at),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def has_review(conn: sqlite3.Connection, deal_id: int, from_user_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM reviews WHERE deal_id = ? AND from_user_id = ?",
        (deal_id, from_user_id),
    ).fetchone()
    return row is not None


def get_user_rating(conn: sqlite3.Connection, user_id: int) -> UserRating:
    """Average rating received by a user. Zero with no reviews."""
    row = conn.execute(
        "SELECT COALESCE(AVG(rating), 0), COUNT(*) FROM reviews WHERE to_user_id = ?",
        (user_id,),
    ).fetchone()
    return UserRating(user_id=user_id, average=round(float(row[0]), 2), count=row[1])


def get_review(conn: sqlite3.Connection, review_id: int) -> Review | None:
    row = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
    if row is None:
        return None
    return Review.from_row(row)
