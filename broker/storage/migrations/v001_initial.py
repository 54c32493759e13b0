"""Initial schema: users, orders, responses, deals, reviews."""

import sqlite3

DDL = [
    # User directory
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT UNIQUE NOT NULL,
        display_name TEXT NOT NULL,
        external_handle TEXT NOT NULL DEFAULT '',
        total_deals INTEGER NOT NULL DEFAULT 0,
        successful_deals INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,

    # Standing buy/sell offers
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id INTEGER NOT NULL REFERENCES users(id),
        side TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
        crypto TEXT NOT NULL,
        fiat TEXT NOT NULL,
        amount REAL NOT NULL CHECK (amount > 0),
        price REAL NOT NULL CHECK (price > 0),
        total REAL NOT NULL,
        min_limit REAL NOT NULL DEFAULT 0,
        max_limit REAL NOT NULL DEFAULT 0,
        payment_methods TEXT NOT NULL,
        note TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        accepted_response_id INTEGER,
        matched_order_id INTEGER REFERENCES orders(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_status_created ON orders(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_orders_owner ON orders(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_pair ON orders(crypto, fiat, side)",

    # Responses to orders
    """
    CREATE TABLE IF NOT EXISTS responses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL REFERENCES orders(id),
        responder_id INTEGER NOT NULL REFERENCES users(id),
        message TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'waiting',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        reviewed_at TEXT,
        reject_reason TEXT NOT NULL DEFAULT ''
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_responses_order ON responses(order_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_responses_responder ON responses(responder_id)",
    # At most one accepted response per order
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_responses_one_accepted "
        "ON responses(order_id) WHERE status = 'accepted'"
    ),

    # Deals spawned from accepted responses
    """
    CREATE TABLE IF NOT EXISTS deals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        response_id INTEGER NOT NULL UNIQUE REFERENCES responses(id),
        order_id INTEGER NOT NULL UNIQUE REFERENCES orders(id),
        author_id INTEGER NOT NULL REFERENCES users(id),
        counterparty_id INTEGER NOT NULL REFERENCES users(id),
        crypto TEXT NOT NULL,
        fiat TEXT NOT NULL,
        amount REAL NOT NULL,
        price REAL NOT NULL,
        total REAL NOT NULL,
        payment_methods TEXT NOT NULL,
        side TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'in_progress',
        created_at TEXT NOT NULL,
        completed_at TEXT,
        author_confirmed INTEGER NOT NULL DEFAULT 0,
        counterparty_confirmed INTEGER NOT NULL DEFAULT 0,
        author_proof TEXT NOT NULL DEFAULT '',
        counterparty_proof TEXT NOT NULL DEFAULT '',
        dispute_reason TEXT NOT NULL DEFAULT ''
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_deals_status_created ON deals(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_deals_author ON deals(author_id)",
    "CREATE INDEX IF NOT EXISTS idx_deals_counterparty ON deals(counterparty_id)",

    # Post-deal reviews
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        deal_id INTEGER NOT NULL REFERENCES deals(id),
        from_user_id INTEGER NOT NULL REFERENCES users(id),
        to_user_id INTEGER NOT NULL REFERENCES users(id),
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        comment TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        UNIQUE(deal_id, from_user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reviews_to_user ON reviews(to_user_id)",
]


def up(conn: sqlite3.Connection) -> None:
    for stmt in DDL:
        conn.execute(stmt)
