"""SQLite connection manager with WAL mode, migrations and transactions."""

import importlib
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "broker.storage.migrations"
BUSY_TIMEOUT_SECONDS = 10.0


class StoreError(Exception):
    """Raised when the record store fails. Wraps the underlying sqlite3 error."""


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and foreign keys enabled.

    The connection runs in autocommit mode; multi-statement units of work
    go through transaction(). Use one connection per thread.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def store_errors() -> Iterator[None]:
    """Re-raise sqlite3 failures as StoreError."""
    try:
        yield
    except sqlite3.Error as e:
        raise StoreError(str(e)) from e


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a unit of work under BEGIN IMMEDIATE.

    The write lock is taken up front, so two transactions touching the same
    aggregate are serialized. Commits on success, rolls back on any
    exception. Non-sqlite exceptions propagate unchanged.
    """
    with store_errors():
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException as exc:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")
        if isinstance(exc, sqlite3.Error):
            raise StoreError(str(exc)) from exc
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise StoreError(f"commit failed: {e}") from e


def run_migrations(conn: sqlite3.Connection) -> list[str]:
    """Run all pending migrations in order. Returns list of applied migration names."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_versions ("
        "  version TEXT PRIMARY KEY,"
        "  applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP"
        ")"
    )

    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_versions").fetchall()
    }

    migrations = _discover_migrations()
    newly_applied = []

    for name in sorted(migrations):
        if name not in applied:
            mod = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{name}")
            with transaction(conn):
                mod.up(conn)
                conn.execute(
                    "INSERT INTO schema_versions (version) VALUES (?)", (name,)
                )
            newly_applied.append(name)
            logger.info("Applied migration %s", name)

    return newly_applied


def _discover_migrations() -> list[str]:
    """Discover migration modules by naming convention v###_*.py."""
    migrations_dir = Path(__file__).parent / "migrations"
    results = []
    for p in migrations_dir.glob("v[0-9]*_*.py"):
        if p.stem != "__init__":
            results.append(p.stem)
    return sorted(results)
