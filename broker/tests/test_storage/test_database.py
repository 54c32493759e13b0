"""Tests for database connection, WAL mode, migrations and transactions."""

import sqlite3
from pathlib import Path

import pytest

from broker.storage.database import (
    StoreError,
    connect,
    run_migrations,
    store_errors,
    transaction,
)


class TestConnect:
    def test_wal_mode(self, tmp_path: Path):
        db = connect(tmp_path / "test.db")
        mode = db.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
        db.close()

    def test_foreign_keys_enabled(self, tmp_path: Path):
        db = connect(tmp_path / "test.db")
        fk = db.execute("PRAGMA foreign_keys").fetchone()[0]
        assert fk == 1
        db.close()

    def test_creates_parent_dir(self, tmp_path: Path):
        path = tmp_path / "nested" / "dir" / "test.db"
        db = connect(path)
        db.close()
        assert path.exists()

    def test_row_factory(self, tmp_path: Path):
        db = connect(tmp_path / "test.db")
        db.execute("CREATE TABLE t (x TEXT)")
        db.execute("INSERT INTO t VALUES ('hello')")
        row = db.execute("SELECT x FROM t").fetchone()
        assert row["x"] == "hello"
        db.close()


class TestMigrations:
    def test_creates_all_tables(self, tmp_path: Path):
        db = connect(tmp_path / "test.db")
        applied = run_migrations(db)
        assert "v001_initial" in applied

        tables = {
            row[0]
            for row in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {"schema_versions", "users", "orders", "responses", "deals", "reviews"} <= tables
        db.close()

    def test_idempotent(self, tmp_path: Path):
        db = connect(tmp_path / "test.db")
        run_migrations(db)
        assert run_migrations(db) == []
        count = db.execute("SELECT COUNT(*) FROM schema_versions").fetchone()[0]
        assert count == 1
        db.close()


class TestTransaction:
    def test_commits_on_success(self, conn: sqlite3.Connection):
        with transaction(conn):
            conn.execute(
                "INSERT INTO users (external_id, display_name, created_at) VALUES ('1', 'A', 'x')"
            )
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1
        assert not conn.in_transaction

    def test_rolls_back_on_domain_error(self, conn: sqlite3.Connection):
        with pytest.raises(RuntimeError, match="boom"):
            with transaction(conn):
                conn.execute(
                    "INSERT INTO users (external_id, display_name, created_at) "
                    "VALUES ('1', 'A', 'x')"
                )
                raise RuntimeError("boom")
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 0
        assert not conn.in_transaction

    def test_sqlite_error_becomes_store_error(self, conn: sqlite3.Connection):
        with pytest.raises(StoreError):
            with transaction(conn):
                conn.execute("INSERT INTO no_such_table VALUES (1)")
        assert not conn.in_transaction

    def test_store_errors_wraps(self, conn: sqlite3.Connection):
        with pytest.raises(StoreError, match="no such table"):
            with store_errors():
                conn.execute("SELECT * FROM no_such_table")


class TestConstraints:
    def _seed(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT INTO users (external_id, display_name, created_at) VALUES ('1', 'A', 'x')"
        )
        conn.execute(
            "INSERT INTO orders (owner_id, side, crypto, fiat, amount, price, total, "
            "payment_methods, created_at, updated_at) "
            "VALUES (1, 'sell', 'BTC', 'RUB', 1, 1, 1, '[]', 'x', 'x')"
        )
        for _ in range(2):
            conn.execute(
                "INSERT INTO responses (order_id, responder_id, created_at, updated_at) "
                "VALUES (1, 1, 'x', 'x')"
            )

    def test_one_accepted_response_per_order(self, conn: sqlite3.Connection):
        self._seed(conn)
        conn.execute("UPDATE responses SET status = 'accepted' WHERE id = 1")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("UPDATE responses SET status = 'accepted' WHERE id = 2")

    def test_rejected_responses_are_unconstrained(self, conn: sqlite3.Connection):
        self._seed(conn)
        conn.execute("UPDATE responses SET status = 'rejected'")
        count = conn.execute(
            "SELECT COUNT(*) FROM responses WHERE status = 'rejected'"
        ).fetchone()[0]
        assert count == 2

    def test_side_check(self, conn: sqlite3.Connection):
        self._seed(conn)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO orders (owner_id, side, crypto, fiat, amount, price, total, "
                "payment_methods, created_at, updated_at) "
                "VALUES (1, 'hold', 'BTC', 'RUB', 1, 1, 1, '[]', 'x', 'x')"
            )
