"""Tests for CLI commands."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from broker.cli import main
from broker.config.schema import TradingConfig
from broker.lifecycle.engine import LifecycleEngine
from broker.notifications.dispatcher import NotificationDispatcher
from broker.notifications.notifier import LogNotifier
from broker.storage.database import connect, run_migrations


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "test.yaml"
    path.write_text("")
    return path


@pytest.fixture
def db_file(tmp_path: Path) -> str:
    return str(tmp_path / "test.db")


def _seed_stale_order(db_file: str) -> None:
    """One user with an order posted a month ago."""
    conn = connect(db_file)
    run_migrations(conn)
    month_ago = datetime.now(UTC) - timedelta(days=30)
    engine = LifecycleEngine(
        conn, NotificationDispatcher(LogNotifier()), TradingConfig(), clock=lambda: month_ago
    )
    user = engine.register_user("1001", "Alice", "alice")
    engine.create_order(user.id, "sell", "BTC", "RUB", 0.01, 2_850_000, ["sberbank"])
    conn.close()


class TestCLI:
    def test_no_command_returns_1(self, capsys):
        assert main([]) == 1

    def test_init_db(self, config_path: Path, db_file: str, capsys):
        assert main(["--config", str(config_path), "--db", db_file, "init-db"]) == 0
        assert "v001_initial" in capsys.readouterr().out
        assert main(["--config", str(config_path), "--db", db_file, "init-db"]) == 0
        assert "up to date" in capsys.readouterr().out

    def test_config_show(self, config_path: Path, capsys):
        assert main(["--config", str(config_path), "config", "show"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["expiry"]["deal_timeout_hours"] == 24

    def test_config_get(self, config_yaml_path: Path, capsys):
        result = main(["--config", str(config_yaml_path), "config", "get", "expiry.deal_timeout_hours"])
        assert result == 0
        assert capsys.readouterr().out.strip() == "6.0"

    def test_config_get_unknown_key(self, config_path: Path, capsys):
        assert main(["--config", str(config_path), "config", "get", "expiry.nope"]) == 1
        assert "Error" in capsys.readouterr().out

    def test_config_without_subcommand(self, config_path: Path, capsys):
        assert main(["--config", str(config_path), "config"]) == 1

    def test_expire_empty_db(self, config_path: Path, db_file: str, capsys):
        assert main(["--config", str(config_path), "--db", db_file, "expire"]) == 0
        out = capsys.readouterr().out
        assert "Expiry Cycle" in out
        assert "Orders: 0 expired of 0 scanned" in out

    def test_expire_stale_order(self, config_path: Path, db_file: str, capsys):
        _seed_stale_order(db_file)
        assert main(["--config", str(config_path), "--db", db_file, "expire", "--json"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["orders_scanned"] == 1
        assert summary["orders_expired"] == 1
        assert summary["errors"] == []

    def test_user_stats(self, config_path: Path, db_file: str, capsys):
        _seed_stale_order(db_file)
        assert main(["--config", str(config_path), "--db", db_file, "user-stats", "1"]) == 0
        out = capsys.readouterr().out
        assert "User 1" in out
        assert "Orders: 1 total, 1 active, 0 completed" in out

    def test_user_stats_unknown_user(self, config_path: Path, db_file: str, capsys):
        assert main(["--config", str(config_path), "--db", db_file, "user-stats", "99"]) == 1
        assert "Error: user 99 not found" in capsys.readouterr().out
