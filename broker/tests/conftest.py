"""Shared test fixtures."""

import sqlite3
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from broker.config.schema import BrokerConfig
from broker.lifecycle.engine import LifecycleEngine
from broker.models.notification import Notification
from broker.models.order import Order
from broker.models.user import User
from broker.notifications.dispatcher import NotificationDispatcher
from broker.notifications.notifier import NotifierError
from broker.storage.database import connect, run_migrations

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Notification] = []
        self.fail = False

    def send(self, notification: Notification) -> None:
        if self.fail:
            raise NotifierError("delivery refused")
        self.sent.append(notification)

    def of_type(self, ntype) -> list[Notification]:
        return [n for n in self.sent if n.type == ntype]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "broker.db"


@pytest.fixture
def conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = connect(db_path)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def default_config() -> BrokerConfig:
    return BrokerConfig()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "expiry": {"deal_timeout_hours": 6, "check_interval_minutes": 5},
        "notifier": {"mode": "log"},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier: RecordingNotifier) -> Iterator[NotificationDispatcher]:
    d = NotificationDispatcher(notifier, queue_size=100)
    d.start()
    yield d
    d.stop(timeout=2.0)


@pytest.fixture
def engine(
    conn: sqlite3.Connection,
    dispatcher: NotificationDispatcher,
    default_config: BrokerConfig,
    clock: FakeClock,
) -> LifecycleEngine:
    return LifecycleEngine(conn, dispatcher, default_config.trading, clock=clock)


@pytest.fixture
def delivered(
    dispatcher: NotificationDispatcher, notifier: RecordingNotifier
) -> Callable[[], list[Notification]]:
    """Flush the dispatcher and return everything the notifier received."""

    def _delivered() -> list[Notification]:
        assert dispatcher.flush(timeout=2.0)
        return list(notifier.sent)

    return _delivered


@pytest.fixture
def alice(engine: LifecycleEngine) -> User:
    return engine.register_user("1001", "Alice", "alice")


@pytest.fixture
def bob(engine: LifecycleEngine) -> User:
    return engine.register_user("1002", "Bob", "bob")


@pytest.fixture
def carol(engine: LifecycleEngine) -> User:
    return engine.register_user("1003", "Carol")


@pytest.fixture
def make_order(engine: LifecycleEngine) -> Callable[..., Order]:
    def _make(owner: User, **overrides) -> Order:
        params = {
            "side": "sell",
            "crypto": "BTC",
            "fiat": "RUB",
            "amount": 0.01,
            "price": 2_850_000,
            "payment_methods": ["sberbank", "tinkoff"],
        }
        params.update(overrides)
        return engine.create_order(owner.id, **params)

    return _make
