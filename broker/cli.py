"""CLI entry point for the deal broker."""

import argparse
import logging

from broker.config.loader import config_hash, get_config_value, load_config
from broker.expiry.coordinator import ExpiryCoordinator
from broker.lifecycle.engine import LifecycleEngine
from broker.lifecycle.errors import LifecycleError
from broker.notifications.dispatcher import NotificationDispatcher
from broker.notifications.notifier import LogNotifier, NotifierError, build_notifier
from broker.reporting.formatters import (
    format_cycle_json,
    format_cycle_text,
    format_user_stats_text,
)
from broker.storage.database import StoreError, connect, run_migrations

DEFAULT_CONFIG = "configs/default.yaml"
DEFAULT_DB = "data/broker.db"

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="broker",
        description="P2P order and deal lifecycle broker",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config YAML path")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite DB path")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create or migrate the database")

    expire_p = sub.add_parser("expire", help="Run one expiry cycle")
    expire_p.add_argument("--json", action="store_true", help="Print the summary as JSON")

    sub.add_parser("daemon", help="Run the expiry coordinator until SIGTERM/SIGINT")

    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    get_p = config_sub.add_parser("get", help="Print one config value")
    get_p.add_argument("key", help="Dotted key, e.g. expiry.deal_timeout_hours")

    stats_p = sub.add_parser("user-stats", help="Show a user's trading statistics")
    stats_p.add_argument("user_id", type=int)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    try:
        if args.command == "init-db":
            return _cmd_init_db(args)
        elif args.command == "expire":
            return _cmd_expire(config, args)
        elif args.command == "daemon":
            return _cmd_daemon(config, args)
        elif args.command == "config":
            return _cmd_config(config, args)
        elif args.command == "user-stats":
            return _cmd_user_stats(config, args)
    except (StoreError, NotifierError, LifecycleError) as e:
        print(f"Error: {e}")
        return 1
    except Exception:
        logger.exception("Command %s failed", args.command)
        return 1
    parser.print_help()
    return 1


def _open_db(db_path: str):
    conn = connect(db_path)
    run_migrations(conn)
    return conn


def _build_engine(config, conn):
    dispatcher = NotificationDispatcher(
        build_notifier(config.notifier), queue_size=config.dispatch.queue_size
    )
    return LifecycleEngine(conn, dispatcher, config.trading), dispatcher


def _cmd_init_db(args) -> int:
    conn = connect(args.db)
    applied = run_migrations(conn)
    conn.close()
    if applied:
        print(f"Applied migrations: {', '.join(applied)}")
    else:
        print("Database is up to date")
    return 0


def _cmd_expire(config, args) -> int:
    conn = _open_db(args.db)
    engine, dispatcher = _build_engine(config, conn)
    dispatcher.start()
    try:
        coordinator = ExpiryCoordinator(engine, config.expiry)
        summary = coordinator.run_cycle()
    finally:
        dispatcher.flush(config.dispatch.flush_timeout_seconds)
        dispatcher.stop(config.dispatch.flush_timeout_seconds)
        conn.close()
    print(format_cycle_json(summary) if args.json else format_cycle_text(summary))
    return 0 if not summary.errors else 1


def _cmd_daemon(config, args) -> int:
    conn = _open_db(args.db)
    engine, dispatcher = _build_engine(config, conn)
    logger.info("Starting expiry daemon, config hash %s", config_hash(config))
    dispatcher.start()
    coordinator = ExpiryCoordinator(engine, config.expiry)
    try:
        coordinator.run_forever()
    finally:
        dispatcher.stop(config.dispatch.flush_timeout_seconds)
        conn.close()
    print(
        f"Daemon stopped: {coordinator.total_cycles} cycles "
        f"({coordinator.failed_cycles} failed), {coordinator.orders_expired} orders "
        f"and {coordinator.deals_expired} deals expired"
    )
    return 0


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "get":
        try:
            value = get_config_value(config, args.key)
        except (KeyError, IndexError, ValueError) as e:
            print(f"Error: {e}")
            return 1
        print(value)
        return 0
    else:
        print("Use: config show | config get key")
        return 1


def _cmd_user_stats(config, args) -> int:
    conn = _open_db(args.db)
    try:
        # Read-only: nothing is sent, so no real notifier is needed.
        engine = LifecycleEngine(conn, NotificationDispatcher(LogNotifier()), config.trading)
        stats = engine.get_user_stats(args.user_id)
    finally:
        conn.close()
    print(format_user_stats_text(stats))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
