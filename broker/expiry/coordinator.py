"""Expiry coordinator: background task that resolves stale orders and deals.

Runs a cycle immediately on start, then every check_interval_minutes. Each
cycle scans open orders past the order timeout and live deals past the deal
timeout, driving them through the engine's expiry entry points. A failure on
one entity is logged and skipped; a failure of a whole cycle is logged and
counted. The loop itself only exits on stop().
"""

import logging
import signal
import threading
import time
from datetime import timedelta

from broker.config.schema import ExpiryConfig
from broker.lifecycle.engine import LifecycleEngine
from broker.lifecycle.errors import NotFound
from broker.models.common import Clock, to_iso, utc_now
from broker.models.deal import LIVE_DEAL_STATUSES
from broker.models.order import OPEN_ORDER_STATUSES, OrderFilter
from broker.models.reporting import ExpiryCycleSummary
from broker.storage.database import StoreError

logger = logging.getLogger(__name__)


class ExpiryCoordinator:
    def __init__(
        self,
        engine: LifecycleEngine,
        expiry_config: ExpiryConfig,
        clock: Clock = utc_now,
    ):
        self.engine = engine
        self.config = expiry_config
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.total_cycles = 0
        self.failed_cycles = 0
        self.orders_expired = 0
        self.deals_expired = 0
        self.last_summary: ExpiryCycleSummary | None = None

    @property
    def interval_seconds(self) -> float:
        return self.config.check_interval_minutes * 60

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("expiry coordinator already running")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-coordinator", daemon=True)
        self._thread.start()
        logger.info(
            "Expiry coordinator started: every %.1f min, orders after %gh, deals after %gh",
            self.config.check_interval_minutes,
            self.config.order_timeout_hours,
            self.config.deal_timeout_hours,
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        """Signal the loop and wait for the current cycle to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Expiry coordinator did not stop within %.1fs", timeout or 0)
            self._thread = None
        logger.info(
            "Expiry coordinator stopped: %d cycles (%d failed), %d orders and %d deals expired",
            self.total_cycles, self.failed_cycles, self.orders_expired, self.deals_expired,
        )

    def run_forever(self) -> None:
        """Run until SIGTERM or SIGINT. Main thread only."""
        shutdown = threading.Event()

        def _stop(signum: int, frame: object) -> None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
            shutdown.set()

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)
        self.start()
        try:
            while not shutdown.wait(1.0):
                if not self.is_running:
                    logger.error("Expiry worker exited unexpectedly")
                    break
        finally:
            self.stop()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self._guarded_cycle()
            if self._stop_event.wait(self.interval_seconds):
                break

    def _guarded_cycle(self) -> None:
        self.total_cycles += 1
        try:
            summary = self.run_cycle()
        except Exception:
            self.failed_cycles += 1
            logger.exception("Expiry cycle #%d crashed", self.total_cycles)
            return
        if summary.errors:
            self.failed_cycles += 1

    def run_cycle(self) -> ExpiryCycleSummary:
        """Run both scans once and return what happened."""
        start = time.monotonic()
        now = self.clock()
        summary = ExpiryCycleSummary(started_at=to_iso(now))
        self._expire_orders(now - timedelta(hours=self.config.order_timeout_hours), summary)
        self._expire_deals(now - timedelta(hours=self.config.deal_timeout_hours), summary)
        summary.duration_seconds = time.monotonic() - start

        self.orders_expired += summary.orders_expired
        self.deals_expired += summary.deals_expired
        self.last_summary = summary
        logger.info(
            "Expiry cycle done: %d/%d orders expired, %d/%d deals expired, "
            "%d orders cancelled, %d skipped, %d errors",
            summary.orders_expired, summary.orders_scanned,
            summary.deals_expired, summary.deals_scanned,
            summary.orders_cancelled, summary.skipped, len(summary.errors),
        )
        return summary

    def _expire_orders(self, cutoff, summary: ExpiryCycleSummary) -> None:
        batch_size = self.config.batch_size
        # Expired orders drop out of the filter; only skipped ones still in it
        # shift the window.
        offset = 0
        while True:
            try:
                batch = self.engine.list_orders(
                    OrderFilter(
                        statuses=tuple(sorted(OPEN_ORDER_STATUSES)),
                        created_before=cutoff,
                        limit=batch_size,
                        offset=offset,
                    )
                )
            except StoreError as e:
                logger.error("Order expiry scan failed: %s", e)
                summary.errors.append(f"order scan: {e}")
                return
            summary.orders_scanned += len(batch)
            for order in batch:
                try:
                    expired = self.engine.expire_order(order.id, cutoff)
                except Exception:
                    logger.exception("Failed to expire order %d, skipping", order.id)
                    expired = None
                if expired is None:
                    summary.skipped += 1
                    if self._order_still_open(order.id):
                        offset += 1
                else:
                    summary.orders_expired += 1
            if len(batch) < batch_size:
                return

    def _expire_deals(self, cutoff, summary: ExpiryCycleSummary) -> None:
        batch_size = self.config.batch_size
        offset = 0
        while True:
            try:
                batch = self.engine.list_stale_deals(cutoff, batch_size, offset)
            except StoreError as e:
                logger.error("Deal expiry scan failed: %s", e)
                summary.errors.append(f"deal scan: {e}")
                return
            summary.deals_scanned += len(batch)
            for deal in batch:
                try:
                    result = self.engine.expire_deal(deal.id, cutoff)
                except Exception:
                    logger.exception("Failed to expire deal %d, skipping", deal.id)
                    result = None
                if result is None:
                    summary.skipped += 1
                    if self._deal_still_live(deal.author_id, deal.id):
                        offset += 1
                else:
                    summary.deals_expired += 1
                    summary.orders_cancelled += len(result.cancelled_orders)
            if len(batch) < batch_size:
                return

    def _order_still_open(self, order_id: int) -> bool:
        try:
            return self.engine.get_order(order_id).is_open
        except NotFound:
            return False
        except StoreError:
            # Unknown; shift anyway so the scan cannot stall on this row.
            return True

    def _deal_still_live(self, author_id: int, deal_id: int) -> bool:
        try:
            return self.engine.get_deal(author_id, deal_id).status in LIVE_DEAL_STATUSES
        except NotFound:
            return False
        except StoreError:
            return True
