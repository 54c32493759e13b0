"""Fire-and-forget notification dispatch on a background worker thread.

State transitions commit first and hand their notifications to submit().
Delivery failures are logged and counted, never retried, and never reach
the caller of the transition.
"""

import logging
import queue
import threading
import time

from broker.models.notification import Notification
from broker.notifications.notifier import Notifier

logger = logging.getLogger(__name__)

_STOP = object()


class NotificationDispatcher:
    def __init__(self, notifier: Notifier, queue_size: int = 1000):
        self.notifier = notifier
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._thread: threading.Thread | None = None
        self._running = False
        self._lock = threading.Lock()
        # Notifications queued or being delivered.
        self._pending = 0
        self._idle = threading.Condition()
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise RuntimeError("dispatcher already running")
            self._running = True
            self._thread = threading.Thread(
                target=self._worker, name="notification-dispatcher", daemon=True
            )
            self._thread.start()
        logger.info("Notification dispatcher started")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Drain what is queued, then stop the worker."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
        self._queue.put(_STOP)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Dispatcher worker did not stop within %.1fs", timeout or 0)
        logger.info(
            "Notification dispatcher stopped: sent=%d failed=%d dropped=%d",
            self.sent, self.failed, self.dropped,
        )

    def submit(self, notification: Notification) -> bool:
        """Queue a notification. Returns False if it was dropped."""
        if not self._running:
            logger.warning(
                "Dispatcher not running, dropping %s for user %d",
                notification.type, notification.recipient_id,
            )
            self.dropped += 1
            return False
        with self._idle:
            self._pending += 1
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            self._settle()
            logger.warning(
                "Notification queue full, dropping %s for user %d",
                notification.type, notification.recipient_id,
            )
            self.dropped += 1
            return False
        return True

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until every queued notification was handled. False on timeout."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._deliver(item)
            finally:
                self._settle()

    def _settle(self) -> None:
        with self._idle:
            self._pending -= 1
            if not self._pending:
                self._idle.notify_all()

    def _deliver(self, notification: Notification) -> None:
        try:
            self.notifier.send(notification)
            self.sent += 1
        except Exception:
            self.failed += 1
            logger.exception(
                "Failed to deliver %s to user %d",
                notification.type, notification.recipient_id,
            )
