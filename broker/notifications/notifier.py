"""Outbound notifiers: log-only dry run and Telegram Bot API delivery."""

import html
import logging
import os
from typing import Protocol

import httpx

from broker.config.schema import NotifierConfig, NotifierMode
from broker.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotifierError(Exception):
    """Raised when a notification cannot be delivered."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


class LogNotifier:
    """Dry-run notifier. Logs each message and keeps it in memory."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        logger.info(
            "[NOTIFY] user=%d type=%s title=%r",
            notification.recipient_id,
            notification.type,
            notification.title,
        )
        self.sent.append(notification)


class TelegramNotifier:
    """Delivers notifications through the Telegram Bot API sendMessage call."""

    def __init__(
        self,
        token: str,
        web_app_url: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
    ):
        if not token:
            raise NotifierError("Telegram bot token not set")
        self.token = token
        self.web_app_url = web_app_url.rstrip("/")
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        if not notification.address:
            raise NotifierError(
                f"user {notification.recipient_id} has no delivery address"
            )
        payload = {
            "chat_id": notification.address,
            "text": self.render_text(notification),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
            "reply_markup": {"inline_keyboard": self.keyboard_for(notification.type)},
        }
        url = f"{self.api_base}/bot{self.token}/sendMessage"
        try:
            resp = httpx.post(url, json=payload, timeout=self.timeout)
        except httpx.RequestError as e:
            logger.error("Telegram request failed for user %d: %s", notification.recipient_id, e)
            raise NotifierError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("Telegram API %d: %s", resp.status_code, resp.text)
            raise NotifierError(f"HTTP {resp.status_code}: {resp.text}", resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            # A 2xx with an unparseable body still counts as delivered.
            logger.warning("Unparseable Telegram response: %s", resp.text)
            return
        if isinstance(data, dict) and data.get("ok") is False:
            raise NotifierError(
                f"Telegram rejected message: {data.get('description', 'unknown error')}",
                resp.status_code,
            )

    @staticmethod
    def render_text(notification: Notification) -> str:
        return f"<b>{html.escape(notification.title)}</b>\n\n{html.escape(notification.body)}"

    def keyboard_for(self, ntype: NotificationType) -> list[list[dict]]:
        def button(text: str, fragment: str = "") -> list[dict]:
            url = f"{self.web_app_url}/#{fragment}" if fragment else self.web_app_url
            return [{"text": text, "web_app": {"url": url}}]

        if ntype == NotificationType.NEW_RESPONSE:
            return [button("View responses", "responses"), button("Open app")]
        if ntype in (NotificationType.RESPONSE_ACCEPTED, NotificationType.DEAL_CREATED):
            return [button("Go to deal", "my-orders"), button("My deals", "my-orders")]
        if ntype in (NotificationType.RESPONSE_REJECTED, NotificationType.ORDER_EXPIRED):
            return [button("Find other orders", "orders"), button("Open app")]
        if ntype == NotificationType.DEAL_COMPLETED:
            return [button("Go to deal", "my-orders"), button("Leave a review", "profile")]
        if ntype in (NotificationType.DEAL_CONFIRMED, NotificationType.DEAL_DISPUTED):
            return [button("Go to deal", "my-orders")]
        return [button("Open app")]


def build_notifier(config: NotifierConfig) -> Notifier:
    """Pick the notifier implementation from config."""
    if config.mode == NotifierMode.TELEGRAM:
        token = os.environ.get(config.bot_token_env, "")
        return TelegramNotifier(
            token=token,
            web_app_url=config.web_app_url,
            api_base=config.api_base,
            timeout=config.timeout_seconds,
        )
    return LogNotifier()
