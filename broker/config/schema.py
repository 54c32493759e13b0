"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field

from broker.config.defaults import (
    DEFAULT_CRYPTOS,
    DEFAULT_DEAL_TIMEOUT_HOURS,
    DEFAULT_FIATS,
    DEFAULT_ORDER_TIMEOUT_HOURS,
    DEFAULT_PAYMENT_METHODS,
)


class NotifierMode(StrEnum):
    LOG = "log"
    TELEGRAM = "telegram"


class TradingConfig(BaseModel):
    model_config = {"extra": "forbid"}

    supported_cryptos: list[str] = Field(default_factory=lambda: list(DEFAULT_CRYPTOS))
    supported_fiats: list[str] = Field(default_factory=lambda: list(DEFAULT_FIATS))
    payment_methods: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PAYMENT_METHODS)
    )
    max_message_length: int = Field(default=500, ge=1)
    max_comment_length: int = Field(default=500, ge=1)
    match_limit: int = Field(default=10, ge=1, le=100)


class ExpiryConfig(BaseModel):
    model_config = {"extra": "forbid"}

    check_interval_minutes: float = Field(default=30, gt=0)
    order_timeout_hours: float = Field(default=DEFAULT_ORDER_TIMEOUT_HOURS, gt=0)
    deal_timeout_hours: float = Field(default=DEFAULT_DEAL_TIMEOUT_HOURS, gt=0)
    batch_size: int = Field(default=100, ge=1)


class NotifierConfig(BaseModel):
    model_config = {"extra": "forbid"}

    mode: NotifierMode = NotifierMode.LOG
    bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    api_base: str = "https://api.telegram.org"
    web_app_url: str = "https://localhost:8080"
    timeout_seconds: float = Field(default=10.0, gt=0)


class DispatchConfig(BaseModel):
    model_config = {"extra": "forbid"}

    queue_size: int = Field(default=1000, ge=1)
    flush_timeout_seconds: float = Field(default=5.0, gt=0)


class BrokerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    trading: TradingConfig = TradingConfig()
    expiry: ExpiryConfig = ExpiryConfig()
    notifier: NotifierConfig = NotifierConfig()
    dispatch: DispatchConfig = DispatchConfig()
