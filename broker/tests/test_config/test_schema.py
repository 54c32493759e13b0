"""Tests for config schema validation."""

import pytest
from pydantic import ValidationError

from broker.config.defaults import DEFAULT_DEAL_TIMEOUT_HOURS, DEFAULT_ORDER_TIMEOUT_HOURS
from broker.config.schema import (
    BrokerConfig,
    ExpiryConfig,
    NotifierConfig,
    NotifierMode,
    TradingConfig,
)


class TestBrokerConfig:
    def test_defaults(self):
        config = BrokerConfig()
        assert config.notifier.mode == NotifierMode.LOG
        assert config.expiry.deal_timeout_hours == DEFAULT_DEAL_TIMEOUT_HOURS == 24
        assert config.expiry.order_timeout_hours == DEFAULT_ORDER_TIMEOUT_HOURS == 168
        assert "BTC" in config.trading.supported_cryptos

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
            BrokerConfig(unknown_field="bad")

    def test_nested_extra_fields_rejected(self):
        with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
            ExpiryConfig(deal_timeout_hours=6, bogus=True)

    def test_vocabularies_are_independent(self):
        a = TradingConfig()
        b = TradingConfig()
        a.supported_cryptos.append("DOGE")
        assert "DOGE" not in b.supported_cryptos


class TestExpiryConfig:
    def test_timeouts_must_be_positive(self):
        with pytest.raises(ValidationError):
            ExpiryConfig(deal_timeout_hours=0)
        with pytest.raises(ValidationError):
            ExpiryConfig(check_interval_minutes=-1)

    def test_batch_size_bounds(self):
        with pytest.raises(ValidationError):
            ExpiryConfig(batch_size=0)


class TestNotifierConfig:
    def test_telegram_mode(self):
        config = NotifierConfig(mode="telegram")
        assert config.mode == NotifierMode.TELEGRAM

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            NotifierConfig(mode="carrier-pigeon")
