"""Tests for model helpers."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from broker.models.common import from_iso, to_iso
from broker.models.deal import Deal, DealStatus
from broker.models.order import OrderSide

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _deal(**overrides) -> Deal:
    params = dict(
        id=1, response_id=1, order_id=1, author_id=10, counterparty_id=20,
        crypto="BTC", fiat="RUB", amount=1.0, price=1.0, total=1.0,
        payment_methods=("cash",), side=OrderSide.SELL,
        status=DealStatus.IN_PROGRESS, created_at=T0,
    )
    params.update(overrides)
    return Deal(**params)


class TestTimestamps:
    def test_fixed_precision(self):
        assert to_iso(T0) == "2026-03-01T12:00:00.000000+00:00"

    def test_naive_treated_as_utc(self):
        assert to_iso(datetime(2026, 3, 1, 12, 0)) == to_iso(T0)

    def test_other_zones_normalized(self):
        msk = T0.astimezone(timezone(timedelta(hours=3)))
        assert to_iso(msk) == to_iso(T0)

    def test_lexical_order_is_time_order(self):
        stamps = [T0 + timedelta(microseconds=n) for n in (0, 1, 999_999, 1_000_000)]
        serialized = [to_iso(t) for t in stamps]
        assert serialized == sorted(serialized)

    def test_round_trip(self):
        assert from_iso(to_iso(T0)) == T0
        assert from_iso(None) is None


class TestOrderSide:
    def test_opposite(self):
        assert OrderSide.BUY.opposite == OrderSide.SELL
        assert OrderSide.SELL.opposite == OrderSide.BUY


class TestDeal:
    def test_other_party(self):
        deal = _deal()
        assert deal.other_party(10) == 20
        assert deal.other_party(20) == 10

    def test_other_party_rejects_outsider(self):
        with pytest.raises(ValueError, match="not a participant"):
            _deal().other_party(30)

    def test_is_confirmed_by(self):
        deal = _deal(counterparty_confirmed=True)
        assert deal.is_confirmed_by(as_author=False)
        assert not deal.is_confirmed_by(as_author=True)
        assert deal.is_participant(10)
        assert not deal.is_participant(30)
