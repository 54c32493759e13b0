"""Tests for legacy order-to-order matching."""

from datetime import UTC, datetime, timedelta

import pytest

from broker.lifecycle import engine as engine_module
from broker.lifecycle.engine import MATCH_SCAN_LIMIT
from broker.lifecycle.errors import Forbidden, Unavailable, ValidationError
from broker.matching.compatibility import (
    has_common_payment_methods,
    is_amount_compatible,
    is_compatible,
    is_price_compatible,
    rank_candidates,
)
from broker.models.order import Order, OrderSide, OrderStatus

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _order(id: int, side: OrderSide, price: float, **kw) -> Order:
    params = dict(
        id=id,
        owner_id=id * 10,
        side=side,
        crypto="BTC",
        fiat="RUB",
        amount=0.01,
        price=price,
        total=0.01 * price,
        min_limit=0,
        max_limit=0,
        payment_methods=("sberbank",),
        note="",
        status=OrderStatus.ACTIVE,
        created_at=T0,
        updated_at=T0,
    )
    params.update(kw)
    return Order(**params)


class TestPredicates:
    def test_price_buy_at_or_above_sell(self):
        buy = _order(1, OrderSide.BUY, 100)
        assert is_price_compatible(buy, _order(2, OrderSide.SELL, 100))
        assert is_price_compatible(_order(2, OrderSide.SELL, 90), buy)
        assert not is_price_compatible(buy, _order(2, OrderSide.SELL, 101))

    def test_same_side_never_compatible(self):
        assert not is_price_compatible(_order(1, OrderSide.BUY, 100), _order(2, OrderSide.BUY, 50))

    def test_amount_within_limits(self):
        buy = _order(1, OrderSide.BUY, 100, amount=2, min_limit=50, max_limit=500)
        sell = _order(2, OrderSide.SELL, 100, amount=1)
        assert is_amount_compatible(buy, sell)

    def test_amount_below_min_limit(self):
        buy = _order(1, OrderSide.BUY, 100, amount=2, min_limit=150)
        sell = _order(2, OrderSide.SELL, 100, amount=1)
        assert not is_amount_compatible(buy, sell)

    def test_amount_above_max_limit(self):
        buy = _order(1, OrderSide.BUY, 100, amount=5)
        sell = _order(2, OrderSide.SELL, 100, amount=5, max_limit=200)
        assert not is_amount_compatible(buy, sell)

    def test_zero_limits_are_unbounded(self):
        assert is_amount_compatible(
            _order(1, OrderSide.BUY, 1, amount=1000), _order(2, OrderSide.SELL, 1, amount=1000)
        )

    def test_payment_overlap(self):
        a = _order(1, OrderSide.BUY, 1, payment_methods=("sberbank", "cash"))
        b = _order(2, OrderSide.SELL, 1, payment_methods=("cash",))
        c = _order(3, OrderSide.SELL, 1, payment_methods=("tinkoff",))
        assert has_common_payment_methods(a, b)
        assert not has_common_payment_methods(a, c)

    def test_pair_mismatch(self):
        assert not is_compatible(
            _order(1, OrderSide.BUY, 100), _order(2, OrderSide.SELL, 100, fiat="USD")
        )


class TestRanking:
    def test_buy_order_prefers_cheapest(self):
        buy = _order(1, OrderSide.BUY, 200)
        cands = [_order(i, OrderSide.SELL, p) for i, p in ((2, 150), (3, 120), (4, 180))]
        assert [c.id for c in rank_candidates(buy, cands)] == [3, 2, 4]

    def test_sell_order_prefers_highest_bid(self):
        sell = _order(1, OrderSide.SELL, 100)
        cands = [_order(i, OrderSide.BUY, p) for i, p in ((2, 110), (3, 130), (4, 120))]
        assert [c.id for c in rank_candidates(sell, cands)] == [3, 4, 2]

    def test_ties_break_by_age_then_id(self):
        buy = _order(1, OrderSide.BUY, 200)
        older = _order(5, OrderSide.SELL, 150, created_at=T0 - timedelta(hours=1))
        same_a = _order(2, OrderSide.SELL, 150)
        same_b = _order(3, OrderSide.SELL, 150)
        ranked = rank_candidates(buy, [same_b, same_a, older])
        assert [c.id for c in ranked] == [5, 2, 3]

    def test_limit(self):
        buy = _order(1, OrderSide.BUY, 1000)
        cands = [_order(i, OrderSide.SELL, 100 + i) for i in range(2, 20)]
        assert len(rank_candidates(buy, cands, limit=10)) == 10

    def test_input_not_mutated(self):
        buy = _order(1, OrderSide.BUY, 1000)
        cands = [_order(3, OrderSide.SELL, 200), _order(2, OrderSide.SELL, 100)]
        original = list(cands)
        rank_candidates(buy, cands)
        assert cands == original


class TestEngineMatching:
    def test_get_matching_orders(self, engine, make_order, alice, bob, carol):
        buy = make_order(alice, side="buy", price=3_000_000)
        cheap = make_order(bob, side="sell", price=2_800_000)
        pricey = make_order(carol, side="sell", price=2_900_000)
        make_order(bob, side="sell", price=3_100_000)  # too expensive
        make_order(carol, side="sell", price=2_700_000, payment_methods=["cash"])
        make_order(alice, side="sell", price=2_000_000)  # own order

        matches = engine.get_matching_orders(buy.id)
        assert [o.id for o in matches] == [cheap.id, pricey.id]

    def test_match_orders_flips_both(self, engine, make_order, alice, bob):
        buy = make_order(alice, side="buy", price=3_000_000)
        sell = make_order(bob, side="sell", price=2_900_000)
        a, b = engine.match_orders(buy.id, sell.id)
        assert a.status == b.status == OrderStatus.MATCHED
        assert a.matched_order_id == sell.id
        assert b.matched_order_id == buy.id

    def test_match_unavailable_rolls_back(self, engine, make_order, alice, bob):
        buy = make_order(alice, side="buy", price=3_000_000)
        sell = make_order(bob, side="sell", price=2_900_000)
        engine.create_response(alice.id, sell.id, "taking it")  # sell -> has_responses
        with pytest.raises(Unavailable):
            engine.match_orders(buy.id, sell.id)
        assert engine.get_order(buy.id).status == OrderStatus.ACTIVE
        assert engine.get_order(buy.id).matched_order_id is None

    def test_incompatible_pair(self, engine, make_order, alice, bob):
        buy = make_order(alice, side="buy", price=1_000_000)
        sell = make_order(bob, side="sell", price=2_900_000)
        with pytest.raises(ValidationError):
            engine.match_orders(buy.id, sell.id)

    def test_self_matching_forbidden(self, engine, make_order, alice):
        buy = make_order(alice, side="buy", price=3_000_000)
        sell = make_order(alice, side="sell", price=2_900_000)
        with pytest.raises(Forbidden):
            engine.match_orders(buy.id, sell.id)


class TestMatchingScan:
    def test_newer_better_price_beats_older_backlog(self, engine, make_order, alice, bob):
        for i in range(MATCH_SCAN_LIMIT):
            make_order(bob, side="sell", price=2_900_000 + i)
        best = make_order(bob, side="sell", price=2_800_000)
        buy = make_order(alice, side="buy", price=3_000_000)

        matches = engine.get_matching_orders(buy.id)

        assert matches[0].id == best.id
        assert [o.price for o in matches[1:3]] == [2_900_000, 2_900_001]

    def test_sell_side_prefers_highest_bid(self, engine, make_order, alice, bob, monkeypatch):
        monkeypatch.setattr(engine_module, "MATCH_SCAN_LIMIT", 3)
        bids = [make_order(bob, side="buy", price=2_900_000 + i * 10_000) for i in range(7)]
        make_order(bob, side="buy", price=2_000_000)  # below the ask
        sell = make_order(alice, side="sell", price=2_850_000)

        matches = engine.get_matching_orders(sell.id)

        assert [o.id for o in matches] == [b.id for b in reversed(bids)]

    def test_scan_pages_past_incompatible_candidates(
        self, engine, make_order, alice, bob, monkeypatch
    ):
        monkeypatch.setattr(engine_module, "MATCH_SCAN_LIMIT", 3)
        for i in range(7):
            make_order(bob, side="sell", price=2_700_000 + i, payment_methods=["cash"])
        fallback = make_order(bob, side="sell", price=2_950_000)
        buy = make_order(alice, side="buy", price=3_000_000)

        assert [o.id for o in engine.get_matching_orders(buy.id)] == [fallback.id]
