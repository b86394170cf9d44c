from __future__ import annotations

import pytest

from src.core.errors import InvalidInput
from src.core.pair_math import (
    AbstractTrade,
    PoolPair,
    calc_trade_fee,
    calc_trade_summary,
    calc_trade_with_target_demand_from_a_pair,
    calc_trade_with_target_supply_from_a_pair,
    construct_a_trade_with_min_demand_from_a_pair,
    sum_trades,
)


def _native_for_token() -> PoolPair:
    # trader supplies native (fee taken on the supply side)
    return PoolPair(a=1_118_498_378, b=1100, fee_paid_in_a=True, a_min_reserve=693, b_min_reserve=1)


def _token_for_native() -> PoolPair:
    return PoolPair(a=1100, b=1_118_498_378, fee_paid_in_a=False, a_min_reserve=1, b_min_reserve=693)


def _keeps_k(pair: PoolPair, trade: AbstractTrade) -> bool:
    a1 = pair.a + trade.supply
    b1 = pair.b - trade.demand
    if pair.fee_paid_in_a:
        return (a1 - trade.trade_fee) * b1 >= pair.k
    return a1 * (b1 - trade.trade_fee) >= pair.k


def test_calc_trade_fee_is_three_per_mille() -> None:
    assert calc_trade_fee(1000) == 3
    assert calc_trade_fee(999) == 2


def test_target_demand_trade_keeps_invariant() -> None:
    for pair in (_native_for_token(), _token_for_native()):
        trade = calc_trade_with_target_demand_from_a_pair(pair, 100)
        assert trade is not None
        assert trade.demand <= 100
        assert _keeps_k(pair, trade)


def test_min_demand_trade_meets_the_request() -> None:
    pair = _native_for_token()
    trade = construct_a_trade_with_min_demand_from_a_pair(pair, 250)
    assert trade.demand >= 250
    assert _keeps_k(pair, trade)


def test_min_demand_trade_rejects_draining_the_pool() -> None:
    with pytest.raises(InvalidInput):
        construct_a_trade_with_min_demand_from_a_pair(_native_for_token(), 1100)


def test_target_supply_trade_never_overspends() -> None:
    for pair, amount in ((_native_for_token(), 50_000_000), (_token_for_native(), 284)):
        trade = calc_trade_with_target_supply_from_a_pair(pair, amount)
        assert trade is not None
        assert trade.supply <= amount
        assert _keeps_k(pair, trade)


def test_summary_sums_trades() -> None:
    trades = [AbstractTrade(10, 20, 1), AbstractTrade(5, 5, 0)]
    assert sum_trades(trades) == AbstractTrade(15, 25, 1)
    summary = calc_trade_summary(trades, 1000)
    assert summary is not None
    assert summary.rate.numerator == 15 * 1000 // 25
    assert calc_trade_summary([], 1000) is None
