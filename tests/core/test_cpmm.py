from __future__ import annotations

import pytest

from src.core.cpmm import DEFAULT_FEE_BP, quote, supply_for_demand
from src.core.errors import InsufficientCapitalInPools, InvalidInput


def test_quote_floors_demand_and_fee() -> None:
    q = quote(reserve_supply=1000, reserve_demand=1000, supply=100)
    # 1000 * 100 // 1100 = 90, fee 90 * 30 // 10000 = 0
    assert q.demand_before_fee == 90
    assert q.fee == 0
    assert q.demand_after_fee == 90


def test_quote_zero_supply_is_zero() -> None:
    assert quote(10, 10, 0) == (0, 0, 0)


def test_supply_for_demand_delivers_at_least_the_request() -> None:
    reserve_supply, reserve_demand = 1_118_498_378, 1100
    for demand in (1, 7, 100, 500, 1000):
        supply = supply_for_demand(reserve_supply, reserve_demand, demand)
        assert quote(reserve_supply, reserve_demand, supply).demand_after_fee >= demand


def test_supply_for_demand_zero_is_free() -> None:
    assert supply_for_demand(100, 100, 0) == 0


def test_supply_for_demand_reports_missing_capital() -> None:
    with pytest.raises(InsufficientCapitalInPools) as exc:
        supply_for_demand(1000, 1000, 1000)
    # 1000 * 10000 / 9970 rounded up
    assert exc.value.requires == 1004


def test_quote_rejects_bad_reserves_and_fee() -> None:
    with pytest.raises(InvalidInput):
        quote(0, 10, 1)
    with pytest.raises(InvalidInput):
        quote(10, 10, 1, fee_bp=10_000)
    with pytest.raises(InvalidInput):
        quote(10, 10, -1)
    assert DEFAULT_FEE_BP == 30
