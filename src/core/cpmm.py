"""
Constant Product Market Maker (CPMM) quote functions.

A standalone quoting API over a bare reserve pair with a basis-point fee.
``TradeRouter`` does not call it: pool trades are priced by ``pair_math``,
which applies the same constant-product update with the 0.3% fee on the
native side and also holds the pool's minimum reserves.

Algorithm Design:
- Type: Fixed-Point Integer Arithmetic / Deterministic Rounding
- Time Complexity: O(1) per quote
- Space Complexity: O(1) auxiliary
- Invariant: supply_for_demand never promises more than quote() delivers,
  i.e. quote(supply_for_demand(d)).demand_after_fee >= d
"""

from __future__ import annotations

from typing import NamedTuple

from .errors import InvalidInput, InsufficientCapitalInPools
from .numeric import ceiling_div

BP_DENOMINATOR = 10_000
DEFAULT_FEE_BP = 30


class Quote(NamedTuple):
    demand_before_fee: int
    fee: int
    demand_after_fee: int


def _validate(reserve_supply: int, reserve_demand: int, fee_bp: int) -> None:
    if reserve_supply <= 0 or reserve_demand <= 0:
        raise InvalidInput(f"reserves must be positive: ({reserve_supply}, {reserve_demand})")
    if not (0 <= fee_bp < BP_DENOMINATOR):
        raise InvalidInput(f"fee_bp must be in [0, {BP_DENOMINATOR}): {fee_bp}")


def quote(reserve_supply: int, reserve_demand: int, supply: int, fee_bp: int = DEFAULT_FEE_BP) -> Quote:
    """
    Quote the demand received for an exact supply.

    Formula:
        demand_before_fee = floor(reserve_demand * supply / (reserve_supply + supply))
        fee = floor(demand_before_fee * fee_bp / 10_000)
        demand_after_fee = demand_before_fee - fee

    Raises:
        ValueError: on non-positive reserves, negative supply or out-of-range fee
    """
    _validate(reserve_supply, reserve_demand, fee_bp)
    if supply < 0:
        raise InvalidInput(f"supply must be non-negative: {supply}")
    demand_before_fee = reserve_demand * supply // (reserve_supply + supply)
    fee = demand_before_fee * fee_bp // BP_DENOMINATOR
    return Quote(demand_before_fee, fee, demand_before_fee - fee)


def supply_for_demand(reserve_supply: int, reserve_demand: int, demand_after_fee: int, fee_bp: int = DEFAULT_FEE_BP) -> int:
    """
    Minimal-rounding inverse of ``quote``: the supply needed to receive at
    least ``demand_after_fee``.

    Formula:
        demand_before_fee = ceil(demand_after_fee * 10_000 / (10_000 - fee_bp))
        supply = ceil(reserve_supply * demand_before_fee / (reserve_demand - demand_before_fee))

    Raises:
        ValueError: on invalid inputs
        InsufficientCapitalInPools: when the pool cannot deliver the demand
    """
    _validate(reserve_supply, reserve_demand, fee_bp)
    if demand_after_fee < 0:
        raise InvalidInput(f"demand_after_fee must be non-negative: {demand_after_fee}")
    if demand_after_fee == 0:
        return 0
    demand_before_fee = ceiling_div(demand_after_fee * BP_DENOMINATOR, BP_DENOMINATOR - fee_bp)
    if demand_before_fee >= reserve_demand:
        raise InsufficientCapitalInPools(
            "pool cannot deliver the requested demand",
            {"reserve_demand": reserve_demand},
            requires=demand_before_fee,
        )
    return ceiling_div(reserve_supply * demand_before_fee, reserve_demand - demand_before_fee)
