"""
Exact trade math for a single pool pair and for sets of pairs.

A pair is viewed from the trader's side: ``a`` is the reserve being supplied
into, ``b`` the reserve being taken from. The pool charges 0.3% on the
native side, so ``fee_paid_in_a`` is true when the trader supplies native.

Algorithm Design:
- Type: Integer Arithmetic / Binary Search / Greedy Filling
- All searches are bounded: binary searches over integer ranges, filling
  steppers by the available amount over the step size, and the rounding
  fix-ups by small constant iteration caps.
- Invariant: every returned pair trade leaves (a1 - fee) * b1 >= K (or
  a1 * (b1 - fee) >= K) and keeps both reserves at or above their minimum.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import InvalidInput, InvalidProgramState, NotFoundError
from .numeric import Fraction, bigint_max, bigint_min, ceiling_div, sort_with_comparator

SIZE_OF_POOL_V0_IN_TX = 197


@dataclass(frozen=True)
class PoolPair:
    a: int
    b: int
    fee_paid_in_a: bool
    a_min_reserve: int
    b_min_reserve: int

    @property
    def k(self) -> int:
        return self.a * self.b


@dataclass(frozen=True)
class AbstractTrade:
    supply: int
    demand: int
    trade_fee: int


@dataclass(frozen=True)
class TradeSummary:
    supply: int
    demand: int
    trade_fee: int
    rate: Fraction


class PairTrade:
    """A pair with its (mutable) trade assignment. Pairs are matched by identity."""

    __slots__ = ("pair", "trade")

    def __init__(self, pair: PoolPair, trade: Optional[AbstractTrade]):
        self.pair = pair
        self.trade = trade

    def __repr__(self) -> str:
        return f"PairTrade(pair={self.pair!r}, trade={self.trade!r})"


@dataclass(frozen=True)
class PairBounds:
    pair: PoolPair
    lower_bound: int
    upper_bound: int


@dataclass
class RatedTrade:
    trade: List[PairTrade]
    rate: Fraction


@dataclass
class EliminationResult(RatedTrade):
    keep_pool_trade_list: List[PairTrade]
    rate_with_benefit: int = 0
    split_index: int = 0


@dataclass(frozen=True)
class FixedCost:
    supply: int
    demand: int


# --- rates & sums -----------------------------------------------------------


def calc_trade_fee(amount: int) -> int:
    return amount * 3 // 1000


def calc_trade_avg_rate(trade: AbstractTrade, rate_denominator: int) -> Fraction:
    return Fraction(trade.supply * rate_denominator // trade.demand, rate_denominator)


def calc_pair_rate(a: int, b: int, rate_denominator: int) -> Fraction:
    return Fraction(a * b * rate_denominator // (b * b), rate_denominator)


def calc_pair_rate_with_kb(k: int, b: int, rate_denominator: int) -> int:
    return k * rate_denominator // (b * b)


def sum_trades(trades: Sequence[AbstractTrade]) -> Optional[AbstractTrade]:
    supply = sum(t.supply for t in trades)
    demand = sum(t.demand for t in trades)
    if supply > 0 and demand > 0:
        return AbstractTrade(supply, demand, sum(t.trade_fee for t in trades))
    return None


def calc_trade_summary(trades: Sequence[AbstractTrade], rate_denominator: int) -> Optional[TradeSummary]:
    total = sum_trades(trades)
    if total is None:
        return None
    return TradeSummary(total.supply, total.demand, total.trade_fee, calc_trade_avg_rate(total, rate_denominator))


def _pair_trades_sum(entries: Sequence[PairTrade]) -> Optional[AbstractTrade]:
    return sum_trades([e.trade for e in entries if e.trade is not None])


# --- fee placement ----------------------------------------------------------


def _include_fee_for_target(target: int, initial: int) -> int:
    """Grow ``a1`` until ``a1 - fee(a1 - initial)`` reaches ``target``."""
    x1 = target
    x2 = target + calc_trade_fee(target - initial)
    tries = 0
    while x2 - calc_trade_fee(x2 - initial) < target:
        more_fee = bigint_max(1, calc_trade_fee(x2 - x1))
        x1 = x2
        x2 = x1 + more_fee
        if more_fee == 1:
            tries += 1
            if tries > 6:
                raise InvalidProgramState("too many attempts to add more_fee=1")
    return x2


def _leave_fee_in_pool_for_target(target: int, initial: int):
    # x1 = (x0 + initial * C) / (1 + C), C = 3/1000
    x1 = (target * 1000 + initial * 3) // 1003
    for error_threshold, x1i in ((0, x1 + 1), (1, x1)):
        reserved_trade_fee = x1i - target
        trade_fee = calc_trade_fee(initial - x1i)
        diff = trade_fee - reserved_trade_fee
        if 0 <= diff <= error_threshold:
            return x1i + diff, trade_fee
    raise InvalidProgramState(f"leave-fee-in-pool failed, target: {target}, initial: {initial}")


def _leave_fee_in_pool_for_min_target(target: int, initial: int):
    # x1 = (x0 * 1003 - initial * 3) / 1000
    x1 = (target * 1003 - initial * 3) // 1000
    for error_threshold, x1i in ((0, x1 + 1), (1, x1)):
        reserved_trade_fee = target - x1i
        trade_fee = calc_trade_fee(initial - target)
        diff = reserved_trade_fee - trade_fee
        if 0 <= diff <= error_threshold:
            return x1i - diff, trade_fee
    raise InvalidProgramState(f"leave-fee-in-pool (min target) failed, target: {target}, initial: {initial}")


def _trade_sanity_check(pair_a_1: int, pair_b_1: int, trade_fee: int, k: int, pair: PoolPair) -> None:
    if pair_b_1 > pair.b:
        raise InvalidProgramState("expecting pair_b_1 to be <= pair.b")
    if pair_a_1 * pair_b_1 < k:
        raise InvalidProgramState("pair_a_1 * pair_b_1 is not >= K")
    if pair.fee_paid_in_a:
        if (pair_a_1 - trade_fee) * pair_b_1 < k:
            raise InvalidProgramState("(pair_a_1 - trade_fee) * pair_b_1 < K")
        if (pair_a_1 - 1 - trade_fee) * pair_b_1 >= k:
            raise InvalidProgramState("(pair_a_1 - 1 - trade_fee) * pair_b_1 >= K")
        if (pair_a_1 - trade_fee) * (pair_b_1 - 1) >= k:
            raise InvalidProgramState("(pair_a_1 - trade_fee) * (pair_b_1 - 1) >= K")
    else:
        if pair_a_1 * (pair_b_1 - trade_fee) < k:
            raise InvalidProgramState("pair_a_1 * (pair_b_1 - trade_fee) < K")
        if (pair_a_1 - 1) * (pair_b_1 - trade_fee) >= k:
            raise InvalidProgramState("(pair_a_1 - 1) * (pair_b_1 - trade_fee) >= K")
        if pair_a_1 * (pair_b_1 - 1 - trade_fee) >= k:
            raise InvalidProgramState("pair_a_1 * (pair_b_1 - 1 - trade_fee) >= K")
    if pair_a_1 < pair.a_min_reserve:
        raise InvalidProgramState("expecting pair_a_1 to not be less than min reserve")
    if pair_b_1 < pair.b_min_reserve:
        raise InvalidProgramState("expecting pair_b_1 to not be less than min reserve")
    if pair_a_1 <= pair.a:
        raise InvalidProgramState("pair_a_1 <= pair.a")
    if pair.b <= pair_b_1:
        raise InvalidProgramState("pair.b <= pair_b_1")


# --- single pair trades -----------------------------------------------------


def calc_trade_with_target_demand_from_a_pair(pair: PoolPair, amount: int) -> Optional[AbstractTrade]:
    k = pair.k
    pre_b1 = bigint_max(pair.b_min_reserve, pair.b - amount)
    a1 = ceiling_div(k, pre_b1)
    b1 = ceiling_div(k, a1)
    if b1 > pre_b1:
        raise InvalidProgramState(f"b1 > pre_b1, {b1} > {pre_b1}")
    if pair.fee_paid_in_a:
        pair_a_1 = _include_fee_for_target(a1, pair.a)
        pair_b_1 = b1
        trade_fee = calc_trade_fee(pair_a_1 - pair.a)
    else:
        pair_a_1 = a1
        pair_b_1, trade_fee = _leave_fee_in_pool_for_target(b1, pair.b)
    _trade_sanity_check(pair_a_1, pair_b_1, trade_fee, k, pair)
    supply = pair_a_1 - pair.a
    demand = pair.b - pair_b_1
    if demand > 0 and supply > 0:
        return AbstractTrade(supply, demand, trade_fee)
    return None


def construct_a_trade_with_min_demand_from_a_pair(pair: PoolPair, amount: int) -> AbstractTrade:
    """A trade that yields at least ``amount``; ValueError when the pool is too shallow."""
    k = pair.k
    if pair.b - amount < pair.b_min_reserve:
        raise InvalidInput("not enough amount in the pool for the required demand")
    if pair.fee_paid_in_a:
        pre_b1 = pair.b - amount
        a1 = ceiling_div(k, pre_b1)
        b1 = ceiling_div(k, a1)
        if b1 > pre_b1 or b1 < pair.b_min_reserve:
            raise InvalidProgramState(f"b1 > pre_b1 or b1 < b_min_reserve, {b1} > {pre_b1}")
        pair_a_1 = _include_fee_for_target(a1, pair.a)
        pair_b_1 = b1
        trade_fee = calc_trade_fee(pair_a_1 - pair.a)
    else:
        pre_b1, _ = _leave_fee_in_pool_for_min_target(pair.b - amount, pair.b)
        a1 = ceiling_div(k, pre_b1)
        b1 = ceiling_div(k, a1)
        pair_a_1 = a1
        pair_b_1, trade_fee = _leave_fee_in_pool_for_target(b1, pair.b)
        if pair_b_1 < pair.b_min_reserve:
            raise InvalidInput("not enough amount in the pool for the required demand")
        if pair.b - pair_b_1 < amount:
            raise InvalidProgramState(f"pair.b - pair_b_1 < amount, {pair.b} - {pair_b_1} < {amount}")
    supply = pair_a_1 - pair.a
    demand = pair.b - pair_b_1
    _trade_sanity_check(pair_a_1, pair_b_1, trade_fee, k, pair)
    if demand < amount:
        raise InvalidInput("not enough amount in the pool for the required demand")
    return AbstractTrade(supply, demand, trade_fee)


def calc_trade_with_target_supply_from_a_pair(pair: PoolPair, amount: int) -> Optional[AbstractTrade]:
    k = pair.k
    if pair.fee_paid_in_a:
        pre_a1 = pair.a + amount - calc_trade_fee(amount)
        b1 = ceiling_div(k, pre_a1)
        a1 = ceiling_div(k, b1)
        if a1 <= pair.a or b1 >= pair.b or b1 < pair.b_min_reserve:
            return None
        pair_a_1 = _include_fee_for_target(a1, pair.a)
        pair_b_1 = b1
        trade_fee = calc_trade_fee(pair_a_1 - pair.a)
        if pair_a_1 <= pair.a:
            raise InvalidProgramState("pair_a_1 <= pair.a")
    else:
        pre_a1 = pair.a + amount
        pre_b1 = bigint_max(pair.b_min_reserve, ceiling_div(k, pre_a1))
        a1 = ceiling_div(k, pre_b1)
        b1 = ceiling_div(k, a1)
        pair_a_1 = a1
        pair_b_1, trade_fee = _leave_fee_in_pool_for_target(b1, pair.b)
        if pair.b - pair_b_1 <= 0 or pair_b_1 < pair.b_min_reserve:
            return None
    _trade_sanity_check(pair_a_1, pair_b_1, trade_fee, k, pair)
    supply = pair_a_1 - pair.a
    demand = pair.b - pair_b_1
    if supply > amount:
        raise InvalidProgramState(f"supply > amount, amount: {amount}, pair.a: {pair.a}, pair.b: {pair.b}")
    if demand > 0 and supply > 0:
        return AbstractTrade(supply, demand, trade_fee)
    return None


def required_supply_to_max_out_a_pair(pair: PoolPair) -> int:
    b1 = pair.b_min_reserve
    if b1 >= pair.b:
        return 0
    a1 = ceiling_div(pair.k, b1)
    if a1 - pair.a <= 0:
        raise InvalidProgramState(f"a1 - pair.a <= 0, a1: {a1}, pair.a: {pair.a}")
    return a1 - pair.a


# --- searches within one pair -----------------------------------------------


def _tip_rate_at(pair: PoolPair, k: int, b2: int, a2: int, rate_denominator: int):
    # The marginal rate at b2, bracketed by the neighbouring integer point.
    if a2 - pair.a > pair.b - b2:
        b1 = b2 + 1
        a1 = ceiling_div(k, b1)
    else:
        a1 = a2 - 1
        b1 = ceiling_div(k, a1)
    tip_rate = (a2 - a1) * rate_denominator // (b1 - b2)
    return tip_rate, a1, b1


def approx_available_amount_in_a_pair_at_target_avg_rate(
    pair: PoolPair, target_rate: Fraction, lower_bound: int, upper_bound: int
) -> Optional[AbstractTrade]:
    """Largest demand in [lower_bound, upper_bound) whose average rate is <= target."""
    trade = None
    while lower_bound < upper_bound:
        guess = lower_bound + (upper_bound - lower_bound) // 2
        guess_trade = calc_trade_with_target_demand_from_a_pair(pair, guess)
        if guess_trade is None:
            raise InvalidProgramState("guess_trade is None")
        if calc_trade_avg_rate(guess_trade, target_rate.denominator).numerator > target_rate.numerator:
            upper_bound = guess
        else:
            lower_bound = guess + 1
            trade = guess_trade
    return trade


def approx_available_amount_in_a_pair_at_target_rate(
    pair: PoolPair, target_rate: Fraction, lower_bound: int, upper_bound: int
) -> Optional[int]:
    """Largest demand in [lower_bound, upper_bound) whose marginal rate is <= target."""
    best_guess = None
    k = pair.k
    while lower_bound < upper_bound:
        guess = lower_bound + (upper_bound - lower_bound) // 2
        a2 = ceiling_div(k, pair.b - guess)
        b2 = ceiling_div(k, a2)
        if b2 < pair.b_min_reserve:
            raise InvalidProgramState("b2 < pair.b_min_reserve")
        tip_rate, _, b1 = _tip_rate_at(pair, k, b2, a2, target_rate.denominator)
        rate_b1 = calc_pair_rate_with_kb(k, b1, target_rate.denominator)
        rate_b2 = calc_pair_rate_with_kb(k, b2, target_rate.denominator)
        rate = bigint_min(rate_b2, bigint_max(tip_rate, rate_b1))
        if rate > target_rate.numerator:
            upper_bound = guess
        else:
            lower_bound = guess + 1
            best_guess = guess
    return best_guess


def approx_available_amount_in_a_supply_range_for_a_pair(
    pair: PoolPair, target_rate: Fraction, lower_bound: int, upper_bound: int
):
    """Largest supply in [lower_bound, upper_bound) whose marginal rate is <= target.

    Returns ``(best_guess, trade)`` or None.
    """
    best = None
    k = pair.k
    while lower_bound < upper_bound:
        guess = lower_bound + (upper_bound - lower_bound) // 2
        trade = calc_trade_with_target_supply_from_a_pair(pair, guess)
        if trade is None:
            lower_bound = guess + 1
            continue
        b2 = pair.b - trade.demand
        if b2 < pair.b_min_reserve:
            raise InvalidProgramState("b2 < pair.b_min_reserve")
        a2 = ceiling_div(k, b2)
        tip_rate, _, b1 = _tip_rate_at(pair, k, b2, a2, target_rate.denominator)
        rate_b1 = calc_pair_rate_with_kb(k, b1, target_rate.denominator)
        rate_b2 = calc_pair_rate_with_kb(k, b2, target_rate.denominator)
        rate = bigint_min(rate_b2, bigint_max(tip_rate, rate_b1))
        if rate > target_rate.numerator:
            upper_bound = guess
        else:
            lower_bound = guess + 1
            best = (guess, trade)
    return best


# --- multi pair -------------------------------------------------------------


def _sort_by_next_rate(entries: List[dict]) -> None:
    sort_with_comparator(entries, lambda x, y: x["next"][1].numerator - y["next"][1].numerator)


def fill_trade_to_target_demand_with_filling_stepper(
    initial: Sequence[PairTrade], requested_amount: int, step_size: int, rate_denominator: int
) -> Optional[List[PairTrade]]:
    """
    Grow the trades step by step, always extending the pair whose next step
    is cheapest, until ``requested_amount`` is acquired. None when the pairs
    run dry first.
    """
    if step_size <= 0:
        raise InvalidInput("step size should be greater than zero")
    entries = [{"entry": PairTrade(p.pair, p.trade), "next": None} for p in initial]
    total_available = sum(
        bigint_max(0, e["entry"].pair.b - e["entry"].pair.b_min_reserve - calc_trade_fee(e["entry"].pair.b - e["entry"].pair.b_min_reserve))
        for e in entries
    )
    if total_available <= 0:
        return None
    total_acquired = sum(e["entry"].trade.demand for e in entries if e["entry"].trade is not None)

    def step_for_pair(pair: PoolPair) -> int:
        return bigint_max(1, bigint_max(0, pair.b - pair.b_min_reserve) * step_size // total_available)

    while total_acquired < requested_amount:
        for e in entries:
            if e["next"] is None:
                entry = e["entry"]
                next_demand = step_for_pair(entry.pair)
                if entry.trade is not None:
                    next_demand += entry.trade.demand + (entry.trade.trade_fee if not entry.pair.fee_paid_in_a else 0)
                next_trade = calc_trade_with_target_demand_from_a_pair(entry.pair, next_demand)
                if next_trade is not None:
                    e["next"] = (next_trade, calc_trade_avg_rate(next_trade, rate_denominator))
        candidates = [e for e in entries if e["next"] is not None]
        _sort_by_next_rate(candidates)
        did_fill = False
        for e in candidates:
            entry = e["entry"]
            current_demand = entry.trade.demand if entry.trade is not None else 0
            next_addition = e["next"][0].demand - current_demand
            if next_addition <= 0:
                continue
            if next_addition > requested_amount - total_acquired:
                try:
                    trade = construct_a_trade_with_min_demand_from_a_pair(
                        entry.pair, requested_amount - total_acquired + current_demand
                    )
                except InvalidInput:
                    return None
                total_acquired += trade.demand - current_demand
                entry.trade = trade
            else:
                entry.trade = e["next"][0]
                total_acquired += next_addition
            e["next"] = None
            did_fill = True
            break
        if not did_fill:
            return None
    result = [e["entry"] for e in entries]
    if total_acquired != sum(e.trade.demand for e in result if e.trade is not None):
        raise InvalidProgramState("total_acquired does not match the sum")
    if total_acquired < requested_amount:
        raise InvalidProgramState("total_acquired < requested_amount")
    return [e for e in result if e.trade is not None]


def fill_trade_to_target_supply_with_filling_stepper(
    initial: Sequence[PairTrade], requested_amount: int, step_size: int, rate_denominator: int
) -> Optional[List[PairTrade]]:
    if step_size <= 0:
        raise InvalidInput("step size should be greater than zero")
    entries = [{"entry": PairTrade(p.pair, p.trade), "next": None} for p in initial]
    total_available = sum(required_supply_to_max_out_a_pair(e["entry"].pair) for e in entries)
    if total_available == 0:
        return None
    total_acquired = sum(e["entry"].trade.supply for e in entries if e["entry"].trade is not None)

    while total_acquired < requested_amount:
        for e in entries:
            if e["next"] is not None:
                continue
            entry = e["entry"]
            next_step = required_supply_to_max_out_a_pair(entry.pair) * step_size // total_available
            next_trade = None
            if next_step > 0:
                next_supply = (entry.trade.supply if entry.trade is not None else 0) + next_step
                next_trade = calc_trade_with_target_supply_from_a_pair(entry.pair, next_supply)
            if next_trade is None or (entry.trade is not None and next_trade.demand == entry.trade.demand):
                # at least one more unit of demand
                try:
                    next_trade = construct_a_trade_with_min_demand_from_a_pair(
                        entry.pair, (entry.trade.demand if entry.trade is not None else 0) + 1
                    )
                except InvalidInput:
                    next_trade = None
            if next_trade is not None:
                e["next"] = (next_trade, calc_trade_avg_rate(next_trade, rate_denominator))
        candidates = [e for e in entries if e["next"] is not None]
        _sort_by_next_rate(candidates)
        did_fill = False
        did_end = False
        for e in candidates:
            entry = e["entry"]
            current_supply = entry.trade.supply if entry.trade is not None else 0
            next_addition = e["next"][0].supply - current_supply
            if next_addition <= 0:
                continue
            if next_addition >= requested_amount - total_acquired:
                trade = calc_trade_with_target_supply_from_a_pair(
                    entry.pair, requested_amount - total_acquired + current_supply
                )
                if trade is not None and (entry.trade is None or trade.supply > entry.trade.supply):
                    total_acquired += trade.supply - current_supply
                    entry.trade = trade
                did_end = True
            else:
                entry.trade = e["next"][0]
                total_acquired += next_addition
            e["next"] = None
            did_fill = True
            break
        if did_end:
            break
        if not did_fill:
            return None
    result = [e["entry"] for e in entries]
    if total_acquired != sum(e.trade.supply for e in result if e.trade is not None):
        raise InvalidProgramState("total_acquired does not match the sum")
    if total_acquired > requested_amount:
        raise InvalidProgramState("total_acquired > requested_amount")
    return [e for e in result if e.trade is not None]


def construct_trade_in_pools_below_target_rate_in_demand_range(pools_set: Sequence[PairBounds], rate: Fraction):
    """Per pair: ``(pair, trade, best_guess)`` for pairs that can trade at ``rate``."""
    result = []
    for bounds in pools_set:
        best_guess = approx_available_amount_in_a_pair_at_target_rate(bounds.pair, rate, bounds.lower_bound, bounds.upper_bound)
        if best_guess is None:
            continue
        trade = calc_trade_with_target_demand_from_a_pair(bounds.pair, best_guess)
        if trade is None:
            raise InvalidProgramState("derived trade from best guess is None")
        result.append((bounds.pair, trade, best_guess))
    return result


def construct_trade_in_pools_below_target_rate_in_supply_range(pools_set: Sequence[PairBounds], rate: Fraction):
    result = []
    for bounds in pools_set:
        found = approx_available_amount_in_a_supply_range_for_a_pair(bounds.pair, rate, bounds.lower_bound, bounds.upper_bound)
        if found is not None:
            result.append((bounds.pair, found[1], found[0]))
    return result


def _best_rate_to_trade_in_pools(
    pools_set: Sequence[PairBounds],
    amount: int,
    lower_bound: int,
    upper_bound: int,
    rate_denominator: int,
    *,
    target: str,
) -> Optional[RatedTrade]:
    """
    Bisect the rate: the lowest rate at which the pools together provide the
    most ``target`` without exceeding ``amount``. Per-pair search bounds
    narrow as the bisection moves.
    """
    pools_set = list(pools_set)
    if target == "demand":
        construct = construct_trade_in_pools_below_target_rate_in_demand_range

        def pair_cap(pair: PoolPair) -> int:
            return pair.b - pair.b_min_reserve + 1
    else:
        construct = construct_trade_in_pools_below_target_rate_in_supply_range
        max_supply = {id(b.pair): required_supply_to_max_out_a_pair(b.pair) for b in pools_set}

        def pair_cap(pair: PoolPair) -> int:
            return max_supply[id(pair)]

    candidate_trade = None
    candidate_sum: Optional[AbstractTrade] = None
    best_rate = None
    while lower_bound < upper_bound:
        guess = lower_bound + (upper_bound - lower_bound) // 2
        next_candidate = construct(pools_set, Fraction(guess, rate_denominator))
        next_sum = sum_trades([t for _, t, _ in next_candidate])
        if next_sum is None:
            lower_bound = guess + 1
            continue
        measured = getattr(next_sum, target)
        if measured <= amount and (
            candidate_sum is None
            or next_sum.demand > candidate_sum.demand
            or (next_sum.demand == candidate_sum.demand and next_sum.supply < candidate_sum.supply)
        ):
            candidate_trade = next_candidate
            candidate_sum = next_sum
            best_rate = guess
        found = {id(pair): best_guess for pair, _, best_guess in next_candidate}
        narrowed = []
        for bounds in pools_set:
            best_guess = found.get(id(bounds.pair))
            if best_guess is None:
                narrowed.append(bounds)
            elif measured < amount:
                narrowed.append(PairBounds(bounds.pair, best_guess - 1, bounds.upper_bound))
            else:
                narrowed.append(PairBounds(bounds.pair, bounds.lower_bound, bigint_min(best_guess + 1, pair_cap(bounds.pair))))
        pools_set = narrowed
        if measured < amount:
            lower_bound = guess + 1
        else:
            upper_bound = guess
    if candidate_trade is None:
        return None
    return RatedTrade([PairTrade(pair, trade) for pair, trade, _ in candidate_trade], Fraction(best_rate, rate_denominator))


def best_rate_to_trade_in_pools_for_target_demand(
    pools_set: Sequence[PairBounds], amount: int, lower_bound: int, upper_bound: int, rate_denominator: int
) -> Optional[RatedTrade]:
    return _best_rate_to_trade_in_pools(pools_set, amount, lower_bound, upper_bound, rate_denominator, target="demand")


def best_rate_to_trade_in_pools_for_target_supply(
    pools_set: Sequence[PairBounds], amount: int, lower_bound: int, upper_bound: int, rate_denominator: int
) -> Optional[RatedTrade]:
    return _best_rate_to_trade_in_pools(pools_set, amount, lower_bound, upper_bound, rate_denominator, target="supply")


def _eliminate_net_negative_pools(
    fixed_cost: FixedCost,
    input_trade: Sequence[PairTrade],
    amount: int,
    rate_lower_bound: int,
    rate_upper_bound: int,
    rate_denominator: int,
    *,
    target: str,
    best_rate: Callable[..., Optional[RatedTrade]],
    fill_trade: Callable[..., Optional[List[PairTrade]]],
) -> EliminationResult:
    """
    Find the split of pairs (sorted by how much one fixed cost hurts their
    rate) that gives the best average rate once the fixed cost saved by
    dropping the tail is credited back. Raises NotFoundError when dropping
    never helps.
    """
    if fixed_cost.supply == 0 and fixed_cost.demand == 0:
        raise NotFoundError("no fixed cost to eliminate against")

    def change_in_rate_with_fixed_cost(trade: AbstractTrade) -> Optional[int]:
        if trade.demand - fixed_cost.demand <= 0:
            return None
        return (trade.supply + fixed_cost.supply) * rate_denominator // (trade.demand - fixed_cost.demand) - (
            trade.supply * rate_denominator // trade.demand
        )

    scored = [(e, change_in_rate_with_fixed_cost(e.trade)) for e in input_trade]
    scored = [s for s in scored if s[1] is not None]
    sort_with_comparator(scored, lambda x, y: x[1] - y[1])
    entries = []
    for e, _ in scored:
        upper = e.pair.b - e.pair.b_min_reserve if target == "demand" else required_supply_to_max_out_a_pair(e.pair)
        entries.append((e, PairBounds(e.pair, getattr(e.trade, target), upper)))
    entries_sum = sum_trades([e.trade for e, _ in entries])
    if len(entries) == 0 or entries_sum is None:
        return EliminationResult([], Fraction(0, rate_denominator), [])

    def eliminate_sub(split: int):
        keep = entries[:split]
        eliminated = len(entries) - split
        next_candidate = best_rate([b for _, b in keep], amount, rate_lower_bound, rate_upper_bound, rate_denominator)
        next_sum = None if next_candidate is None else _pair_trades_sum(next_candidate.trade)
        if next_candidate is not None and next_sum is not None and getattr(next_sum, target) < amount:
            filled = fill_trade(next_candidate.trade, amount, amount - getattr(next_sum, target), rate_denominator)
            if not filled:
                next_candidate = None
            else:
                next_candidate.trade = filled
                next_sum = _pair_trades_sum(filled)
        if next_candidate is None or next_sum is None:
            return None
        rate_with_benefit = (next_sum.supply - fixed_cost.supply * eliminated) * rate_denominator // (
            next_sum.demand + fixed_cost.demand * eliminated
        )
        return EliminationResult(
            next_candidate.trade,
            next_candidate.rate,
            [PairTrade(e.pair, e.trade) for e, _ in keep],
            rate_with_benefit,
            split,
        )

    entries_avg_rate = entries_sum.supply * rate_denominator // entries_sum.demand
    candidate: Optional[EliminationResult] = None
    lower, upper = 1, len(entries)
    while lower < upper:
        guess = lower + (upper - lower) // 2
        result = eliminate_sub(guess)
        if result is not None and result.rate_with_benefit < entries_avg_rate:
            candidate = result
            break
        lower = guess + 1

    if candidate is not None:
        bounds = [
            {"side": "left", "lower": 1, "upper": candidate.split_index},
            {"side": "right", "lower": candidate.split_index, "upper": len(entries)},
        ]
        while bounds:
            abound = bounds.pop(0)
            guess = abound["lower"] + (abound["upper"] - abound["lower"]) // 2
            result = eliminate_sub(guess)
            if result is not None and result.rate_with_benefit < candidate.rate_with_benefit:
                candidate = result
                remaining = []
                for other in bounds:
                    if other["side"] == "left":
                        other["upper"] = guess
                    else:
                        other["lower"] = guess
                    if other["lower"] < other["upper"]:
                        remaining.append(other)
                bounds = remaining
                if abound["side"] == "left":
                    abound["lower"] = guess + 1
                else:
                    abound["upper"] = guess
                if abound["lower"] < abound["upper"]:
                    bounds.append(abound)
            else:
                if candidate.split_index < guess:
                    nxt = {"side": "right", "lower": candidate.split_index, "upper": guess}
                else:
                    nxt = {"side": "left", "lower": guess + 1, "upper": candidate.split_index}
                if nxt["lower"] < nxt["upper"]:
                    bounds.append(nxt)

    if candidate is None:
        raise NotFoundError("no pool elimination improves the rate")
    return candidate


def eliminate_net_negative_pools_with_target_demand(
    fixed_cost: FixedCost, candidate: Sequence[PairTrade], amount: int, rate_lower_bound: int, rate_upper_bound: int, rate_denominator: int
) -> EliminationResult:
    return _eliminate_net_negative_pools(
        fixed_cost, candidate, amount, rate_lower_bound, rate_upper_bound, rate_denominator,
        target="demand",
        best_rate=best_rate_to_trade_in_pools_for_target_demand,
        fill_trade=fill_trade_to_target_demand_with_filling_stepper,
    )


def eliminate_net_negative_pools_with_target_supply(
    fixed_cost: FixedCost, candidate: Sequence[PairTrade], amount: int, rate_lower_bound: int, rate_upper_bound: int, rate_denominator: int
) -> EliminationResult:
    return _eliminate_net_negative_pools(
        fixed_cost, candidate, amount, rate_lower_bound, rate_upper_bound, rate_denominator,
        target="supply",
        best_rate=best_rate_to_trade_in_pools_for_target_supply,
        fill_trade=fill_trade_to_target_supply_with_filling_stepper,
    )
