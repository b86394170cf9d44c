"""
Trade routing across constant-product pools of one native/token pair.

Entry points (all on ``TradeRouter``):
- best rate for a target demand: a greedy marginal-price allocator (the
  default) or the historical rate-bisection path (``mode="legacy"``)
- best rate for a target supply
- available amount below a target marginal rate, or at a target average rate

All rates are Fractions over ``get_rate_denominator()``; nothing uses floats.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..state.pools import PoolV0
from ..state.types import NATIVE_TOKEN_ID, Output, TokenId
from ..state.wire import dust_threshold
from .errors import InsufficientCapitalInPools, InsufficientFunds, InvalidInput, InvalidProgramState, NotFoundError
from .numeric import Fraction, bigint_max, convert_fraction_denominator, sort_with_comparator
from .pair_math import (
    SIZE_OF_POOL_V0_IN_TX,
    AbstractTrade,
    FixedCost,
    PairBounds,
    PairTrade,
    PoolPair,
    TradeSummary,
    approx_available_amount_in_a_pair_at_target_avg_rate,
    approx_available_amount_in_a_pair_at_target_rate,
    best_rate_to_trade_in_pools_for_target_demand,
    best_rate_to_trade_in_pools_for_target_supply,
    calc_pair_rate,
    calc_trade_summary,
    calc_trade_with_target_demand_from_a_pair,
    calc_trade_with_target_supply_from_a_pair,
    construct_a_trade_with_min_demand_from_a_pair,
    eliminate_net_negative_pools_with_target_demand,
    eliminate_net_negative_pools_with_target_supply,
    fill_trade_to_target_demand_with_filling_stepper,
    fill_trade_to_target_supply_with_filling_stepper,
    required_supply_to_max_out_a_pair,
)

log = logging.getLogger(__name__)

DEFAULT_RATE_DENOMINATOR = 10_000_000_000_000
MIN_NATIVE_POOL_RESERVE = 693
STEPPER_SIZE = 10

ROUTING_MODE_GREEDY = "greedy"
ROUTING_MODE_LEGACY = "legacy"


@dataclass(frozen=True)
class TradeEntry:
    pool: PoolV0
    supply_token_id: TokenId
    demand_token_id: TokenId
    supply: int
    demand: int
    trade_fee: int


@dataclass(frozen=True)
class TradeResult:
    entries: Tuple[TradeEntry, ...]
    summary: TradeSummary


@dataclass(frozen=True, eq=False)
class RoutedPair(PoolPair):
    """PoolPair that remembers its source pool."""

    pool: PoolV0 = None


class TradeRouter:
    """Pool selector for native/token trades."""

    def __init__(self, compiler=None, rate_denominator: int = DEFAULT_RATE_DENOMINATOR, dust_relay_fee: int = 1000):
        self._compiler = compiler
        self._rate_denominator = rate_denominator
        self._dust_relay_fee = dust_relay_fee
        self._default_preferred_token_output_bch_amount: Optional[int] = None

    # --- parameters ---------------------------------------------------------

    def set_rate_denominator(self, denominator: int) -> None:
        if denominator <= 0:
            raise InvalidInput("rate denominator must be positive")
        self._rate_denominator = denominator

    def get_rate_denominator(self) -> int:
        return self._rate_denominator

    def get_output_min_amount(self, output: Output) -> int:
        return dust_threshold(output, self._dust_relay_fee)

    def get_min_token_reserve(self, token_id: TokenId) -> int:
        return MIN_NATIVE_POOL_RESERVE if token_id == NATIVE_TOKEN_ID else 1

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        if output is None:
            raise InvalidInput("output should not be None")
        return self._default_preferred_token_output_bch_amount

    def set_default_preferred_token_output_bch_amount(self, value: Optional[int]) -> None:
        self._default_preferred_token_output_bch_amount = value

    def generate_pool_v0_locking_bytecode(self, parameters) -> bytes:
        if self._compiler is None:
            raise InvalidInput("a script compiler is required to generate pool locking bytecode")
        return self._compiler.generate_bytecode(
            "cauldron_poolv0", {"pool_owner_public_key_hash160": parameters.withdraw_pubkey_hash}
        )

    # --- helpers ------------------------------------------------------------

    def _prepare(self, supply_token_id: TokenId, demand_token_id: TokenId, pools: Sequence[PoolV0]) -> List[RoutedPair]:
        if (supply_token_id == NATIVE_TOKEN_ID) == (demand_token_id == NATIVE_TOKEN_ID):
            raise InvalidInput("either demand_token_id or supply_token_id should be the native token")
        token_id = demand_token_id if supply_token_id == NATIVE_TOKEN_ID else supply_token_id
        for pool in pools:
            if pool.output.token is None or pool.output.token.token_id != token_id:
                raise InvalidInput(f"expecting all pools to hold token {token_id}")
        pairs = []
        for pool in pools:
            demand_native = demand_token_id == NATIVE_TOKEN_ID
            pairs.append(
                RoutedPair(
                    a=pool.token_reserve if demand_native else pool.native_reserve,
                    b=pool.native_reserve if demand_native else pool.token_reserve,
                    fee_paid_in_a=not demand_native,
                    a_min_reserve=self.get_min_token_reserve(supply_token_id),
                    b_min_reserve=self.get_min_token_reserve(demand_token_id),
                    pool=pool,
                )
            )
        return pairs

    def _result(self, supply_token_id: TokenId, demand_token_id: TokenId, entries: Sequence[PairTrade]) -> Optional[TradeResult]:
        out = [
            TradeEntry(e.pair.pool, supply_token_id, demand_token_id, e.trade.supply, e.trade.demand, e.trade.trade_fee)
            for e in entries
            if e.trade is not None
        ]
        summary = calc_trade_summary(out, self._rate_denominator)
        if summary is None:
            return None
        return TradeResult(tuple(out), summary)

    def _rate_upper_bound(self, pairs: Sequence[PoolPair]) -> int:
        return bigint_max(
            *[calc_pair_rate(p.a + p.b - p.b_min_reserve, p.b_min_reserve, self._rate_denominator).numerator + 1 for p in pairs]
        )

    @staticmethod
    def _fixed_cost(demand_token_id: TokenId, txfee_per_byte: int) -> FixedCost:
        cost = SIZE_OF_POOL_V0_IN_TX * txfee_per_byte
        if demand_token_id == NATIVE_TOKEN_ID:
            return FixedCost(supply=0, demand=cost)
        return FixedCost(supply=cost, demand=0)

    @staticmethod
    def _validate_amount_request(amount: int, pools: Sequence[PoolV0], txfee_per_byte: int) -> None:
        if txfee_per_byte < 0:
            raise InvalidInput("txfee_per_byte should be greater than or equal to zero")
        if amount <= 0:
            raise InvalidInput("amount should be greater than zero")
        if len(pools) == 0:
            raise InsufficientCapitalInPools("nothing available to trade", requires=amount)

    # --- trades by rate -----------------------------------------------------

    def construct_trade_available_amount_below_target_rate(
        self, supply_token_id: TokenId, demand_token_id: TokenId, rate: Fraction, pools: Sequence[PoolV0]
    ) -> Optional[TradeResult]:
        """
        Per pool, take as much as possible while the marginal rate stays at
        or below ``rate``. Entries are ordered by demand, deepest first.

        The average rate of the result is therefore at or under ``rate``, and
        under the average of a best-rate fill priced at ``rate``. Use
        ``construct_trade_available_amount_for_target_avg_rate`` to fill up to
        an average instead.
        """
        target_rate = convert_fraction_denominator(rate, self._rate_denominator)
        entries: List[PairTrade] = []
        for pair in self._prepare(supply_token_id, demand_token_id, pools):
            best_guess = approx_available_amount_in_a_pair_at_target_rate(pair, target_rate, 1, pair.b - pair.b_min_reserve + 1)
            if best_guess is None:
                continue
            trade = calc_trade_with_target_demand_from_a_pair(pair, best_guess)
            if trade is None:
                raise InvalidProgramState("derived trade from best guess is None")
            if trade.demand > 0:
                entries.append(PairTrade(pair, trade))
        sort_with_comparator(entries, lambda x, y: y.trade.demand - x.trade.demand)
        return self._result(supply_token_id, demand_token_id, entries)

    def construct_trade_available_amount_for_target_avg_rate(
        self, supply_token_id: TokenId, demand_token_id: TokenId, rate: Fraction, pools: Sequence[PoolV0]
    ) -> Optional[TradeResult]:
        """Per pool, take as much as possible while that pool's average rate stays at or below ``rate``."""
        target_rate = convert_fraction_denominator(rate, self._rate_denominator)
        entries: List[PairTrade] = []
        for pair in self._prepare(supply_token_id, demand_token_id, pools):
            trade = approx_available_amount_in_a_pair_at_target_avg_rate(pair, target_rate, 1, pair.b - pair.b_min_reserve + 1)
            if trade is not None and trade.demand > 0:
                entries.append(PairTrade(pair, trade))
        sort_with_comparator(entries, lambda x, y: y.trade.demand - x.trade.demand)
        return self._result(supply_token_id, demand_token_id, entries)

    # --- trades by amount ---------------------------------------------------

    def construct_trade_best_rate_for_target_demand(
        self,
        supply_token_id: TokenId,
        demand_token_id: TokenId,
        amount: int,
        pools: Sequence[PoolV0],
        txfee_per_byte: int,
        mode: str = ROUTING_MODE_GREEDY,
    ) -> Optional[TradeResult]:
        """
        Acquire ``amount`` of the demand token at the best rate.

        ``greedy`` never exceeds ``amount`` and returns a partial fill when
        the pools run dry (None when nothing at all can be filled).
        ``legacy`` reproduces the rate-bisection router: it fills at least
        ``amount`` and raises InsufficientCapitalInPools when it cannot.
        """
        pairs = self._prepare(supply_token_id, demand_token_id, pools)
        self._validate_amount_request(amount, pools, txfee_per_byte)
        if mode == ROUTING_MODE_GREEDY:
            return self._greedy_for_target_demand(supply_token_id, demand_token_id, amount, pairs)
        if mode != ROUTING_MODE_LEGACY:
            raise InvalidInput(f"unknown routing mode: {mode!r}")
        return self._legacy_for_target_demand(supply_token_id, demand_token_id, amount, pairs, txfee_per_byte)

    def _greedy_for_target_demand(
        self, supply_token_id: TokenId, demand_token_id: TokenId, amount: int, pairs: Sequence[RoutedPair]
    ) -> Optional[TradeResult]:
        den = self._rate_denominator
        current: List[Optional[AbstractTrade]] = [None] * len(pairs)
        exhausted = [False] * len(pairs)
        order: List[int] = []
        filled = 0
        while filled < amount:
            remaining = amount - filled
            chunk = bigint_max(1, remaining // STEPPER_SIZE)
            best = None
            for i, pair in enumerate(pairs):
                if exhausted[i]:
                    continue
                nxt = self._grow_without_overshoot(pair, current[i], chunk, remaining)
                if nxt is None:
                    # remaining only shrinks, so this pool can not add again
                    exhausted[i] = True
                    continue
                prev_supply = current[i].supply if current[i] is not None else 0
                prev_demand = current[i].demand if current[i] is not None else 0
                marginal = (nxt.supply - prev_supply) * den // (nxt.demand - prev_demand)
                # strict comparison keeps the first listed pool on ties
                if best is None or marginal < best[0]:
                    best = (marginal, i, nxt)
            if best is None:
                break
            _, i, nxt = best
            filled += nxt.demand - (current[i].demand if current[i] is not None else 0)
            current[i] = nxt
            if i not in order:
                order.append(i)
        if filled > amount:
            raise InvalidProgramState("greedy router exceeded the target demand")
        log.debug("greedy routing filled %d of %d across %d pools", filled, amount, len(order))
        return self._result(supply_token_id, demand_token_id, [PairTrade(pairs[i], current[i]) for i in order])

    @staticmethod
    def _grow_without_overshoot(pair: PoolPair, trade: Optional[AbstractTrade], chunk: int, remaining: int) -> Optional[AbstractTrade]:
        """Largest min-demand trade adding at most ``remaining`` and at most ``chunk`` requested units."""
        base = trade.demand if trade is not None else 0
        cap = pair.b - pair.b_min_reserve - base
        lo, hi = 1, min(chunk, remaining, cap)
        found = None
        # min-demand trades are monotonic in the requested demand
        while lo <= hi:
            mid = lo + (hi - lo) // 2
            try:
                candidate = construct_a_trade_with_min_demand_from_a_pair(pair, base + mid)
            except InvalidInput:
                hi = mid - 1
                continue
            if candidate.demand - base > remaining:
                hi = mid - 1
                continue
            found = candidate
            if mid == min(chunk, remaining, cap):
                break
            lo = mid + 1
        return found

    def _legacy_for_target_demand(
        self,
        supply_token_id: TokenId,
        demand_token_id: TokenId,
        amount: int,
        pairs: Sequence[RoutedPair],
        txfee_per_byte: int,
    ) -> TradeResult:
        den = self._rate_denominator
        fixed_cost = self._fixed_cost(demand_token_id, txfee_per_byte)
        rate_lower_bound = 1
        rate_upper_bound = self._rate_upper_bound(pairs)
        candidate: Optional[List[PairTrade]] = None
        if len(pairs) > 1:
            pools_set = [PairBounds(p, 1, p.b - p.b_min_reserve + 1) for p in pairs]
            result = best_rate_to_trade_in_pools_for_target_demand(pools_set, amount, rate_lower_bound, rate_upper_bound, den)
            if result is not None:
                rate_lower_bound = result.rate.numerator
                summary = calc_trade_summary([e.trade for e in result.trade], den)
                if summary is None:
                    raise InvalidProgramState("summary is None")
                if summary.demand < amount:
                    step = bigint_max(1, (amount - summary.demand) // STEPPER_SIZE)
                    candidate = fill_trade_to_target_demand_with_filling_stepper(result.trade, amount, step, den)
                else:
                    candidate = result.trade
        if candidate is not None and len(candidate) > 1 and txfee_per_byte > 0:
            try:
                eliminated = eliminate_net_negative_pools_with_target_demand(
                    fixed_cost, candidate, amount, rate_lower_bound, rate_upper_bound, den
                )
                candidate = eliminated.trade
                log.debug("legacy routing kept %d pools after fixed-cost elimination", len(candidate))
            except NotFoundError:
                pass
        if candidate is None:
            candidate = fill_trade_to_target_demand_with_filling_stepper(
                [PairTrade(p, None) for p in pairs], amount, bigint_max(1, amount // STEPPER_SIZE), den
            )
        result = None if candidate is None else self._result(supply_token_id, demand_token_id, candidate)
        if result is None:
            raise InsufficientCapitalInPools("not enough tokens available in input pools", requires=amount)
        return result

    def construct_trade_best_rate_for_target_supply(
        self,
        supply_token_id: TokenId,
        demand_token_id: TokenId,
        amount: int,
        pools: Sequence[PoolV0],
        txfee_per_byte: int,
    ) -> TradeResult:
        """Spend at most ``amount`` of the supply token at the best rate."""
        pairs = self._prepare(supply_token_id, demand_token_id, pools)
        self._validate_amount_request(amount, pools, txfee_per_byte)
        den = self._rate_denominator
        fixed_cost = self._fixed_cost(demand_token_id, txfee_per_byte)
        rate_lower_bound = 1
        rate_upper_bound = self._rate_upper_bound(pairs)
        candidate: Optional[List[PairTrade]] = None
        if len(pairs) > 1:
            pools_set = [PairBounds(p, 1, required_supply_to_max_out_a_pair(p)) for p in pairs]
            result = best_rate_to_trade_in_pools_for_target_supply(pools_set, amount, rate_lower_bound, rate_upper_bound, den)
            if result is not None:
                summary = calc_trade_summary([e.trade for e in result.trade], den)
                if summary is None:
                    raise InvalidProgramState("summary is None")
                rate_lower_bound = result.rate.numerator
                if summary.supply < amount:
                    step = bigint_max(1, (amount - summary.supply) // STEPPER_SIZE)
                    candidate = fill_trade_to_target_supply_with_filling_stepper(result.trade, amount, step, den)
                    if candidate is not None and len(candidate) == 0:
                        raise InsufficientFunds("can't acquire any token with the given target supply")
                else:
                    candidate = result.trade
        if candidate is not None and len(candidate) > 1 and txfee_per_byte > 0:
            try:
                candidate = eliminate_net_negative_pools_with_target_supply(
                    fixed_cost, candidate, amount, rate_lower_bound, rate_upper_bound, den
                ).trade
            except NotFoundError:
                pass
        if candidate is None:
            candidate = fill_trade_to_target_supply_with_filling_stepper(
                [PairTrade(p, None) for p in pairs], amount, bigint_max(1, amount // STEPPER_SIZE), den
            )
            if candidate is not None and len(candidate) == 0:
                raise InsufficientFunds("can't acquire any token with the given target supply")
        result = None if candidate is None else self._result(supply_token_id, demand_token_id, candidate)
        if result is None:
            raise InsufficientCapitalInPools("not enough tokens available in input pools", requires=amount)
        return result

    def reconstruct_trade_pools_by_reducing_supply(self, entries: Sequence[TradeEntry], reduce_supply: int) -> List[TradeEntry]:
        """
        Shrink a constructed trade's total supply by about ``reduce_supply``:
        drop the smallest entries that fit entirely, then shave the rest
        round-robin.
        """
        entries = list(entries)
        if len(entries) == 0:
            return entries
        sort_with_comparator(entries, lambda x, y: y.supply - x.supply)
        reduce_per_pool = bigint_max(1, reduce_supply // len(entries))
        reduced = 0
        index = len(entries) - 1
        while index >= 0 and reduced < reduce_supply:
            if entries[index].supply <= reduce_supply - reduced:
                reduced += entries.pop(index).supply
                index -= 1
            else:
                break
        index = 0
        while index < len(entries) and reduced < reduce_supply:
            entry = entries[index]
            if entry.supply <= reduce_per_pool:
                entries.pop(index)
                reduced += entry.supply
            else:
                supply_native = entry.supply_token_id == NATIVE_TOKEN_ID
                pair = PoolPair(
                    a=entry.pool.native_reserve if supply_native else entry.pool.token_reserve,
                    b=entry.pool.token_reserve if supply_native else entry.pool.native_reserve,
                    fee_paid_in_a=supply_native,
                    a_min_reserve=self.get_min_token_reserve(entry.supply_token_id),
                    b_min_reserve=self.get_min_token_reserve(entry.demand_token_id),
                )
                new_trade = calc_trade_with_target_supply_from_a_pair(pair, entry.supply - reduce_per_pool)
                reduced += entry.supply - (new_trade.supply if new_trade is not None else 0)
                if new_trade is None:
                    entries.pop(index)
                else:
                    entries[index] = TradeEntry(
                        entry.pool, entry.supply_token_id, entry.demand_token_id,
                        new_trade.supply, new_trade.demand, new_trade.trade_fee,
                    )
                    index += 1
            if index >= len(entries):
                index = 0
        return entries
