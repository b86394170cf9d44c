"""
Trade transactions against constant-product pools.

Layout: one input/output pair per pool trade (in entry order), then the
funding coins as inputs, then the payout outputs, then an optional data
output. Pools are unlocked with the bare redeem script; funding coins are
P2PKH and signed by the compiler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..codec.pool_script import POOL_V0_SIZE, build_pool_v0_unlocking_bytecode
from ..core.errors import InsufficientFunds, InvalidInput
from ..core.numeric import Fraction
from ..core.payout import TokenBurn, build_payouts
from ..core.routing import TradeEntry
from ..state.balances import BalanceSheet
from ..state.types import (
    NATIVE_TOKEN_ID,
    Output,
    P2PKHCoin,
    PayoutRule,
    SpendableCoinType,
    TokenComponent,
    TokenId,
)
from ..state.wire import compact_size_length
from .compiler import InputTemplate, ScriptCompiler, TxTemplate
from .config import TxContext

log = logging.getLogger(__name__)

# txhash + index + unlocking size + unlocking bytecode + sequence
POOL_INPUT_SIZE = 32 + 4 + 1 + POOL_V0_SIZE + 4
P2PKH_UNLOCKING_SIZE = 1 + 65 + 1 + 33
P2PKH_INPUT_SIZE = 32 + 4 + 1 + P2PKH_UNLOCKING_SIZE + 4
# token prefix: 0xef + category + bitfield
_TOKEN_PREFIX_SIZE = 34

TxFeePerByte = Union[int, Fraction]


@dataclass(frozen=True)
class TradePayoutInfo:
    output: Output
    index: int
    payout_rule: PayoutRule


@dataclass(frozen=True)
class TradeTxResult:
    txbin: bytes
    txhash: bytes
    txfee: int
    payouts_info: Tuple[TradePayoutInfo, ...]
    token_burns: Tuple[TokenBurn, ...]
    source_outputs: Tuple[Output, ...]
    outputs: Tuple[Output, ...]


def _fee_for_size(txfee_per_byte: TxFeePerByte, size: int) -> int:
    if isinstance(txfee_per_byte, Fraction):
        if txfee_per_byte.numerator < 0:
            raise InvalidInput("txfee_per_byte must be non-negative")
        return txfee_per_byte.mul_floor(size)
    if txfee_per_byte < 0:
        raise InvalidInput("txfee_per_byte must be non-negative")
    return size * txfee_per_byte


def _pool_output(entry: TradeEntry) -> Output:
    pool = entry.pool
    if entry.supply_token_id == NATIVE_TOKEN_ID:
        amount = pool.native_reserve + entry.supply
        token_amount = pool.token_reserve - entry.demand
    else:
        amount = pool.native_reserve - entry.demand
        token_amount = pool.token_reserve + entry.supply
    return Output(pool.output.locking_bytecode, amount, TokenComponent(pool.token_id, token_amount))


def _validate_entry(entry: TradeEntry) -> None:
    pool = entry.pool
    if entry.supply_token_id == NATIVE_TOKEN_ID:
        if entry.demand_token_id == NATIVE_TOKEN_ID:
            raise InvalidInput("exactly one of supply_token_id or demand_token_id must be native")
        if entry.demand_token_id != pool.token_id:
            raise InvalidInput(f"pool token does not match demand_token_id: {entry.demand_token_id}")
    elif entry.supply_token_id != pool.token_id:
        raise InvalidInput(f"pool token does not match supply_token_id: {entry.supply_token_id}")
    if entry.supply <= 0 or entry.demand <= 0:
        raise InvalidInput("trade supply and demand must be positive")
    k = pool.native_reserve * pool.token_reserve
    fee = entry.trade_fee
    # The trade must not leave more value in the pool than the k check needs,
    # i.e. one unit less on either side already breaks the invariant.
    if entry.supply_token_id == NATIVE_TOKEN_ID:
        a1 = pool.native_reserve + entry.supply
        b1 = pool.token_reserve - entry.demand
        if (a1 - fee - 1) * b1 >= k or (a1 - fee) * (b1 - 1) >= k:
            raise InvalidInput("trade supply/demand leaves surplus value in the pool")
    else:
        a1 = pool.token_reserve + entry.supply
        b1 = pool.native_reserve - entry.demand
        if (a1 - 1) * (b1 - fee) >= k or a1 * (b1 - fee - 1) >= k:
            raise InvalidInput("trade supply/demand leaves surplus value in the pool")
    if a1 < 1 or b1 < 1:
        raise InvalidInput("trade supply or demand is out of bounds")


def validate_trade_pool_list_and_calc_aggregate_payouts(
    entries: Sequence[TradeEntry], input_coins: Sequence[P2PKHCoin]
) -> BalanceSheet:
    """
    Validate every pool trade and return what the trader is owed per token:
    everything taken from the pools plus whatever funding was not offered.

    Raises:
        ValueError: on a malformed trade or an nft in the funding coins
        InsufficientFunds: when the coins cannot cover the offered amounts
    """
    offer: Dict[TokenId, int] = {NATIVE_TOKEN_ID: 0}
    take: Dict[TokenId, int] = {NATIVE_TOKEN_ID: 0}
    for entry in entries:
        _validate_entry(entry)
        token_id = entry.pool.token_id
        offer.setdefault(token_id, 0)
        take.setdefault(token_id, 0)
        offer[entry.supply_token_id] += entry.supply
        take[entry.demand_token_id] += entry.demand

    for coin in input_coins:
        if coin.output.nft is not None:
            raise InvalidInput(
                f"a funding coin holds an nft, outpoint: {coin.outpoint.txhash.hex()}:{coin.outpoint.index}"
            )

    def funded(token_id: TokenId) -> int:
        if token_id == NATIVE_TOKEN_ID:
            return sum(c.output.amount for c in input_coins)
        return sum(c.output.token.amount for c in input_coins if c.output.token is not None and c.output.token.token_id == token_id)

    sheet = BalanceSheet()
    for token_id in offer:
        total = funded(token_id)
        if total < offer[token_id] - take[token_id]:
            raise InsufficientFunds(
                f"not enough funding provided, token: {token_id}, required funding: {offer[token_id]}",
                {"token_id": token_id},
                required_amount=offer[token_id] - take[token_id] - total,
            )
        sheet.set(token_id, take[token_id] + total - offer[token_id])
    # tokens that only appear in the funding coins flow through as change
    for coin in input_coins:
        token = coin.output.token
        if token is not None and token.token_id not in offer:
            offer[token.token_id] = 0
            take[token.token_id] = 0
            sheet.set(token.token_id, funded(token.token_id))
    return sheet


def _output_size(output: Output) -> int:
    size = 8 + compact_size_length(len(output.locking_bytecode)) + len(output.locking_bytecode)
    if output.token is not None:
        size += _TOKEN_PREFIX_SIZE + compact_size_length(output.token.amount)
    return size


def calc_trade_tx_size(
    entries: Sequence[TradeEntry],
    input_coins: Sequence[P2PKHCoin],
    outputs: Sequence[Output],
    data_locking_bytecode: Optional[bytes],
) -> int:
    """Serialized size of the trade transaction, without compiling it."""
    for coin in input_coins:
        if coin.type != SpendableCoinType.P2PKH:
            raise InvalidInput(f"unsupported coin type: {coin.type}")
    pools_io = 0
    for entry in entries:
        pool_out = _pool_output(entry)
        # pool locking bytecode is p2sh32 (35 bytes)
        pools_io += POOL_INPUT_SIZE + 8 + 1 + 35 + _TOKEN_PREFIX_SIZE + compact_size_length(pool_out.token.amount)
    n_inputs = len(input_coins) + len(entries)
    n_outputs = len(outputs) + len(entries) + (1 if data_locking_bytecode is not None else 0)
    outputs_size = sum(_output_size(o) for o in outputs)
    if data_locking_bytecode is not None:
        outputs_size += 8 + compact_size_length(len(data_locking_bytecode)) + len(data_locking_bytecode)
    return (
        4
        + compact_size_length(n_inputs)
        + compact_size_length(n_outputs)
        + pools_io
        + len(input_coins) * P2PKH_INPUT_SIZE
        + outputs_size
        + 4
    )


class _TradePayoutContext:
    def __init__(self, ctx: TxContext, entries, input_coins, data_locking_bytecode, txfee_per_byte: TxFeePerByte):
        self._ctx = ctx
        self._entries = entries
        self._coins = input_coins
        self._data = data_locking_bytecode
        self._txfee_per_byte = txfee_per_byte

    def get_output_min_amount(self, output: Output) -> int:
        return self._ctx.get_output_min_amount(output)

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        return self._ctx.get_preferred_token_output_bch_amount(output)

    def calc_tx_fee_with_outputs(self, outputs: Sequence[Output]) -> int:
        size = calc_trade_tx_size(self._entries, self._coins, outputs, self._data)
        return _fee_for_size(self._txfee_per_byte, size)


def create_trade_tx(
    ctx: TxContext,
    compiler: ScriptCompiler,
    entries: Sequence[TradeEntry],
    input_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
    data_locking_bytecode: Optional[bytes],
    txfee_per_byte: TxFeePerByte,
) -> TradeTxResult:
    """
    Build and compile a trade transaction for routed ``entries``.

    The fee is priced from ``calc_trade_tx_size`` so the payout resolver does
    not compile on every attempt.
    """
    _fee_for_size(txfee_per_byte, 0)  # rejects a negative rate up front
    aggregate = validate_trade_pool_list_and_calc_aggregate_payouts(entries, input_coins)
    payout_context = _TradePayoutContext(ctx, entries, input_coins, data_locking_bytecode, txfee_per_byte)
    built = build_payouts(payout_context, aggregate, rules, True)

    inputs: List[InputTemplate] = []
    outputs: List[Output] = []
    for entry in entries:
        inputs.append(
            InputTemplate(utxo=entry.pool.as_utxo(), unlocking_bytecode=build_pool_v0_unlocking_bytecode(entry.pool.parameters))
        )
        outputs.append(_pool_output(entry))
    for coin in input_coins:
        inputs.append(InputTemplate.from_coin(coin))
    payouts_info: List[TradePayoutInfo] = []
    for payout in built.payout_outputs:
        payouts_info.append(TradePayoutInfo(payout.output, len(outputs), payout.payout_rule))
        outputs.append(payout.output)
    if data_locking_bytecode is not None:
        outputs.append(Output(data_locking_bytecode, 0))

    template = TxTemplate(tuple(inputs), tuple(outputs))
    compiled = compiler.compile_transaction(template)
    log.debug(
        "trade tx %s: %d pools, %d coins, fee %d, %d bytes",
        compiled.txhash.hex(), len(entries), len(input_coins), built.txfee, len(compiled.txbin),
    )
    return TradeTxResult(
        txbin=compiled.txbin,
        txhash=compiled.txhash,
        txfee=built.txfee,
        payouts_info=tuple(payouts_info),
        token_burns=built.token_burns,
        source_outputs=template.source_outputs,
        outputs=template.outputs,
    )
