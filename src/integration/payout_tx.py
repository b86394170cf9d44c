"""
Payout transactions: spend a set of P2PKH coins into the outputs described by
payout rules, splitting into a chain of transactions when one would exceed
the network size limit.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from ..core.errors import InvalidInput, InvalidProgramState
from ..core.payout import build_payouts
from ..state.balances import calc_available_payouts
from ..state.types import (
    UTXO,
    ChainedTxResult,
    ChangePayoutRule,
    Outpoint,
    Output,
    P2PKHCoin,
    PayoutRule,
    SpendableCoinType,
    TxResult,
)
from .compiler import InputTemplate, ScriptCompiler, TxTemplate
from .config import NetworkParams, TxContext

log = logging.getLogger(__name__)


class _BatchPayoutContext:
    def __init__(self, ctx: TxContext, compiler: ScriptCompiler, inputs: Sequence[InputTemplate]):
        self._ctx = ctx
        self._compiler = compiler
        self._inputs = tuple(inputs)

    def get_output_min_amount(self, output: Output) -> int:
        return self._ctx.get_output_min_amount(output)

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        return self._ctx.get_preferred_token_output_bch_amount(output)

    def calc_tx_fee_with_outputs(self, outputs: Sequence[Output]) -> int:
        compiled = self._compiler.compile_transaction(TxTemplate(self._inputs, tuple(outputs)))
        return self._ctx.calc_txfee(len(compiled.txbin))


def _find_change_rule(rules: Sequence[PayoutRule]) -> Optional[ChangePayoutRule]:
    for rule in rules:
        if isinstance(rule, ChangePayoutRule):
            return rule
    return None


def _payout_batch(
    ctx: TxContext,
    compiler: ScriptCompiler,
    network: NetworkParams,
    inputs: Sequence[InputTemplate],
    change_rule: ChangePayoutRule,
    rules: Sequence[PayoutRule],
) -> Tuple[TxResult, bool, List[InputTemplate]]:
    """
    Build the largest transaction (from the front of ``inputs``) that fits.

    Batches grow by ``payout_batch_size`` inputs; when a batch overflows the
    size limit the step is halved. Intermediate batches pay everything to the
    change rule; only the final batch applies all ``rules``.
    """
    unused: List[InputTemplate] = list(inputs)
    taken: List[InputTemplate] = []
    best: Optional[TxResult] = None
    best_done = False
    step = network.payout_batch_size
    offset = 0
    while step > 0:
        candidate = taken + list(inputs[offset:offset + step])
        added = min(len(inputs) - offset, step)
        done = len(inputs) - offset <= step
        available = calc_available_payouts([i.utxo.output for i in candidate], [])
        if any(amount < 0 for _, amount in available):
            raise InvalidProgramState("sum of the inputs is negative")
        built = build_payouts(
            _BatchPayoutContext(ctx, compiler, candidate), available, rules if done else [change_rule], True
        )
        if built.token_burns:
            raise InvalidInput("token burns are not allowed")
        template = TxTemplate(tuple(candidate), tuple(built.outputs))
        compiled = compiler.compile_transaction(template)
        if len(compiled.txbin) <= network.max_tx_size:
            taken = candidate
            unused = list(inputs[offset + step:])
            best = TxResult(
                txbin=compiled.txbin,
                txhash=compiled.txhash,
                txfee=built.txfee,
                payouts=tuple(
                    UTXO(Outpoint(compiled.txhash, i), o) for i, o in enumerate(built.outputs)
                ),
                source_outputs=template.source_outputs,
                outputs=template.outputs,
            )
            best_done = done
            if done:
                break
            offset += added
        else:
            step //= 2
            log.debug("payout tx of %d bytes exceeds %d, batch step halved to %d", len(compiled.txbin), network.max_tx_size, step)
    if best is None:
        raise InvalidProgramState("no batch of inputs fits in a single transaction")
    return best, best_done, unused


def create_payout_tx(
    ctx: TxContext,
    compiler: ScriptCompiler,
    input_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
    network: Optional[NetworkParams] = None,
) -> TxResult:
    """Pay out ``input_coins`` in one transaction; ValueError if it does not fit."""
    if len(input_coins) == 0:
        raise InvalidInput("input_coins must not be empty")
    change_rule = _find_change_rule(rules)
    if change_rule is None:
        raise InvalidInput("a change payout rule is required")
    network = network or NetworkParams()
    inputs = [InputTemplate.from_coin(c) for c in input_coins]
    result, done, _ = _payout_batch(ctx, compiler, network, inputs, change_rule, rules)
    if not done:
        raise InvalidInput("too many inputs, the payout does not fit in a single transaction")
    return result


def create_payout_chained_tx(
    ctx: TxContext,
    compiler: ScriptCompiler,
    input_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
    network: Optional[NetworkParams] = None,
) -> ChainedTxResult:
    """
    Pay out ``input_coins`` through as many transactions as needed.

    With a single (change) rule every batch pays out directly. With more rules
    each intermediate batch consolidates into the change rule, whose
    ``spending_parameters`` must carry the P2PKH key to spend it again.
    """
    if len(input_coins) == 0:
        raise InvalidInput("input_coins must not be empty")
    network = network or NetworkParams()
    reuse_change = len(rules) != 1
    change_rule = _find_change_rule(rules)
    if change_rule is None:
        raise InvalidInput("a change payout rule is required")
    if reuse_change:
        params = change_rule.spending_parameters
        if params is None:
            raise InvalidInput("the change payout rule needs spending_parameters to chain payouts")
        if params.type != SpendableCoinType.P2PKH:
            raise InvalidInput("the change payout rule spending_parameters must be P2PKH")

    chain: List[TxResult] = []
    payouts: List[UTXO] = []
    txfee = 0
    inputs = [InputTemplate.from_coin(c) for c in input_coins]
    while True:
        result, done, unused = _payout_batch(ctx, compiler, network, inputs, change_rule, rules)
        txfee += result.txfee
        chain.append(result)
        log.debug("payout chain tx %d: %s, %d inputs left", len(chain), result.txhash.hex(), len(unused))
        if done:
            payouts.extend(result.payouts)
            break
        if reuse_change:
            if len(unused) + len(result.payouts) >= len(inputs):
                raise InvalidProgramState("payout chain is not making progress")
            key = change_rule.spending_parameters.key
            inputs = unused + [InputTemplate.from_coin(P2PKHCoin(utxo, key)) for utxo in result.payouts]
        else:
            if len(unused) >= len(inputs):
                raise InvalidProgramState("payout chain is not making progress")
            inputs = unused
            payouts.extend(result.payouts)
    return ChainedTxResult(tuple(chain), txfee, tuple(payouts))
