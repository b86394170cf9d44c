"""
Output constraints for covenant transactions.

Covenant scripts check outputs by position, so builders describe each output
slot as a constraint and let the payout resolver fill the variable ones:

- ``Predefined``: an exact output the builder already knows.
- ``FixedAmount``: a payout output that must carry this native and/or token amount.
- ``VariableAmount``: any payout output matching the token filter, or an
  OP_RETURN placeholder when none is left and that is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from ..core.errors import InvalidInput
from ..core.payout import PayoutOutput, build_payouts
from ..state.balances import calc_available_payouts
from ..state.types import UTXO, FixedPayoutRule, FixedTokenAmount, Outpoint, Output, PayoutRule
from ..state.wire import OP_RETURN_SCRIPT
from .compiler import CompiledTx, InputTemplate, ScriptCompiler, TxTemplate
from .config import TxContext


@dataclass(frozen=True)
class Predefined:
    output: Output


@dataclass(frozen=True)
class FixedAmount:
    amount: Optional[int] = None
    token: Optional[FixedTokenAmount] = None

    def __post_init__(self) -> None:
        if self.amount is None and self.token is None:
            raise InvalidInput("a fixed amount constraint needs amount or token")

    def matches(self, output: Output) -> bool:
        if self.amount is not None and output.amount != self.amount:
            return False
        if self.token is not None:
            if output.token is None:
                return False
            return output.token.token_id == self.token.token_id and output.token.amount == self.token.amount
        return True


@dataclass(frozen=True)
class VariableAmount:
    can_contain_token: bool = False
    allows_opreturn: bool = False
    allowed_tokens: Optional[Tuple[str, ...]] = None
    disallowed_tokens: Optional[Tuple[str, ...]] = None

    def accepts_token(self, output: Output) -> bool:
        if output.token is None:
            return False
        token_id = output.token.token_id
        if self.allowed_tokens is not None and token_id not in self.allowed_tokens:
            return False
        if self.disallowed_tokens is not None and token_id in self.disallowed_tokens:
            return False
        return True


OutputConstraint = Union[Predefined, FixedAmount, VariableAmount]


def _take(outputs: List[Output], index: int) -> Output:
    return outputs.pop(index)


def _index_of(outputs: Sequence[Output], predicate) -> int:
    for i, o in enumerate(outputs):
        if predicate(o):
            return i
    return -1


def build_outputs_with_constraints(
    constraints: Sequence[OutputConstraint], insert_outputs: Sequence[Output]
) -> Tuple[List[Output], List[Output]]:
    """Place ``insert_outputs`` into the constrained slots; returns (outputs, remained)."""
    remaining = list(insert_outputs)
    outputs: List[Output] = []
    for constraint in constraints:
        if isinstance(constraint, Predefined):
            outputs.append(constraint.output)
        elif isinstance(constraint, FixedAmount):
            i = _index_of(remaining, constraint.matches)
            if i == -1:
                raise InvalidInput(f"missing an output for constraint {constraint!r}")
            outputs.append(_take(remaining, i))
        elif isinstance(constraint, VariableAmount):
            i = -1
            if constraint.can_contain_token:
                i = _index_of(remaining, constraint.accepts_token)
            if i == -1:
                i = _index_of(remaining, lambda o: o.token is None)
            if i != -1:
                outputs.append(_take(remaining, i))
            elif constraint.allows_opreturn:
                outputs.append(Output(OP_RETURN_SCRIPT, 0))
            else:
                raise InvalidInput(f"missing an output for constraint {constraint!r}")
        else:
            raise InvalidInput(f"unknown output constraint: {constraint!r}")
    return outputs, remaining


def _layout(constraints: Sequence[OutputConstraint], payout_outputs: Sequence[Output], strict: bool) -> List[Output]:
    outputs, remained = build_outputs_with_constraints(constraints, payout_outputs)
    if remained:
        if strict:
            raise InvalidInput(f"could not fit all outputs in the transaction, remained: {remained!r}")
        outputs.extend(remained)
    return outputs


class _ConstrainedPayoutContext:
    """Payout context that prices fees by compiling the full transaction."""

    def __init__(self, ctx: TxContext, compiler: ScriptCompiler, inputs: Sequence[InputTemplate],
                 constraints: Sequence[OutputConstraint], rules: Sequence[PayoutRule], strict: bool):
        self._ctx = ctx
        self._compiler = compiler
        self._inputs = tuple(inputs)
        self._constraints = constraints
        self._strict = strict
        self._has_fixed_rules = any(isinstance(r, FixedPayoutRule) for r in rules)
        self._used: List[FixedAmount] = []

    def get_output_min_amount(self, output: Output) -> int:
        return self._ctx.get_output_min_amount(output)

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        # A FIXED_AMOUNT slot dictates the native amount of its token payout
        # unless the caller already pinned amounts with fixed rules.
        if not self._has_fixed_rules and output.token is not None:
            for c in self._constraints:
                if (
                    isinstance(c, FixedAmount)
                    and c.token is not None
                    and c.amount is not None
                    and not any(c is u for u in self._used)
                    and output.token.token_id == c.token.token_id
                    and output.token.amount == c.token.amount
                ):
                    self._used.append(c)
                    return c.amount
        return self._ctx.get_preferred_token_output_bch_amount(output)

    def compile(self, payout_outputs: Sequence[Output]) -> Tuple[TxTemplate, CompiledTx]:
        outputs = _layout(self._constraints, payout_outputs, self._strict)
        template = TxTemplate(self._inputs, tuple(outputs))
        return template, self._compiler.compile_transaction(template)

    def calc_tx_fee_with_outputs(self, outputs: Sequence[Output]) -> int:
        _, compiled = self.compile(outputs)
        return self._ctx.calc_txfee(len(compiled.txbin))


@dataclass(frozen=True)
class ConstrainedTx:
    template: TxTemplate
    compiled: CompiledTx
    txfee: int
    payout_outputs: Tuple[PayoutOutput, ...]

    @property
    def outputs(self) -> Tuple[Output, ...]:
        return self.template.outputs

    @property
    def source_outputs(self) -> Tuple[Output, ...]:
        return self.template.source_outputs

    def index_of(self, output: Output) -> int:
        for i, o in enumerate(self.template.outputs):
            if o is output:
                return i
        return -1

    def utxo_at(self, index: int) -> UTXO:
        return UTXO(Outpoint(self.compiled.txhash, index), self.template.outputs[index])

    def payout_utxos(self) -> Tuple[UTXO, ...]:
        payout_ids = {id(p.output) for p in self.payout_outputs}
        return tuple(
            self.utxo_at(i) for i, o in enumerate(self.template.outputs) if id(o) in payout_ids
        )


def generate_tx_with_constraints_and_payout_rules(
    ctx: TxContext,
    compiler: ScriptCompiler,
    inputs: Sequence[InputTemplate],
    constraints: Sequence[OutputConstraint],
    rules: Sequence[PayoutRule],
    strict: bool,
) -> ConstrainedTx:
    """
    Resolve payouts for ``inputs`` minus the predefined outputs, lay them out
    in the constrained slots and compile the result.

    Raises:
        ValueError: on negative aggregate balances, token burns or unfillable slots
        InsufficientFunds: when the inputs cannot pay for the outputs and fee
    """
    predefined = [c.output for c in constraints if isinstance(c, Predefined)]
    available = calc_available_payouts([i.utxo.output for i in inputs], predefined)
    negative = [token_id for token_id, amount in available if amount < 0]
    if negative:
        raise InvalidInput(
            f"sum of the inputs and outputs is negative for: {', '.join(negative)}",
            {"token_ids": negative},
        )
    payout_context = _ConstrainedPayoutContext(ctx, compiler, inputs, constraints, rules, strict)
    built = build_payouts(payout_context, available, rules, True)
    if built.token_burns:
        raise InvalidInput("token burns are not allowed in this transaction")
    template, compiled = payout_context.compile(built.outputs)
    return ConstrainedTx(template, compiled, built.txfee, built.payout_outputs)
