"""
Payout resolver.

Turns what is left of a transaction's balance sheet into concrete outputs,
following caller-declared payout rules:

1. FIXED rules are paid first, in the order given. An amount of
   ``MIN_AMOUNT_SENTINEL`` pays the preferred token output amount (token
   outputs) or the dust floor.
2. The single CHANGE rule collects everything else. Token change gets its own
   output carrying the preferred (or dust floor) native amount, unless the
   rule allows one token to be mixed into the native change output.
3. The transaction fee is taken from the native change. Native change that
   would end up below the dust floor is folded into the fee, mixed with a
   token (rebuild), or rejected with ``ValueError``, in that order.

Burning is a policy decision: ``should_burn(token_id, amount)`` returns
``Burn()`` to drop a token's change, ``Keep(...)`` otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from ..state.balances import BalanceSheet
from ..state.types import (
    MIN_AMOUNT_SENTINEL,
    NATIVE_TOKEN_ID,
    Burn,
    ChangePayoutRule,
    FixedPayoutRule,
    Output,
    PayoutRule,
    TokenComponent,
    TokenId,
)
from .errors import InsufficientFunds, InvalidInput, InvalidProgramState


class PayoutContext(Protocol):
    def get_output_min_amount(self, output: Output) -> int:
        ...

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        ...

    def calc_tx_fee_with_outputs(self, outputs: Sequence[Output]) -> int:
        ...


@dataclass(frozen=True)
class PayoutOutput:
    output: Output
    payout_rule: PayoutRule


@dataclass(frozen=True)
class TokenBurn:
    token_id: TokenId
    amount: int


@dataclass(frozen=True)
class PayoutBuildResult:
    txfee: int
    payout_outputs: Tuple[PayoutOutput, ...]
    token_burns: Tuple[TokenBurn, ...]

    @property
    def outputs(self) -> List[Output]:
        return [p.output for p in self.payout_outputs]


class _Entry:
    __slots__ = ("token_id", "amount")

    def __init__(self, token_id: TokenId, amount: int):
        self.token_id = token_id
        self.amount = amount


AvailablePayouts = Union[BalanceSheet, Iterable[Tuple[TokenId, int]]]


def _copy_entries(available_payouts: AvailablePayouts) -> List[_Entry]:
    entries = [_Entry(token_id, amount) for token_id, amount in available_payouts]
    if not any(e.token_id == NATIVE_TOKEN_ID for e in entries):
        raise InvalidProgramState("native token is not in available_payouts")
    return entries


def _find(entries: List[_Entry], token_id: TokenId) -> Optional[_Entry]:
    for e in entries:
        if e.token_id == token_id:
            return e
    return None


def _is_burn(rule: ChangePayoutRule, token_id: TokenId, amount: int) -> bool:
    if rule.should_burn is None:
        return False
    return isinstance(rule.should_burn(token_id, amount), Burn)


def _change_locking_bytecode(rule: ChangePayoutRule, output: Output) -> bytes:
    if rule.generate_change_locking_bytecode is not None:
        bytecode = rule.generate_change_locking_bytecode(output)
        if not isinstance(bytecode, (bytes, bytearray)) or len(bytecode) == 0:
            raise InvalidInput("generate_change_locking_bytecode must return non-empty bytes")
        return bytes(bytecode)
    if not rule.locking_bytecode:
        raise InvalidInput("change payout rule needs locking_bytecode or generate_change_locking_bytecode")
    return rule.locking_bytecode


def _change_output(rule: ChangePayoutRule, amount: int, token: Optional[TokenComponent]) -> Output:
    draft = Output(b"", amount, token)
    return Output(_change_locking_bytecode(rule, draft), amount, token)


def _pay_fixed_rule(context: PayoutContext, entries: List[_Entry], rule: FixedPayoutRule) -> PayoutOutput:
    token = None
    if rule.token is not None:
        if rule.token.amount <= 0:
            raise InvalidInput(
                f"token amount of a fixed payout rule must be positive, token_id: {rule.token.token_id}, amount: {rule.token.amount}"
            )
        token = TokenComponent(rule.token.token_id, rule.token.amount)
    native = _find(entries, NATIVE_TOKEN_ID)
    output = Output(rule.locking_bytecode, max(rule.amount, 0), token)
    min_amount = context.get_output_min_amount(output)
    amount = rule.amount
    if amount == MIN_AMOUNT_SENTINEL:
        preferred = context.get_preferred_token_output_bch_amount(output) if token is not None else None
        amount = preferred if preferred is not None else min_amount
    if amount < min_amount:
        raise InvalidInput(f"amount of a fixed payout rule is less than the dust floor, amount: {amount}, min: {min_amount}")
    output = output.with_amount(amount)
    if token is not None:
        token_payout = _find(entries, token.token_id)
        if token_payout is None:
            raise InvalidInput(f"cannot satisfy a fixed token payout rule, token_id: {token.token_id}")
        if token.amount > token_payout.amount:
            raise InsufficientFunds(
                f"not enough tokens for a fixed payout rule, token_id: {token.token_id}, amount: {token.amount}",
                {"token_id": token.token_id},
                required_amount=token.amount - token_payout.amount,
            )
        token_payout.amount -= token.amount
    native.amount -= amount
    return PayoutOutput(output, rule)


def _choose_mixed_token(rule: ChangePayoutRule, others: List[_Entry]) -> Optional[_Entry]:
    for entry in others:
        if entry.amount > 0 and not _is_burn(rule, entry.token_id, entry.amount):
            return entry
    return None


def build_payouts(
    context: PayoutContext,
    available_payouts: AvailablePayouts,
    rules: Sequence[PayoutRule],
    verify_all_payouts_are_paid: bool = True,
) -> PayoutBuildResult:
    """
    Resolve ``rules`` against ``available_payouts``.

    ``available_payouts`` is never mutated. The returned ``txfee`` is what the
    native change paid (or absorbed) for the outputs produced here.

    Raises:
        ValueError: on invalid rules, rules that cannot be satisfied or
            native change left below the dust floor with no policy to place it
        InsufficientFunds: when the native balance cannot cover dust floors or the fee
    """
    original = [(token_id, amount) for token_id, amount in available_payouts]
    return _build(context, original, rules, verify_all_payouts_are_paid, mixing_when_dust=False)


def _build(
    context: PayoutContext,
    original: List[Tuple[TokenId, int]],
    rules: Sequence[PayoutRule],
    verify_all_payouts_are_paid: bool,
    mixing_when_dust: bool,
) -> PayoutBuildResult:
    entries = _copy_entries(original)
    change_rules = [r for r in rules if isinstance(r, ChangePayoutRule)]
    if len(change_rules) != 1:
        raise InvalidInput("exactly one change payout rule is required")
    change_rule = change_rules[0]

    payout_outputs: List[PayoutOutput] = []
    token_burns: List[TokenBurn] = []
    for rule in rules:
        if rule is change_rule:
            continue
        if not isinstance(rule, FixedPayoutRule):
            raise InvalidInput(f"invalid payout rule type: {type(rule).__name__}")
        payout_outputs.append(_pay_fixed_rule(context, entries, rule))

    native = _find(entries, NATIVE_TOKEN_ID)
    others = [e for e in entries if e.token_id != NATIVE_TOKEN_ID]
    mixed: Optional[_Entry] = None
    if change_rule.allow_mixing_native_and_token or (
        change_rule.allow_mixing_native_and_token_when_bch_change_is_dust and mixing_when_dust
    ):
        mixed = _choose_mixed_token(change_rule, others)

    for payout in others:
        if payout is mixed or payout.amount <= 0:
            continue
        if _is_burn(change_rule, payout.token_id, payout.amount):
            token_burns.append(TokenBurn(payout.token_id, payout.amount))
            continue
        token = TokenComponent(payout.token_id, payout.amount)
        output = _change_output(change_rule, 0, token)
        bch_amount = context.get_preferred_token_output_bch_amount(output)
        if bch_amount is None or native.amount < bch_amount:
            bch_amount = context.get_output_min_amount(output)
        if native.amount < bch_amount:
            raise InsufficientFunds(
                f"not enough native amount left for a token change output, required amount: {bch_amount - native.amount}",
                required_amount=bch_amount - native.amount,
            )
        payout_outputs.append(PayoutOutput(output.with_amount(bch_amount), change_rule))
        native.amount -= bch_amount
        payout.amount = 0

    if mixed is not None:
        token = TokenComponent(mixed.token_id, mixed.amount)
        change = _change_output(change_rule, max(native.amount, 0), token)
        txfee = context.calc_tx_fee_with_outputs([p.output for p in payout_outputs] + [change])
        if native.amount < txfee:
            raise InsufficientFunds(
                f"not enough change left to pay the tx fee, fee: {txfee}, required amount: {txfee - native.amount}",
                required_amount=txfee - native.amount,
            )
        change = change.with_amount(native.amount - txfee)
        min_amount = context.get_output_min_amount(change)
        if change.amount < min_amount:
            raise InsufficientFunds(
                f"not enough native amount left for the mixed change output, min: {min_amount}, required amount: {min_amount - change.amount}",
                required_amount=min_amount - change.amount,
            )
        payout_outputs.append(PayoutOutput(change, change_rule))
        native.amount -= change.amount
        mixed.amount = 0
    else:
        change = _change_output(change_rule, max(native.amount, 0), None)
        txfee = context.calc_tx_fee_with_outputs([p.output for p in payout_outputs] + [change])
        if native.amount < txfee:
            raise InsufficientFunds(
                f"not enough change left to pay the tx fee, fee: {txfee}, required amount: {txfee - native.amount}",
                required_amount=txfee - native.amount,
            )
        if native.amount > txfee:
            change = change.with_amount(native.amount - txfee)
            min_amount = context.get_output_min_amount(change)
            if change.amount >= min_amount:
                payout_outputs.append(PayoutOutput(change, change_rule))
                native.amount -= change.amount
            elif change_rule.add_change_to_txfee_when_bch_change_is_dust:
                txfee = native.amount
            elif (
                not change_rule.allow_mixing_native_and_token
                and change_rule.allow_mixing_native_and_token_when_bch_change_is_dust
                and not mixing_when_dust
            ):
                return _build(context, original, rules, verify_all_payouts_are_paid, mixing_when_dust=True)
            else:
                raise InvalidInput(
                    f"native change is below the dust floor, min: {min_amount}, txfee: {txfee}, required amount: {min_amount - change.amount}",
                    {"min": min_amount, "txfee": txfee, "required_amount": min_amount - change.amount},
                )

    if verify_all_payouts_are_paid:
        _verify_all_paid(entries, token_burns, txfee)
    return PayoutBuildResult(txfee, tuple(payout_outputs), tuple(token_burns))


def _verify_all_paid(entries: List[_Entry], token_burns: List[TokenBurn], txfee: int) -> None:
    for entry in entries:
        if entry.token_id == NATIVE_TOKEN_ID and entry.amount <= txfee:
            continue
        if entry.amount == 0:
            continue
        burned = sum(b.amount for b in token_burns if b.token_id == entry.token_id)
        if burned >= entry.amount:
            continue
        raise InvalidInput(
            f"payout rules do not collect the aggregate payouts, unpaid token_id: {entry.token_id}, amount: {entry.amount}",
            {"token_id": entry.token_id, "amount": entry.amount},
        )
