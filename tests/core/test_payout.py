from __future__ import annotations

from typing import Optional, Sequence

import pytest

from src.core.errors import InsufficientFunds, InvalidInput
from src.core.numeric import NATIVE_TOKEN_ID
from src.core.payout import TokenBurn, build_payouts
from src.state.balances import BalanceSheet
from src.state.types import (
    MIN_AMOUNT_SENTINEL,
    Burn,
    ChangePayoutRule,
    FixedPayoutRule,
    FixedTokenAmount,
    Keep,
    Output,
)
from src.state.wire import dust_threshold
from tests.fakes import OTHER_P2PKH_LOCK, P2PKH_LOCK, TOKEN_A, TOKEN_B


class FlatFeeContext:
    def __init__(self, fee: int = 500, preferred: Optional[int] = None) -> None:
        self.fee = fee
        self.preferred = preferred
        self.fee_calls = 0

    def get_output_min_amount(self, output: Output) -> int:
        return dust_threshold(output)

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        return self.preferred

    def calc_tx_fee_with_outputs(self, outputs: Sequence[Output]) -> int:
        self.fee_calls += 1
        return self.fee


def test_fixed_token_rule_then_change() -> None:
    available = BalanceSheet([(NATIVE_TOKEN_ID, 1_000_000), (TOKEN_A, 50)])
    rules = [
        FixedPayoutRule(OTHER_P2PKH_LOCK, MIN_AMOUNT_SENTINEL, FixedTokenAmount(TOKEN_A, 50)),
        ChangePayoutRule(locking_bytecode=P2PKH_LOCK),
    ]
    result = build_payouts(FlatFeeContext(), available, rules)
    token_out, change = result.outputs
    assert token_out.locking_bytecode == OTHER_P2PKH_LOCK
    assert token_out.token.amount == 50
    assert token_out.amount == dust_threshold(token_out)
    assert change.token is None
    assert change.amount == 1_000_000 - token_out.amount - 500
    assert result.txfee == 500
    assert result.token_burns == ()
    # the input sheet is left untouched
    assert available.get(TOKEN_A) == 50


def test_token_change_gets_its_own_output() -> None:
    available = [(NATIVE_TOKEN_ID, 100_000), (TOKEN_A, 7), (TOKEN_B, 9)]
    result = build_payouts(FlatFeeContext(preferred=800), available, [ChangePayoutRule(locking_bytecode=P2PKH_LOCK)])
    a, b, native = result.outputs
    assert (a.token.token_id, a.token.amount, a.amount) == (TOKEN_A, 7, 800)
    assert (b.token.token_id, b.token.amount, b.amount) == (TOKEN_B, 9, 800)
    assert native.amount == 100_000 - 1600 - 500


def test_mixing_puts_one_token_on_the_native_change() -> None:
    rule = ChangePayoutRule(locking_bytecode=P2PKH_LOCK, allow_mixing_native_and_token=True)
    result = build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000), (TOKEN_A, 7)], [rule])
    (change,) = result.outputs
    assert change.token.token_id == TOKEN_A
    assert change.amount == 100_000 - 500


def test_dust_change_can_be_folded_into_the_fee() -> None:
    rule = ChangePayoutRule(locking_bytecode=P2PKH_LOCK, add_change_to_txfee_when_bch_change_is_dust=True)
    result = build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 600)], [rule])
    assert result.outputs == []
    assert result.txfee == 600


def test_dust_change_is_rejected_by_default() -> None:
    with pytest.raises(InvalidInput) as exc:
        build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 600)], [ChangePayoutRule(locking_bytecode=P2PKH_LOCK)])
    assert isinstance(exc.value, ValueError)
    assert exc.value.payload["required_amount"] == 546 - 100


def test_dust_change_mixes_with_a_token_when_allowed() -> None:
    rule = ChangePayoutRule(
        locking_bytecode=P2PKH_LOCK,
        allow_mixing_native_and_token_when_bch_change_is_dust=True,
    )
    # token change takes 800 first, leaving 200 of native change after the fee
    ctx = FlatFeeContext(fee=100, preferred=800)
    result = build_payouts(ctx, [(NATIVE_TOKEN_ID, 1100), (TOKEN_A, 3)], [rule])
    (change,) = result.outputs
    assert change.token.token_id == TOKEN_A
    assert change.amount == 1000


def test_folding_dust_into_the_fee_wins_over_mixing() -> None:
    rule = ChangePayoutRule(
        locking_bytecode=P2PKH_LOCK,
        add_change_to_txfee_when_bch_change_is_dust=True,
        allow_mixing_native_and_token_when_bch_change_is_dust=True,
    )
    ctx = FlatFeeContext(fee=100, preferred=800)
    result = build_payouts(ctx, [(NATIVE_TOKEN_ID, 1100), (TOKEN_A, 3)], [rule])
    (token_out,) = result.outputs
    assert (token_out.token.token_id, token_out.token.amount, token_out.amount) == (TOKEN_A, 3, 800)
    assert result.txfee == 300


def test_fee_shortfall_reports_required_amount() -> None:
    with pytest.raises(InsufficientFunds) as exc:
        build_payouts(FlatFeeContext(fee=700), [(NATIVE_TOKEN_ID, 600)], [ChangePayoutRule(locking_bytecode=P2PKH_LOCK)])
    assert exc.value.required_amount == 100


def test_should_burn_drops_token_change() -> None:
    def burn_a(token_id: str, amount: int):
        return Burn() if token_id == TOKEN_A else Keep(amount)

    rule = ChangePayoutRule(locking_bytecode=P2PKH_LOCK, should_burn=burn_a)
    result = build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000), (TOKEN_A, 5)], [rule])
    assert result.token_burns == (TokenBurn(TOKEN_A, 5),)
    assert all(o.token is None for o in result.outputs)


def test_generated_change_locking_bytecode() -> None:
    rule = ChangePayoutRule(generate_change_locking_bytecode=lambda output: OTHER_P2PKH_LOCK)
    result = build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000)], [rule])
    assert result.outputs[0].locking_bytecode == OTHER_P2PKH_LOCK


def test_rules_need_exactly_one_change_rule() -> None:
    fixed = FixedPayoutRule(P2PKH_LOCK, 1000)
    with pytest.raises(InvalidInput):
        build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000)], [fixed])
    change = ChangePayoutRule(locking_bytecode=P2PKH_LOCK)
    with pytest.raises(InvalidInput):
        build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000)], [change, change])


def test_fixed_rule_checks_dust_and_funds() -> None:
    change = ChangePayoutRule(locking_bytecode=P2PKH_LOCK)
    with pytest.raises(InvalidInput):
        build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000)], [FixedPayoutRule(P2PKH_LOCK, 10), change])
    short = FixedPayoutRule(P2PKH_LOCK, 1000, FixedTokenAmount(TOKEN_A, 51))
    with pytest.raises(InsufficientFunds) as exc:
        build_payouts(FlatFeeContext(), [(NATIVE_TOKEN_ID, 100_000), (TOKEN_A, 50)], [short, change])
    assert exc.value.required_amount == 1
