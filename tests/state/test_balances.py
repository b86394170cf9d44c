from __future__ import annotations

from src.core.numeric import NATIVE_TOKEN_ID
from src.state.balances import BalanceSheet, calc_available_payouts
from src.state.types import NFT, NFTCapability, Output, TokenComponent
from tests.fakes import P2PKH_LOCK, TOKEN_A, TOKEN_B


def test_native_entry_always_comes_first() -> None:
    sheet = BalanceSheet([(TOKEN_A, 3)])
    assert sheet.token_ids() == [NATIVE_TOKEN_ID, TOKEN_A]
    assert sheet.get(TOKEN_B) == 0


def test_add_accumulates_and_copy_is_independent() -> None:
    sheet = BalanceSheet()
    sheet.add(TOKEN_A, 5)
    sheet.add(TOKEN_A, -2)
    clone = sheet.copy()
    clone.set(TOKEN_A, 100)
    assert sheet.get(TOKEN_A) == 3
    assert clone != sheet
    assert BalanceSheet([(TOKEN_A, 3)]) == sheet


def test_available_payouts_are_inputs_minus_outputs() -> None:
    inputs = [
        Output(P2PKH_LOCK, 10_000, TokenComponent(TOKEN_A, 40)),
        Output(P2PKH_LOCK, 5_000, TokenComponent(TOKEN_B, 0, NFT(NFTCapability.NONE, b"\x01"))),
    ]
    outputs = [Output(P2PKH_LOCK, 12_000, TokenComponent(TOKEN_A, 50))]
    sheet = calc_available_payouts(inputs, outputs)
    assert sheet.items() == [(NATIVE_TOKEN_ID, 3_000), (TOKEN_A, -10)]
