"""
Per-token balance sheet: what is left to pay out after a transaction's
fixed inputs and outputs are accounted for.

Implements BalanceSheet[TokenId] -> Amount (may go negative while a
transaction is being assembled).
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Tuple

from .types import NATIVE_TOKEN_ID, Output, TokenId

Amount = int


class BalanceSheet:
    """
    Ordered balance sheet keyed by token id.

    The native entry always exists and always comes first; other tokens keep
    the order in which they were first seen. That order is what the payout
    resolver iterates, so it must be deterministic.
    """

    def __init__(self, entries: Iterable[Tuple[TokenId, Amount]] = ()):
        self._balances: Dict[TokenId, Amount] = {NATIVE_TOKEN_ID: 0}
        for token_id, amount in entries:
            self.add(token_id, amount)

    def get(self, token_id: TokenId) -> Amount:
        """Get balance for a token. Returns 0 if not seen."""
        return self._balances.get(token_id, 0)

    def add(self, token_id: TokenId, amount: Amount) -> None:
        self._balances[token_id] = self._balances.get(token_id, 0) + amount

    def set(self, token_id: TokenId, amount: Amount) -> None:
        self._balances[token_id] = amount

    def items(self) -> List[Tuple[TokenId, Amount]]:
        return list(self._balances.items())

    def token_ids(self) -> List[TokenId]:
        return list(self._balances.keys())

    def copy(self) -> "BalanceSheet":
        return BalanceSheet(self.items())

    def __iter__(self) -> Iterator[Tuple[TokenId, Amount]]:
        return iter(self.items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BalanceSheet):
            return NotImplemented
        return self._balances == other._balances

    def __repr__(self) -> str:
        return f"BalanceSheet({self.items()!r})"


def add_output(sheet: BalanceSheet, output: Output, sign: int) -> None:
    sheet.add(NATIVE_TOKEN_ID, sign * output.amount)
    if output.token is not None and output.token.amount > 0:
        sheet.add(output.token.token_id, sign * output.token.amount)


def calc_available_payouts(source_outputs: Iterable[Output], outputs: Iterable[Output]) -> BalanceSheet:
    """Inputs minus outputs, per token. NFTs are not tracked here."""
    sheet = BalanceSheet()
    for output in outputs:
        add_output(sheet, output, -1)
    for output in source_outputs:
        add_output(sheet, output, 1)
    return sheet
