"""
Workflow state for chains of lending transactions.

A ``MutationContext`` is an immutable snapshot of the protocol singletons
(lending covenant, oracle, basis-point oracle, baton minter, price updater)
plus the transactions built so far and the lifecycle state of every loan the
workflow touched. ``LendingMutator`` steps take a context and return
``(result, new_context)``; the input context is never changed, so two
workflows can only share a context by passing the same value around.

Loan lifecycle::

    NONE -> MINTED -> {MINTED, REFINANCED, COLLATERAL_ADJUSTED}
         -> {REDEEMED, REPAID, LIQUIDATED} -> CLOSED

Closing a loan drops it from ``loans``, after which it reads as ``NONE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum, unique
from typing import Callable, Dict, FrozenSet, Optional, Sequence, Tuple, Union

from ..core.errors import InvalidInput, InvalidProgramState
from ..state.types import UTXO, Burn, Outpoint, P2PKHCoin, PayoutRule, TxResult
from . import lending
from .lending import LendingContext, LendingTxResult, LoanTerms, NFTOutputDecision, P2NFTHWithdrawEntry

log = logging.getLogger(__name__)


@unique
class LoanState(str, Enum):
    NONE = "none"
    MINTED = "minted"
    REFINANCED = "refinanced"
    COLLATERAL_ADJUSTED = "collateral_adjusted"
    REDEEMED = "redeemed"
    REPAID = "repaid"
    LIQUIDATED = "liquidated"
    CLOSED = "closed"


_OPEN = frozenset(
    {
        LoanState.MINTED,
        LoanState.REFINANCED,
        LoanState.COLLATERAL_ADJUSTED,
        LoanState.REDEEMED,
        LoanState.REPAID,
        LoanState.LIQUIDATED,
    }
)

TRANSITIONS: Dict[LoanState, FrozenSet[LoanState]] = {
    LoanState.NONE: frozenset({LoanState.MINTED}),
    LoanState.MINTED: _OPEN,
    LoanState.REFINANCED: _OPEN - {LoanState.MINTED},
    LoanState.COLLATERAL_ADJUSTED: _OPEN - {LoanState.MINTED},
    LoanState.REDEEMED: frozenset({LoanState.CLOSED}),
    LoanState.REPAID: frozenset({LoanState.CLOSED}),
    LoanState.LIQUIDATED: frozenset({LoanState.CLOSED}),
    LoanState.CLOSED: frozenset(),
}


def transition(current: LoanState, target: LoanState) -> LoanState:
    if target not in TRANSITIONS[current]:
        raise InvalidInput(
            f"illegal loan transition: {current.value} -> {target.value}",
            {"from": current.value, "to": target.value},
        )
    return target


LoanEntry = Tuple[Outpoint, LoanState]


@dataclass(frozen=True)
class MutationContext:
    lending: LendingContext
    moria_utxo: UTXO
    delphi_utxo: UTXO
    bporacle_utxo: Optional[UTXO] = None
    batonminter_utxo: Optional[UTXO] = None
    gp_updater_utxo: Optional[UTXO] = None
    history: Tuple[TxResult, ...] = ()
    loans: Tuple[LoanEntry, ...] = ()

    def loan_state(self, outpoint: Outpoint) -> LoanState:
        for key, state in self.loans:
            if key == outpoint:
                return state
        return LoanState.NONE

    def track_loan(self, loan_utxo: UTXO, state: LoanState = LoanState.MINTED) -> "MutationContext":
        """Adopt a loan that was created outside this workflow."""
        if self.loan_state(loan_utxo.outpoint) != LoanState.NONE:
            raise InvalidInput("loan is already tracked")
        return replace(self, loans=self.loans + ((loan_utxo.outpoint, state),))


def create_mutation_context(
    lending_context: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    bporacle_utxo: Optional[UTXO] = None,
    batonminter_utxo: Optional[UTXO] = None,
    gp_updater_utxo: Optional[UTXO] = None,
) -> MutationContext:
    return MutationContext(
        lending=lending_context,
        moria_utxo=moria_utxo,
        delphi_utxo=delphi_utxo,
        bporacle_utxo=bporacle_utxo,
        batonminter_utxo=batonminter_utxo,
        gp_updater_utxo=gp_updater_utxo,
    )


def _move_loan(
    context: MutationContext, old: Optional[Outpoint], new: Optional[Outpoint], target: LoanState
) -> Tuple[LoanEntry, ...]:
    current = context.loan_state(old) if old is not None else LoanState.NONE
    transition(current, target)
    key = new if new is not None else old
    if key is None:
        raise InvalidProgramState("loan transition without an outpoint")
    loans = tuple(entry for entry in context.loans if entry[0] != old)
    log.info("loan %s:%d %s -> %s", key.txhash.hex(), key.index, current.value, target.value)
    if target == LoanState.CLOSED:
        return loans
    return loans + ((key, target),)


def _after_covenant_tx(context: MutationContext, result: LendingTxResult, **changes) -> MutationContext:
    if result.moria_utxo is None or result.delphi_utxo is None:
        raise InvalidProgramState("lending tx did not re-create the covenant and the oracle")
    return replace(
        context,
        moria_utxo=result.moria_utxo,
        delphi_utxo=result.delphi_utxo,
        bporacle_utxo=result.bporacle_utxo or context.bporacle_utxo,
        batonminter_utxo=result.batonminter_utxo or context.batonminter_utxo,
        history=context.history + (result,),
        **changes,
    )


class LendingMutator:
    """
    Runs lending operations against a ``MutationContext``.

    Every step returns the transaction result together with the successor
    context; the singletons it spent are replaced by the outputs that
    re-create them and the result is appended to ``history``.
    """

    def mint_loan_with_baton_minter(
        self,
        context: MutationContext,
        terms: LoanTerms,
        funding_coins: Sequence[P2PKHCoin],
        loan_agent_locking_bytecode: bytes,
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        if context.batonminter_utxo is None:
            raise InvalidInput("the context has no baton minter utxo")
        result = lending.mint_loan_with_baton_minter(
            context.lending,
            context.moria_utxo,
            context.delphi_utxo,
            context.batonminter_utxo,
            terms,
            funding_coins,
            loan_agent_locking_bytecode,
            rules,
        )
        loans = _move_loan(context, None, result.loan_utxo.outpoint, LoanState.MINTED)
        return result, _after_covenant_tx(context, result, loans=loans)

    def mint_loan_with_existing_loan_agent(
        self,
        context: MutationContext,
        terms: LoanTerms,
        funding_coins: Sequence[P2PKHCoin],
        loan_agent_nfthash: bytes,
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        result = lending.mint_loan_with_existing_loan_agent(
            context.lending, context.moria_utxo, context.delphi_utxo, terms, funding_coins, loan_agent_nfthash, rules
        )
        loans = _move_loan(context, None, result.loan_utxo.outpoint, LoanState.MINTED)
        return result, _after_covenant_tx(context, result, loans=loans)

    def refinance_loan(
        self,
        context: MutationContext,
        loan_utxo: UTXO,
        terms: LoanTerms,
        loan_agent_coin: P2PKHCoin,
        funding_coins: Sequence[P2PKHCoin],
        output_loan_agent_locking_bytecode: bytes,
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        transition(context.loan_state(loan_utxo.outpoint), LoanState.REFINANCED)
        result = lending.refinance_loan(
            context.lending,
            context.moria_utxo,
            context.delphi_utxo,
            loan_utxo,
            terms,
            loan_agent_coin,
            funding_coins,
            output_loan_agent_locking_bytecode,
            rules,
        )
        loans = _move_loan(context, loan_utxo.outpoint, result.loan_utxo.outpoint, LoanState.REFINANCED)
        return result, _after_covenant_tx(context, result, loans=loans)

    def repay_loan(
        self,
        context: MutationContext,
        loan_utxo: UTXO,
        loan_agent_coin: P2PKHCoin,
        funding_coins: Sequence[P2PKHCoin],
        output_loan_agent: Union[bytes, Burn],
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        transition(context.loan_state(loan_utxo.outpoint), LoanState.REPAID)
        result = lending.repay_loan(
            context.lending,
            context.moria_utxo,
            context.delphi_utxo,
            loan_utxo,
            loan_agent_coin,
            funding_coins,
            output_loan_agent,
            rules,
        )
        loans = _move_loan(context, loan_utxo.outpoint, None, LoanState.REPAID)
        return result, _after_covenant_tx(context, result, loans=loans)

    def liquidate_loan(
        self,
        context: MutationContext,
        loan_utxo: UTXO,
        funding_coins: Sequence[P2PKHCoin],
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        transition(context.loan_state(loan_utxo.outpoint), LoanState.LIQUIDATED)
        result = lending.liquidate_loan(
            context.lending, context.moria_utxo, context.delphi_utxo, loan_utxo, funding_coins, rules
        )
        loans = _move_loan(context, loan_utxo.outpoint, None, LoanState.LIQUIDATED)
        return result, _after_covenant_tx(context, result, loans=loans)

    def redeem_loan(
        self,
        context: MutationContext,
        loan_utxo: UTXO,
        funding_coins: Sequence[P2PKHCoin],
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        if context.bporacle_utxo is None:
            raise InvalidInput("the context has no bporacle utxo")
        transition(context.loan_state(loan_utxo.outpoint), LoanState.REDEEMED)
        result = lending.redeem_loan(
            context.lending,
            context.moria_utxo,
            context.delphi_utxo,
            context.bporacle_utxo,
            loan_utxo,
            funding_coins,
            rules,
        )
        loans = _move_loan(context, loan_utxo.outpoint, None, LoanState.REDEEMED)
        return result, _after_covenant_tx(context, result, loans=loans)

    def update_covenant_sequence(
        self, context: MutationContext, funding_coin: P2PKHCoin, change_locking_bytecode: bytes
    ) -> Tuple[LendingTxResult, MutationContext]:
        result = lending.update_covenant_sequence(
            context.lending, context.moria_utxo, context.delphi_utxo, funding_coin, change_locking_bytecode
        )
        return result, _after_covenant_tx(context, result)

    def update_oracle_with_price_updater(
        self,
        context: MutationContext,
        message: bytes,
        signature: bytes,
        funding_coins: Sequence[P2PKHCoin],
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        if context.gp_updater_utxo is None:
            raise InvalidInput("the context has no price updater utxo")
        result = lending.update_oracle_with_price_updater(
            context.lending, context.delphi_utxo, context.gp_updater_utxo, message, signature, funding_coins, rules
        )
        return result, replace(
            context,
            delphi_utxo=result.delphi_utxo,
            gp_updater_utxo=result.delphi_gp_updater_utxo,
            history=context.history + (result,),
        )

    def loan_add_collateral(
        self,
        context: MutationContext,
        loan_utxo: UTXO,
        loan_agent_coin: P2PKHCoin,
        funding_coins: Sequence[P2PKHCoin],
        additional_collateral_amount: int,
        output_loan_agent_locking_bytecode: bytes,
        rules: Sequence[PayoutRule],
    ) -> Tuple[LendingTxResult, MutationContext]:
        transition(context.loan_state(loan_utxo.outpoint), LoanState.COLLATERAL_ADJUSTED)
        result = lending.loan_add_collateral(
            context.lending,
            loan_utxo,
            loan_agent_coin,
            funding_coins,
            additional_collateral_amount,
            output_loan_agent_locking_bytecode,
            rules,
        )
        loans = _move_loan(context, loan_utxo.outpoint, result.loan_utxo.outpoint, LoanState.COLLATERAL_ADJUSTED)
        return result, replace(context, history=context.history + (result,), loans=loans)

    def withdraw_pay_to_nft_hash_coins(
        self,
        context: MutationContext,
        nft_coin: P2PKHCoin,
        entries: Sequence[P2NFTHWithdrawEntry],
        funding_coins: Sequence[P2PKHCoin],
        rules: Sequence[PayoutRule],
        create_nft_output: Callable[[UTXO], NFTOutputDecision],
    ) -> Tuple[LendingTxResult, MutationContext]:
        result = lending.withdraw_pay_to_nft_hash_coins(
            context.lending, nft_coin, entries, funding_coins, rules, create_nft_output
        )
        return result, replace(context, history=context.history + (result,))

    def close_loan(self, context: MutationContext, loan_outpoint: Outpoint) -> MutationContext:
        """Settle a repaid, redeemed or liquidated loan and stop tracking it."""
        return replace(context, loans=_move_loan(context, loan_outpoint, None, LoanState.CLOSED))
