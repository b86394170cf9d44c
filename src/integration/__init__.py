"""
Transaction assembly: payout, trade and lending transactions handed to a
script compiler.
"""

from .compiler import CompiledTx, InputTemplate, ScriptCompiler, TxTemplate
from .config import (
    LendingParams,
    NetworkParams,
    TxContext,
    load_lending_params,
    load_network_params,
)
from .constraints import (
    FixedAmount,
    Predefined,
    VariableAmount,
    build_outputs_with_constraints,
    generate_tx_with_constraints_and_payout_rules,
)
from .lending import (
    LendingContext,
    LendingTxResult,
    LoanTerms,
    P2NFTHWithdrawEntry,
    create_lending_context,
    generate_lending_tx,
    liquidate_loan,
    loan_add_collateral,
    loan_add_collateral_with_borrower_key,
    mint_loan_with_baton_minter,
    mint_loan_with_existing_loan_agent,
    redeem_loan,
    refinance_loan,
    repay_loan,
    update_covenant_sequence,
    update_oracle_with_price_updater,
    withdraw_pay_to_nft_hash_coins,
)
from .mutator import LendingMutator, LoanState, MutationContext, create_mutation_context
from .payout_tx import create_payout_chained_tx, create_payout_tx
from .trade_tx import TradeTxResult, create_trade_tx

__all__ = [
    "CompiledTx",
    "InputTemplate",
    "ScriptCompiler",
    "TxTemplate",
    "LendingParams",
    "NetworkParams",
    "TxContext",
    "load_lending_params",
    "load_network_params",
    "FixedAmount",
    "Predefined",
    "VariableAmount",
    "build_outputs_with_constraints",
    "generate_tx_with_constraints_and_payout_rules",
    "LendingContext",
    "LendingTxResult",
    "LoanTerms",
    "P2NFTHWithdrawEntry",
    "create_lending_context",
    "generate_lending_tx",
    "liquidate_loan",
    "loan_add_collateral",
    "loan_add_collateral_with_borrower_key",
    "mint_loan_with_baton_minter",
    "mint_loan_with_existing_loan_agent",
    "redeem_loan",
    "refinance_loan",
    "repay_loan",
    "update_covenant_sequence",
    "update_oracle_with_price_updater",
    "withdraw_pay_to_nft_hash_coins",
    "LendingMutator",
    "LoanState",
    "MutationContext",
    "create_mutation_context",
    "create_payout_chained_tx",
    "create_payout_tx",
    "TradeTxResult",
    "create_trade_tx",
]
