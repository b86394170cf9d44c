"""
Ledger value types, wire helpers and balance aggregation.
"""

from .types import (
    NATIVE_TOKEN_ID,
    NFT,
    UTXO,
    Burn,
    ChainedTxResult,
    ChangePayoutRule,
    FixedPayoutRule,
    FixedTokenAmount,
    Keep,
    NFTCapability,
    Outpoint,
    Output,
    P2PKHCoin,
    SpendableCoinType,
    SpendingParameters,
    TokenComponent,
    TxResult,
)
from .balances import BalanceSheet, calc_available_payouts
from .pools import PoolV0

__all__ = [
    "NATIVE_TOKEN_ID",
    "NFT",
    "UTXO",
    "Burn",
    "ChainedTxResult",
    "ChangePayoutRule",
    "FixedPayoutRule",
    "FixedTokenAmount",
    "Keep",
    "NFTCapability",
    "Outpoint",
    "Output",
    "P2PKHCoin",
    "SpendableCoinType",
    "SpendingParameters",
    "TokenComponent",
    "TxResult",
    "BalanceSheet",
    "calc_available_payouts",
    "PoolV0",
]
