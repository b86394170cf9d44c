"""
Fixed-layout binary codecs for covenant state.
"""

from .loan import (
    LoanCommitment,
    decode_loan_commitment,
    decode_loan_commitment_v0,
    decode_loan_commitment_v1,
    encode_loan_commitment_v0,
    encode_loan_commitment_v1,
)
from .nft import output_nft_hash
from .oracle import (
    BPOracleCommitment,
    DelphiCommitment,
    PriceMessage,
    decode_bporacle_commitment,
    decode_delphi_commitment,
    decode_oracle_v0_commitment,
    decode_price_message,
    encode_bporacle_commitment,
    encode_delphi_commitment,
    encode_oracle_v0_commitment,
    encode_price_message,
)
from .pool_script import (
    PoolUnlockPurpose,
    PoolV0Parameters,
    build_pool_v0_redeem_script,
    build_pool_v0_unlocking_bytecode,
    parse_pool_v0_unlocking_bytecode,
)

__all__ = [
    "LoanCommitment",
    "decode_loan_commitment",
    "decode_loan_commitment_v0",
    "decode_loan_commitment_v1",
    "encode_loan_commitment_v0",
    "encode_loan_commitment_v1",
    "output_nft_hash",
    "BPOracleCommitment",
    "DelphiCommitment",
    "PriceMessage",
    "decode_bporacle_commitment",
    "decode_delphi_commitment",
    "decode_oracle_v0_commitment",
    "decode_price_message",
    "encode_bporacle_commitment",
    "encode_delphi_commitment",
    "encode_oracle_v0_commitment",
    "encode_price_message",
    "PoolUnlockPurpose",
    "PoolV0Parameters",
    "build_pool_v0_redeem_script",
    "build_pool_v0_unlocking_bytecode",
    "parse_pool_v0_unlocking_bytecode",
]
