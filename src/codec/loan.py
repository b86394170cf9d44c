"""
Loan NFT commitments.

v0 (34 bytes, borrower-key authorised):
    borrower_pkh (20) | principal u64 | annual_interest_bp u16 | timestamp u32

v1 (40 bytes, loan-agent authorised):
    loan_agent_nfthash (32) | principal/100 u16 | annual_interest_bp u16 | timestamp u32
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.errors import InvalidInput
from ..state.wire import decode_uint_le, encode_uint_le

LOAN_V0_COMMITMENT_SIZE = 34
LOAN_V1_COMMITMENT_SIZE = 40
LOAN_V1_PRINCIPAL_UNIT = 100


@dataclass(frozen=True)
class LoanCommitment:
    principal: int
    annual_interest_bp: int
    timestamp: int
    borrower_pkh: Optional[bytes] = None
    loan_agent_nfthash: Optional[bytes] = None


def encode_loan_commitment_v0(c: LoanCommitment) -> bytes:
    if c.borrower_pkh is None or len(c.borrower_pkh) != 20:
        raise InvalidInput("borrower_pkh must be 20 bytes")
    return (
        bytes(c.borrower_pkh)
        + encode_uint_le(c.principal, 8)
        + encode_uint_le(c.annual_interest_bp, 2)
        + encode_uint_le(c.timestamp, 4)
    )


def decode_loan_commitment_v0(commitment: bytes) -> LoanCommitment:
    data = bytes(commitment)
    if len(data) != LOAN_V0_COMMITMENT_SIZE:
        raise InvalidInput(f"v0 loan commitment must be {LOAN_V0_COMMITMENT_SIZE} bytes, got {len(data)}")
    return LoanCommitment(
        borrower_pkh=data[0:20],
        principal=decode_uint_le(data[20:28]),
        annual_interest_bp=decode_uint_le(data[28:30]),
        timestamp=decode_uint_le(data[30:34]),
    )


def encode_loan_commitment_v1(c: LoanCommitment) -> bytes:
    if c.loan_agent_nfthash is None or len(c.loan_agent_nfthash) != 32:
        raise InvalidInput("loan_agent_nfthash must be 32 bytes")
    if c.principal % LOAN_V1_PRINCIPAL_UNIT != 0:
        raise InvalidInput("principal should be divisible by 100")
    return (
        bytes(c.loan_agent_nfthash)
        + encode_uint_le(c.principal // LOAN_V1_PRINCIPAL_UNIT, 2)
        + encode_uint_le(c.annual_interest_bp, 2)
        + encode_uint_le(c.timestamp, 4)
    )


def decode_loan_commitment_v1(commitment: bytes) -> LoanCommitment:
    data = bytes(commitment)
    if len(data) != LOAN_V1_COMMITMENT_SIZE:
        raise InvalidInput(f"v1 loan commitment must be {LOAN_V1_COMMITMENT_SIZE} bytes, got {len(data)}")
    return LoanCommitment(
        loan_agent_nfthash=data[0:32],
        principal=decode_uint_le(data[32:34]) * LOAN_V1_PRINCIPAL_UNIT,
        annual_interest_bp=decode_uint_le(data[34:36]),
        timestamp=decode_uint_le(data[36:40]),
    )


def decode_loan_commitment(commitment: bytes) -> LoanCommitment:
    """Dispatch on length; both layouts are fixed-width."""
    if len(commitment) == LOAN_V1_COMMITMENT_SIZE:
        return decode_loan_commitment_v1(commitment)
    if len(commitment) == LOAN_V0_COMMITMENT_SIZE:
        return decode_loan_commitment_v0(commitment)
    raise InvalidInput(f"unknown loan commitment length: {len(commitment)}")
