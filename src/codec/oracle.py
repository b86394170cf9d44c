"""
Price oracle commitments.

Two layouts share one decoded value:

v1 (16 bytes, an optional 4 reserved bytes may follow):
    timestamp u48 | use_fee u16 | data_sequence u32 | price u32

v0 (36 bytes):
    oracle_pkh (20) | timestamp u32 | message_sequence u32 | data_sequence u32 | price u32

The 16-byte signed price message (what the price feed signs and what the
price-updater script consumes) is the v0 layout without the oracle pkh.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.errors import InvalidInput
from ..state.wire import decode_uint_le, encode_uint_le

DELPHI_V1_COMMITMENT_SIZE = 16
DELPHI_V1_RESERVED_SIZE = 4
ORACLE_V0_COMMITMENT_SIZE = 36
PRICE_MESSAGE_SIZE = 16
BP_ORACLE_COMMITMENT_SIZE = 10


@dataclass(frozen=True)
class DelphiCommitment:
    price: int
    timestamp: int
    data_sequence: int
    message_sequence: int = 0
    use_fee: int = 0
    oracle_pkh: Optional[bytes] = None


@dataclass(frozen=True)
class PriceMessage:
    timestamp: int
    message_sequence: int
    data_sequence: int
    price: int


@dataclass(frozen=True)
class BPOracleCommitment:
    timestamp: int
    use_fee: int
    bp_value: int


def _require_length(name: str, data: bytes, *sizes: int) -> bytes:
    data = bytes(data)
    if len(data) not in sizes:
        raise InvalidInput(f"{name} must be {' or '.join(str(s) for s in sizes)} bytes, got {len(data)}")
    return data


def encode_delphi_commitment(c: DelphiCommitment) -> bytes:
    return (
        encode_uint_le(c.timestamp, 6)
        + encode_uint_le(c.use_fee, 2)
        + encode_uint_le(c.data_sequence, 4)
        + encode_uint_le(c.price, 4)
    )


def decode_delphi_commitment(commitment: bytes) -> DelphiCommitment:
    data = _require_length(
        "delphi commitment", commitment, DELPHI_V1_COMMITMENT_SIZE, DELPHI_V1_COMMITMENT_SIZE + DELPHI_V1_RESERVED_SIZE
    )
    return DelphiCommitment(
        timestamp=decode_uint_le(data[0:6]),
        use_fee=decode_uint_le(data[6:8]),
        data_sequence=decode_uint_le(data[8:12]),
        price=decode_uint_le(data[12:16]),
    )


def encode_oracle_v0_commitment(c: DelphiCommitment) -> bytes:
    if c.oracle_pkh is None or len(c.oracle_pkh) != 20:
        raise InvalidInput("oracle_pkh must be 20 bytes")
    return bytes(c.oracle_pkh) + encode_price_message(
        PriceMessage(c.timestamp, c.message_sequence, c.data_sequence, c.price)
    )


def decode_oracle_v0_commitment(commitment: bytes) -> DelphiCommitment:
    data = _require_length("oracle commitment", commitment, ORACLE_V0_COMMITMENT_SIZE)
    message = decode_price_message(data[20:36])
    return DelphiCommitment(
        price=message.price,
        timestamp=message.timestamp,
        data_sequence=message.data_sequence,
        message_sequence=message.message_sequence,
        oracle_pkh=data[0:20],
    )


def encode_price_message(m: PriceMessage) -> bytes:
    return (
        encode_uint_le(m.timestamp, 4)
        + encode_uint_le(m.message_sequence, 4)
        + encode_uint_le(m.data_sequence, 4)
        + encode_uint_le(m.price, 4)
    )


def decode_price_message(message: bytes) -> PriceMessage:
    data = _require_length("price message", message, PRICE_MESSAGE_SIZE)
    return PriceMessage(
        timestamp=decode_uint_le(data[0:4]),
        message_sequence=decode_uint_le(data[4:8]),
        data_sequence=decode_uint_le(data[8:12]),
        price=decode_uint_le(data[12:16]),
    )


def encode_bporacle_commitment(c: BPOracleCommitment) -> bytes:
    return encode_uint_le(c.timestamp, 6) + encode_uint_le(c.use_fee, 2) + encode_uint_le(c.bp_value, 2)


def decode_bporacle_commitment(commitment: bytes) -> BPOracleCommitment:
    data = _require_length("bporacle commitment", commitment, BP_ORACLE_COMMITMENT_SIZE)
    return BPOracleCommitment(
        timestamp=decode_uint_le(data[0:6]),
        use_fee=decode_uint_le(data[6:8]),
        bp_value=decode_uint_le(data[8:10]),
    )
