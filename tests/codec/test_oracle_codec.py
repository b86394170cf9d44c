from __future__ import annotations

import pytest

from src.codec.oracle import (
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
from src.core.errors import InvalidInput


def test_decode_delphi_commitment_vector() -> None:
    c = decode_delphi_commitment(bytes.fromhex("8f3e44680000e8034cdc1100779e0000"))
    assert c.timestamp == 1749302927
    assert c.use_fee == 1000
    assert c.data_sequence == 1170508
    assert c.price == 40567


def test_delphi_commitment_accepts_reserved_tail() -> None:
    raw = bytes.fromhex("8f3e44680000e8034cdc1100779e0000") + b"\x00" * 4
    assert decode_delphi_commitment(raw).price == 40567
    with pytest.raises(InvalidInput):
        decode_delphi_commitment(raw[:15])
    with pytest.raises(InvalidInput):
        decode_delphi_commitment(raw + b"\x00")


def test_encode_delphi_commitment_matches_layout() -> None:
    c = DelphiCommitment(price=40567, timestamp=1749302927, data_sequence=1170508, use_fee=1000)
    assert encode_delphi_commitment(c).hex() == "8f3e44680000e8034cdc1100779e0000"


def test_encode_rejects_fields_that_do_not_fit() -> None:
    with pytest.raises(InvalidInput):
        encode_delphi_commitment(DelphiCommitment(price=1 << 32, timestamp=0, data_sequence=0))
    with pytest.raises(InvalidInput):
        encode_bporacle_commitment(BPOracleCommitment(timestamp=0, use_fee=0, bp_value=1 << 16))


def test_oracle_v0_commitment_carries_the_oracle_pkh() -> None:
    c = DelphiCommitment(price=37600, timestamp=1700000000, data_sequence=9, message_sequence=10, oracle_pkh=b"\x07" * 20)
    raw = encode_oracle_v0_commitment(c)
    assert len(raw) == 36
    assert raw[:20] == b"\x07" * 20
    assert decode_oracle_v0_commitment(raw) == c
    with pytest.raises(InvalidInput):
        encode_oracle_v0_commitment(DelphiCommitment(price=1, timestamp=0, data_sequence=0))


def test_price_message_layout() -> None:
    m = PriceMessage(timestamp=1, message_sequence=2, data_sequence=3, price=4)
    raw = encode_price_message(m)
    assert raw == bytes.fromhex("01000000" "02000000" "03000000" "04000000")
    assert decode_price_message(raw) == m
    with pytest.raises(InvalidInput):
        decode_price_message(raw[:-1])


def test_bporacle_commitment_layout() -> None:
    raw = encode_bporacle_commitment(BPOracleCommitment(timestamp=1749302927, use_fee=500, bp_value=125))
    assert len(raw) == 10
    assert raw[6:8] == (500).to_bytes(2, "little")
    decoded = decode_bporacle_commitment(raw)
    assert (decoded.timestamp, decoded.use_fee, decoded.bp_value) == (1749302927, 500, 125)
