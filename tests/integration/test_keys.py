from __future__ import annotations

import hashlib

import pytest

from src.core.errors import InvalidInput
from src.integration.keys import (
    compressed_public_key,
    p2pkh_locking_bytecode,
    pubkey_hash_from_private_key,
    validate_p2pkh_coin,
)
from src.state.types import P2PKHCoin
from tests.fakes import P2PKH_LOCK, native_coin, utxo

KEY_ONE = b"\x00" * 31 + b"\x01"


def _require_ripemd160() -> None:
    try:
        hashlib.new("ripemd160")
    except ValueError:
        pytest.skip("ripemd160 not available in this hashlib build")


def test_compressed_public_key_of_generator() -> None:
    assert compressed_public_key(KEY_ONE).hex() == "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


@pytest.mark.parametrize("key", [b"\x00" * 32, b"\xff" * 32, b"\x01" * 31])
def test_out_of_range_keys_are_rejected(key: bytes) -> None:
    with pytest.raises(InvalidInput):
        compressed_public_key(key)


def test_p2pkh_locking_bytecode() -> None:
    assert p2pkh_locking_bytecode(b"\x11" * 20) == P2PKH_LOCK
    with pytest.raises(InvalidInput):
        p2pkh_locking_bytecode(b"\x11" * 19)


def test_coin_must_pay_to_its_key() -> None:
    _require_ripemd160()
    pkh = pubkey_hash_from_private_key(KEY_ONE)
    assert pkh.hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"
    coin = P2PKHCoin(utxo(native_coin(1000, lock=p2pkh_locking_bytecode(pkh)).output), KEY_ONE)
    validate_p2pkh_coin(coin)
    with pytest.raises(InvalidInput):
        validate_p2pkh_coin(native_coin(1000))
