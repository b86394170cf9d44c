"""
P2PKH key helpers (secp256k1 via py_ecc).
"""

from __future__ import annotations

from py_ecc.secp256k1 import secp256k1

from ..core.errors import InvalidInput
from ..state.types import P2PKHCoin
from ..state.wire import hash160

_P2PKH_PREFIX = bytes.fromhex("76a914")
_P2PKH_SUFFIX = bytes.fromhex("88ac")


def compressed_public_key(private_key: bytes) -> bytes:
    if len(private_key) != 32:
        raise InvalidInput("private key must be 32 bytes")
    secret = int.from_bytes(private_key, "big")
    if not (0 < secret < secp256k1.N):
        raise InvalidInput("private key is out of range")
    x, y = secp256k1.privtopub(private_key)
    return bytes([0x02 | (y & 1)]) + x.to_bytes(32, "big")


def pubkey_hash_from_private_key(private_key: bytes) -> bytes:
    return hash160(compressed_public_key(private_key))


def p2pkh_locking_bytecode(pubkey_hash: bytes) -> bytes:
    if len(pubkey_hash) != 20:
        raise InvalidInput("pubkey hash must be 20 bytes")
    return _P2PKH_PREFIX + bytes(pubkey_hash) + _P2PKH_SUFFIX


def validate_p2pkh_coin(coin: P2PKHCoin) -> None:
    """Reject a coin whose key does not unlock its locking bytecode."""
    expected = p2pkh_locking_bytecode(pubkey_hash_from_private_key(coin.key))
    if coin.output.locking_bytecode != expected:
        raise InvalidInput(
            "coin locking bytecode does not pay to the key's pubkey hash",
            {"txhash": coin.outpoint.txhash.hex(), "index": coin.outpoint.index},
        )
