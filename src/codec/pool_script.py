"""
Pool v0 redeem script codec.

The pool redeem script is a fixed template with the withdraw public-key hash
spliced in at a constant offset. Decoding is slice-and-compare against the
template; anything that does not match is "not a pool", never an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Optional, Tuple

from ..core.errors import InvalidInput

POOL_V0_PRE_PUBKEY = bytes.fromhex("44746376a914")
POOL_V0_PUBKEY_OFFSET = len(POOL_V0_PRE_PUBKEY)
POOL_V0_PUBKEY_SIZE = 20
POOL_V0_POST_PUBKEY_OFFSET = POOL_V0_PUBKEY_OFFSET + POOL_V0_PUBKEY_SIZE
POOL_V0_POST_PUBKEY = bytes.fromhex(
    "88ac67c0d1c0ce88c25288c0cdc0c788c0c6c0d095c0c6c0cc9490539502e80396c0cc7c94c0d3957ca268"
)
POOL_V0_SIZE = POOL_V0_POST_PUBKEY_OFFSET + len(POOL_V0_POST_PUBKEY)


@unique
class PoolUnlockPurpose(str, Enum):
    TRADE = "trade"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class PoolV0Parameters:
    withdraw_pubkey_hash: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.withdraw_pubkey_hash, (bytes, bytearray)) or len(self.withdraw_pubkey_hash) != POOL_V0_PUBKEY_SIZE:
            raise InvalidInput("withdraw_pubkey_hash must be 20 bytes")
        object.__setattr__(self, "withdraw_pubkey_hash", bytes(self.withdraw_pubkey_hash))


def build_pool_v0_redeem_script(parameters: PoolV0Parameters) -> bytes:
    # The redeem script itself omits the leading push opcode of the unlock form.
    return POOL_V0_PRE_PUBKEY[1:] + parameters.withdraw_pubkey_hash + POOL_V0_POST_PUBKEY


def build_pool_v0_unlocking_bytecode(parameters: PoolV0Parameters) -> bytes:
    return POOL_V0_PRE_PUBKEY + parameters.withdraw_pubkey_hash + POOL_V0_POST_PUBKEY


def parse_pool_v0_unlocking_bytecode(unlocking_bytecode: bytes) -> Optional[Tuple[PoolV0Parameters, PoolUnlockPurpose]]:
    """
    Extract the pool parameters from an input's unlocking bytecode.

    The template sits at the tail of the unlocking bytecode. With nothing in
    front of it the input is the pool trading; anything prepended (a
    signature and public key) means the owner is withdrawing.
    """
    data = bytes(unlocking_bytecode)
    offset = len(data) - POOL_V0_SIZE
    if offset < 0:
        return None
    if data[offset:offset + POOL_V0_PUBKEY_OFFSET] != POOL_V0_PRE_PUBKEY:
        return None
    if data[offset + POOL_V0_POST_PUBKEY_OFFSET:offset + POOL_V0_SIZE] != POOL_V0_POST_PUBKEY:
        return None
    pkh = data[offset + POOL_V0_PUBKEY_OFFSET:offset + POOL_V0_POST_PUBKEY_OFFSET]
    purpose = PoolUnlockPurpose.TRADE if offset == 0 else PoolUnlockPurpose.WITHDRAW
    return PoolV0Parameters(pkh), purpose
