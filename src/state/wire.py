"""
Wire-level helpers: compact sizes, output serialization, dust threshold,
VM numbers, fixed-width little-endian integers and hashes.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Sequence

from ..core.errors import InvalidInput
from .types import NFTCapability, Outpoint, Output

OP_RETURN = 0x6A
OP_RETURN_SCRIPT = bytes([OP_RETURN])

TOKEN_PREFIX = 0xEF
_HAS_COMMITMENT_LENGTH = 0x40
_HAS_NFT = 0x20
_HAS_AMOUNT = 0x10
_CAPABILITY_BITS = {
    NFTCapability.NONE: 0x00,
    NFTCapability.MUTABLE: 0x01,
    NFTCapability.MINTING: 0x02,
}

DEFAULT_DUST_RELAY_FEE = 1000


def compact_size_length(value: int) -> int:
    if value < 0:
        raise InvalidInput("compact size must be non-negative")
    if value < 0xFD:
        return 1
    if value <= 0xFFFF:
        return 3
    if value <= 0xFFFFFFFF:
        return 5
    return 9


def encode_compact_size(value: int) -> bytes:
    size = compact_size_length(value)
    if size == 1:
        return bytes([value])
    if size == 3:
        return b"\xfd" + value.to_bytes(2, "little")
    if size == 5:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def encode_uint_le(value: int, width: int) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInput("value must be int")
    if value < 0 or value >= 1 << (8 * width):
        raise InvalidInput(f"value {value} does not fit in {width} bytes")
    return value.to_bytes(width, "little")


def decode_uint_le(data: bytes) -> int:
    return int.from_bytes(bytes(data), "little")


def encode_token_prefix(output: Output) -> bytes:
    token = output.token
    if token is None:
        return b""
    bitfield = 0
    body = b""
    if token.nft is not None:
        bitfield |= _HAS_NFT | _CAPABILITY_BITS[token.nft.capability]
        if len(token.nft.commitment) > 0:
            bitfield |= _HAS_COMMITMENT_LENGTH
            body += encode_compact_size(len(token.nft.commitment)) + token.nft.commitment
    if token.amount > 0:
        bitfield |= _HAS_AMOUNT
        body += encode_compact_size(token.amount)
    return bytes([TOKEN_PREFIX]) + bytes.fromhex(token.token_id)[::-1] + bytes([bitfield]) + body


def encode_output(output: Output) -> bytes:
    script = encode_token_prefix(output) + output.locking_bytecode
    return encode_uint_le(output.amount, 8) + encode_compact_size(len(script)) + script


def encode_input(outpoint: Outpoint, unlocking_bytecode: bytes, sequence_number: int = 0) -> bytes:
    # outpoint hashes are kept in display order; the wire uses internal order
    return (
        outpoint.txhash[::-1]
        + encode_uint_le(outpoint.index, 4)
        + encode_compact_size(len(unlocking_bytecode))
        + unlocking_bytecode
        + encode_uint_le(sequence_number, 4)
    )


def encode_transaction(inputs: Sequence[bytes], outputs: Sequence[Output], version: int = 2, locktime: int = 0) -> bytes:
    """Serialize a transaction from already encoded inputs."""
    parts = [encode_uint_le(version, 4), encode_compact_size(len(inputs))]
    parts.extend(inputs)
    parts.append(encode_compact_size(len(outputs)))
    parts.extend(encode_output(o) for o in outputs)
    parts.append(encode_uint_le(locktime, 4))
    return b"".join(parts)


def hash_transaction_ui_order(txbin: bytes) -> bytes:
    return sha256d(txbin)[::-1]


def dust_threshold(output: Output, relay_fee: int = DEFAULT_DUST_RELAY_FEE) -> int:
    return 3 * relay_fee * (len(encode_output(output)) + 148) // 1000


def encode_vm_number(value: int) -> bytes:
    """Minimal script-number encoding (little-endian, sign bit in the top byte)."""
    if value == 0:
        return b""
    negative = value < 0
    magnitude = -value if negative else value
    out = bytearray()
    while magnitude > 0:
        out.append(magnitude & 0xFF)
        magnitude >>= 8
    if out[-1] & 0x80:
        out.append(0x80 if negative else 0x00)
    elif negative:
        out[-1] |= 0x80
    return bytes(out)


def decode_vm_number(data: bytes, max_length: Optional[int] = 8) -> int:
    data = bytes(data)
    if max_length is not None and len(data) > max_length:
        raise InvalidInput(f"vm number exceeds {max_length} bytes")
    if len(data) == 0:
        return 0
    if data[-1] & 0x7F == 0 and (len(data) == 1 or data[-2] & 0x80 == 0):
        raise InvalidInput("vm number is not minimally encoded")
    magnitude = int.from_bytes(data[:-1] + bytes([data[-1] & 0x7F]), "little")
    return -magnitude if data[-1] & 0x80 else magnitude


def sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()
