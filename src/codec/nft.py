"""Loan-agent linkage: the hash that ties a loan to the NFT allowed to mutate it."""

from __future__ import annotations

from ..core.errors import InvalidInput
from ..core.numeric import convert_token_id_to_bytes
from ..state.types import NFTCapability, Output
from ..state.wire import sha256d

_CAPABILITY_BYTE = {
    NFTCapability.NONE: b"",
    NFTCapability.MUTABLE: b"\x01",
    NFTCapability.MINTING: b"\x02",
}


def output_nft_hash(output: Output) -> bytes:
    if output.token is None or output.token.nft is None:
        raise InvalidInput("output does not hold an nft")
    nft = output.token.nft
    return sha256d(
        convert_token_id_to_bytes(output.token.token_id)[::-1]
        + _CAPABILITY_BYTE[nft.capability]
        + nft.commitment
    )
