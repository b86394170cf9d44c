"""
Pool state for constant-product pools held in a covenant UTXO.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..codec.pool_script import PoolV0Parameters
from .types import NATIVE_TOKEN_ID, Outpoint, Output, TokenId, UTXO

POOL_VERSION_V0 = "0"


@dataclass(frozen=True)
class PoolV0:
    """
    A pool UTXO: native reserve in ``output.amount``, token reserve in
    ``output.token.amount``. Read-only snapshot; routing never mutates it.
    """

    parameters: PoolV0Parameters
    outpoint: Outpoint
    output: Output
    version: str = POOL_VERSION_V0

    def __post_init__(self) -> None:
        if self.version != POOL_VERSION_V0:
            raise ValueError(f"unsupported pool version: {self.version!r}")
        if self.output.token is None:
            raise ValueError("pool output must hold a fungible token")
        if self.output.token.nft is not None:
            raise ValueError("pool output must not hold an nft")

    @property
    def token_id(self) -> TokenId:
        return self.output.token.token_id

    @property
    def native_reserve(self) -> int:
        return self.output.amount

    @property
    def token_reserve(self) -> int:
        return self.output.token.amount

    def reserve_of(self, token_id: TokenId) -> int:
        if token_id == NATIVE_TOKEN_ID:
            return self.native_reserve
        if token_id == self.token_id:
            return self.token_reserve
        raise ValueError(f"pool does not hold token {token_id}")

    def as_utxo(self) -> UTXO:
        return UTXO(self.outpoint, self.output)
