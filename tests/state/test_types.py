from __future__ import annotations

import pytest

from src.codec.pool_script import PoolV0Parameters
from src.core.numeric import NATIVE_TOKEN_ID
from src.state.pools import PoolV0
from src.state.types import (
    NFT,
    MIN_AMOUNT_SENTINEL,
    FixedPayoutRule,
    NFTCapability,
    Outpoint,
    Output,
    P2PKHCoin,
    SpendableCoinType,
    TokenComponent,
)
from tests.fakes import P2PKH_LOCK, TOKEN_A, TOKEN_B, txhash, utxo


def test_token_id_must_be_64_hex_chars() -> None:
    with pytest.raises(ValueError):
        TokenComponent("ab", 1)
    with pytest.raises(ValueError):
        TokenComponent(TOKEN_A, -1)


def test_nft_commitment_is_capped_at_40_bytes() -> None:
    NFT(NFTCapability.MUTABLE, b"\x00" * 40)
    with pytest.raises(ValueError):
        NFT(NFTCapability.MUTABLE, b"\x00" * 41)
    assert NFT("minting").capability is NFTCapability.MINTING


def test_output_amounts_are_validated() -> None:
    with pytest.raises(ValueError):
        Output(P2PKH_LOCK, -1)
    with pytest.raises(TypeError):
        Output(P2PKH_LOCK, 1.0)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        Output("76a9", 1)  # type: ignore[arg-type]


def test_output_copies_are_new_values() -> None:
    base = Output(P2PKH_LOCK, 1000, TokenComponent(TOKEN_A, 5, NFT(NFTCapability.MUTABLE, b"\x01")))
    moved = base.with_amount(2000).with_token_amount(7).with_commitment(b"\x02")
    assert base.amount == 1000 and base.token.amount == 5 and base.nft.commitment == b"\x01"
    assert (moved.amount, moved.token.amount, moved.nft.commitment) == (2000, 7, b"\x02")
    assert moved.nft.capability == NFTCapability.MUTABLE
    with pytest.raises(ValueError):
        Output(P2PKH_LOCK, 1).with_commitment(b"")
    with pytest.raises(ValueError):
        Output(P2PKH_LOCK, 1).with_token_amount(1)


def test_outpoint_needs_a_32_byte_hash() -> None:
    with pytest.raises(ValueError):
        Outpoint(b"\x00" * 31, 0)
    with pytest.raises(ValueError):
        Outpoint(txhash(1), -1)


def test_p2pkh_coin_exposes_its_utxo() -> None:
    u = utxo(Output(P2PKH_LOCK, 1000), n=3, index=2)
    coin = P2PKHCoin(u, b"\x01" * 32)
    assert coin.type == SpendableCoinType.P2PKH
    assert coin.output is u.output
    assert coin.outpoint == Outpoint(txhash(3), 2)
    with pytest.raises(ValueError):
        P2PKHCoin(u, b"\x01" * 31)


def test_fixed_rule_accepts_the_min_amount_sentinel_only() -> None:
    FixedPayoutRule(P2PKH_LOCK, MIN_AMOUNT_SENTINEL)
    with pytest.raises(ValueError):
        FixedPayoutRule(P2PKH_LOCK, -2)


def test_pool_reserves() -> None:
    pool = PoolV0(PoolV0Parameters(b"\x00" * 20), Outpoint(txhash(1), 0), Output(b"\xaa", 5000, TokenComponent(TOKEN_A, 70)))
    assert pool.token_id == TOKEN_A
    assert pool.reserve_of(NATIVE_TOKEN_ID) == 5000
    assert pool.reserve_of(TOKEN_A) == 70
    with pytest.raises(ValueError):
        pool.reserve_of(TOKEN_B)
    assert pool.as_utxo().output is pool.output


def test_pool_rejects_nft_and_tokenless_outputs() -> None:
    params = PoolV0Parameters(b"\x00" * 20)
    with pytest.raises(ValueError):
        PoolV0(params, Outpoint(txhash(1), 0), Output(b"\xaa", 5000))
    nft_token = TokenComponent(TOKEN_A, 70, NFT(NFTCapability.NONE))
    with pytest.raises(ValueError):
        PoolV0(params, Outpoint(txhash(1), 0), Output(b"\xaa", 5000, nft_token))
