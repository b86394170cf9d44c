"""Deterministic stand-ins for the script compiler and common chain fixtures."""

from __future__ import annotations

from typing import Any, Dict, Optional

from src.codec.loan import LoanCommitment, encode_loan_commitment_v1
from src.codec.oracle import DelphiCommitment, encode_delphi_commitment
from src.core.errors import NotFoundError
from src.integration.compiler import CompiledTx, TxTemplate
from src.state.types import NFT, UTXO, NFTCapability, Outpoint, Output, P2PKHCoin, TokenComponent
from src.state.wire import encode_input, encode_transaction, hash_transaction_ui_order, sha256d

KNOWN_NAMESPACES = (
    "moria",
    "delphi",
    "delphi_gp_updater",
    "bporacle",
    "batonminter",
    "p2nfth",
    "cauldron_poolv0",
)

# push(65-byte signature) + push(33-byte public key)
P2PKH_UNLOCK_PLACEHOLDER = b"\x41" + b"\x00" * 65 + b"\x21" + b"\x00" * 33

TOKEN_A = "aa" * 32
TOKEN_B = "bb" * 32
AGENT_TOKEN = "cc" * 32
GP_UPDATER_TOKEN = "dd" * 32

P2PKH_LOCK = bytes.fromhex("76a914") + b"\x11" * 20 + bytes.fromhex("88ac")
OTHER_P2PKH_LOCK = bytes.fromhex("76a914") + b"\x22" * 20 + bytes.fromhex("88ac")
COIN_KEY = b"\x01" * 32

DELPHI_TS = 1749302927
DELPHI_SEQUENCE = 1170508
SECONDS_PER_YEAR = 31_536_000


class FakeCompiler:
    """Compiles without signing: P2PKH inputs get a fixed-size placeholder."""

    def __init__(self) -> None:
        self.compiled = 0

    @staticmethod
    def _check(script_id: str) -> None:
        if script_id.split(":", 1)[0] not in KNOWN_NAMESPACES:
            raise NotFoundError(f"unknown script id: {script_id}")

    def generate_bytecode(self, script_id: str, data: Optional[Dict[str, Any]] = None) -> bytes:
        self._check(script_id)
        payload = script_id.encode()
        for key in sorted(data or {}):
            payload += key.encode() + bytes(data[key])
        # p2sh32-shaped: OP_HASH256 <32> OP_EQUAL
        return b"\xaa\x20" + sha256d(payload) + b"\x87"

    def _unlocking_bytecode(self, script_id: str, data: Dict[str, Any]) -> bytes:
        self._check(script_id)
        return b"\x40" + sha256d(script_id.encode()) * 2

    def compile_transaction(self, template: TxTemplate) -> CompiledTx:
        inputs = []
        for i in template.inputs:
            if i.coin is not None:
                unlocking = P2PKH_UNLOCK_PLACEHOLDER
            elif i.unlocking_bytecode is not None:
                unlocking = i.unlocking_bytecode
            else:
                unlocking = self._unlocking_bytecode(i.script_id, dict(i.data))
            inputs.append(encode_input(i.utxo.outpoint, unlocking, i.sequence_number))
        txbin = encode_transaction(inputs, template.outputs, template.version, template.locktime)
        self.compiled += 1
        return CompiledTx(txbin, hash_transaction_ui_order(txbin))


def txhash(n: int) -> bytes:
    return bytes([n]) * 32


def utxo(output: Output, n: int = 1, index: int = 0) -> UTXO:
    return UTXO(Outpoint(txhash(n), index), output)


def native_coin(amount: int, n: int = 50, lock: bytes = P2PKH_LOCK) -> P2PKHCoin:
    return P2PKHCoin(utxo(Output(lock, amount), n), COIN_KEY)


def token_coin(token_id: str, token_amount: int, amount: int = 1000, n: int = 60) -> P2PKHCoin:
    return P2PKHCoin(utxo(Output(P2PKH_LOCK, amount, TokenComponent(token_id, token_amount)), n), COIN_KEY)


def nft_output(token_id: str, commitment: bytes, capability: NFTCapability = NFTCapability.NONE,
               amount: int = 1000, lock: bytes = P2PKH_LOCK, token_amount: int = 0) -> Output:
    return Output(lock, amount, TokenComponent(token_id, token_amount, NFT(capability, commitment)))


def delphi_commitment(price: int, timestamp: int = DELPHI_TS, sequence: int = DELPHI_SEQUENCE, use_fee: int = 1000) -> bytes:
    return encode_delphi_commitment(
        DelphiCommitment(price=price, timestamp=timestamp, data_sequence=sequence, use_fee=use_fee)
    )


def loan_commitment(principal: int, annual_interest_bp: int, timestamp: int, agent_nfthash: bytes) -> bytes:
    return encode_loan_commitment_v1(
        LoanCommitment(
            principal=principal,
            annual_interest_bp=annual_interest_bp,
            timestamp=timestamp,
            loan_agent_nfthash=agent_nfthash,
        )
    )
