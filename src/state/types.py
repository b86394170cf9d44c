"""
Value types shared by the codecs, the router, the payout resolver and the
transaction builders.

All types are frozen; operations return new values instead of mutating.
Amounts are Python ints (arbitrary precision) and are validated to be
non-negative where the ledger requires it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Callable, Generic, Optional, Tuple, TypeVar, Union

from ..core.numeric import NATIVE_TOKEN_ID

T = TypeVar("T")

MIN_AMOUNT_SENTINEL = -1
MAX_OUTPUT_AMOUNT = (1 << 63) - 1

TokenId = str


def _check_int(name: str, value: object, *, minimum: Optional[int] = 0, maximum: Optional[int] = None) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be int")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}: {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}: {value}")


def _check_bytes(name: str, value: object, *, length: Optional[int] = None) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"{name} must be bytes")
    if length is not None and len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")


@unique
class NFTCapability(str, Enum):
    NONE = "none"
    MUTABLE = "mutable"
    MINTING = "minting"


@dataclass(frozen=True)
class NFT:
    capability: NFTCapability
    commitment: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "capability", NFTCapability(self.capability))
        _check_bytes("commitment", self.commitment)
        if len(self.commitment) > 40:
            raise ValueError("nft commitment must be at most 40 bytes")
        object.__setattr__(self, "commitment", bytes(self.commitment))


@dataclass(frozen=True)
class TokenComponent:
    token_id: TokenId
    amount: int = 0
    nft: Optional[NFT] = None

    def __post_init__(self) -> None:
        if not isinstance(self.token_id, str) or len(self.token_id) != 64:
            raise ValueError(f"token_id must be a 64 char hex string: {self.token_id!r}")
        _check_int("token amount", self.amount, maximum=MAX_OUTPUT_AMOUNT)


@dataclass(frozen=True)
class Output:
    locking_bytecode: bytes
    amount: int
    token: Optional[TokenComponent] = None

    def __post_init__(self) -> None:
        _check_bytes("locking_bytecode", self.locking_bytecode)
        object.__setattr__(self, "locking_bytecode", bytes(self.locking_bytecode))
        _check_int("amount", self.amount, maximum=MAX_OUTPUT_AMOUNT)

    @property
    def nft(self) -> Optional[NFT]:
        return self.token.nft if self.token is not None else None

    def with_amount(self, amount: int) -> "Output":
        return Output(self.locking_bytecode, amount, self.token)

    def with_token_amount(self, amount: int) -> "Output":
        if self.token is None:
            raise ValueError("output has no token")
        return Output(self.locking_bytecode, self.amount, TokenComponent(self.token.token_id, amount, self.token.nft))

    def with_commitment(self, commitment: bytes) -> "Output":
        if self.token is None or self.token.nft is None:
            raise ValueError("output has no nft")
        nft = NFT(self.token.nft.capability, commitment)
        return Output(self.locking_bytecode, self.amount, TokenComponent(self.token.token_id, self.token.amount, nft))


@dataclass(frozen=True)
class Outpoint:
    txhash: bytes
    index: int

    def __post_init__(self) -> None:
        _check_bytes("txhash", self.txhash, length=32)
        object.__setattr__(self, "txhash", bytes(self.txhash))
        _check_int("index", self.index, maximum=0xFFFFFFFF)


@dataclass(frozen=True)
class UTXO:
    outpoint: Outpoint
    output: Output
    block_height: Optional[int] = None


@unique
class SpendableCoinType(str, Enum):
    P2PKH = "P2PKH"


@dataclass(frozen=True)
class P2PKHCoin:
    """A UTXO spendable with a single secp256k1 key."""

    utxo: UTXO
    key: bytes
    type: SpendableCoinType = field(default=SpendableCoinType.P2PKH, init=False)

    def __post_init__(self) -> None:
        _check_bytes("key", self.key, length=32)
        object.__setattr__(self, "key", bytes(self.key))

    @property
    def output(self) -> Output:
        return self.utxo.output

    @property
    def outpoint(self) -> Outpoint:
        return self.utxo.outpoint


# Closed union; new spending methods are added as new variants.
SpendableCoin = P2PKHCoin


@dataclass(frozen=True)
class SpendingParameters:
    type: SpendableCoinType
    key: bytes


@dataclass(frozen=True)
class Keep(Generic[T]):
    value: T


@dataclass(frozen=True)
class Burn:
    pass


Decision = Union[Keep, Burn]


@dataclass(frozen=True)
class FixedTokenAmount:
    token_id: TokenId
    amount: int

    def __post_init__(self) -> None:
        _check_int("token amount", self.amount)


@dataclass(frozen=True)
class FixedPayoutRule:
    """Pay exactly ``amount`` (or the dust floor for ``MIN_AMOUNT_SENTINEL``)."""

    locking_bytecode: bytes
    amount: int
    token: Optional[FixedTokenAmount] = None
    spending_parameters: Optional[SpendingParameters] = None

    def __post_init__(self) -> None:
        _check_int("amount", self.amount, minimum=MIN_AMOUNT_SENTINEL)


@dataclass(frozen=True)
class ChangePayoutRule:
    """Receives whatever is left after the fixed rules.

    ``should_burn(token_id, amount)`` returns ``Burn()`` to drop a token's
    change instead of paying it out.
    """

    locking_bytecode: Optional[bytes] = None
    generate_change_locking_bytecode: Optional[Callable[[Output], bytes]] = None
    allow_mixing_native_and_token: bool = False
    allow_mixing_native_and_token_when_bch_change_is_dust: bool = False
    add_change_to_txfee_when_bch_change_is_dust: bool = False
    should_burn: Optional[Callable[[TokenId, int], Decision]] = None
    spending_parameters: Optional[SpendingParameters] = None


PayoutRule = Union[FixedPayoutRule, ChangePayoutRule]


@dataclass(frozen=True)
class TxResult:
    txbin: bytes
    txhash: bytes
    txfee: int
    payouts: Tuple[UTXO, ...]
    source_outputs: Tuple[Output, ...] = ()
    outputs: Tuple[Output, ...] = ()


@dataclass(frozen=True)
class ChainedTxResult:
    chain: Tuple[TxResult, ...]
    txfee: int
    payouts: Tuple[UTXO, ...]


def is_native(token_id: TokenId) -> bool:
    return token_id == NATIVE_TOKEN_ID
