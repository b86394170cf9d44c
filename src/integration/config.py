"""
Protocol and network parameters.

Defaults ship as ``params/lending_v1.yaml``; deployments can point
``load_lending_params`` / ``load_network_params`` at their own file with the
same layout. Every field is validated on load and a malformed file raises
``InvalidInput``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml

from ..core.accrual import DEFAULT_LIQUIDATION_RATIO, DEFAULT_MINT_RATIO, InterestMode
from ..core.errors import InvalidInput
from ..core.numeric import Fraction
from ..state.types import Output
from ..state.wire import DEFAULT_DUST_RELAY_FEE, dust_threshold


def _default_params_path() -> Path:
    # src/integration/config.py -> src/integration/params/lending_v1.yaml
    return Path(__file__).resolve().parent / "params" / "lending_v1.yaml"


def _load_document(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    p = Path(path) if path is not None else _default_params_path()
    try:
        obj = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InvalidInput(f"params file is not valid yaml: {p}: {e}") from e
    if not isinstance(obj, dict):
        raise InvalidInput(f"params file must be a mapping: {p}")
    return obj


def _section(doc: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = doc.get(name)
    if not isinstance(section, dict):
        raise InvalidInput(f"params file is missing the '{name}' section")
    return section


def _int(section: Dict[str, Any], key: str, *, minimum: int = 0, maximum: Optional[int] = None) -> int:
    value = section.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInput(f"{key} must be int, got {value!r}")
    if value < minimum or (maximum is not None and value > maximum):
        raise InvalidInput(f"{key} out of range: {value}")
    return value


def _fraction(section: Dict[str, Any], key: str) -> Fraction:
    value = section.get(key)
    if not isinstance(value, dict):
        raise InvalidInput(f"{key} must be a mapping with numerator and denominator")
    numerator = _int(value, "numerator", minimum=1)
    denominator = _int(value, "denominator", minimum=1)
    return Fraction(numerator, denominator)


def _hex(section: Dict[str, Any], key: str, size: int) -> str:
    value = section.get(key)
    if not isinstance(value, str) or len(value) != size * 2:
        raise InvalidInput(f"{key} must be {size * 2} hex chars")
    try:
        bytes.fromhex(value)
    except ValueError:
        raise InvalidInput(f"{key} is not hex: {value!r}") from None
    return value.lower()


@dataclass(frozen=True)
class NetworkParams:
    txfee_per_byte: Fraction = Fraction(1, 1)
    dust_relay_fee: int = DEFAULT_DUST_RELAY_FEE
    max_tx_size: int = 100_000
    payout_batch_size: int = 450


@dataclass(frozen=True)
class LendingParams:
    """v1 lending protocol parameters. Amounts are in token base units."""

    moria_token_id: str
    delphi_token_id: str
    bporacle_token_id: str
    batonminter_token_id: str
    interest_nfthash: bytes
    mint_min_amount: int = 1000
    mint_max_amount: int = 3_270_000
    mint_min_bp_rate: int = 0
    mint_max_bp_rate: int = 32_700
    mint_ratio: Fraction = DEFAULT_MINT_RATIO
    liquidation_ratio: Fraction = DEFAULT_LIQUIDATION_RATIO
    batonminter_mint_fee: int = 1000
    min_add_collateral: int = 100_000
    borrowed_token_output_amount: int = 1000
    interest_mode: InterestMode = InterestMode.PER_SECOND

    def __post_init__(self) -> None:
        if len(self.interest_nfthash) != 32:
            raise InvalidInput("interest_nfthash must be 32 bytes")
        if self.mint_min_amount > self.mint_max_amount:
            raise InvalidInput("mint_min_amount must not exceed mint_max_amount")
        if self.mint_min_bp_rate > self.mint_max_bp_rate:
            raise InvalidInput("mint_min_bp_rate must not exceed mint_max_bp_rate")


def load_network_params(path: Optional[Union[str, Path]] = None) -> NetworkParams:
    section = _section(_load_document(path), "network")
    return NetworkParams(
        txfee_per_byte=_fraction(section, "txfee_per_byte"),
        dust_relay_fee=_int(section, "dust_relay_fee"),
        max_tx_size=_int(section, "max_tx_size", minimum=1),
        payout_batch_size=_int(section, "payout_batch_size", minimum=1),
    )


def load_lending_params(path: Optional[Union[str, Path]] = None) -> LendingParams:
    section = _section(_load_document(path), "lending")
    mode = section.get("interest_mode", InterestMode.PER_SECOND.value)
    try:
        interest_mode = InterestMode(mode)
    except ValueError:
        raise InvalidInput(f"unknown interest_mode: {mode!r}") from None
    return LendingParams(
        moria_token_id=_hex(section, "moria_token_id", 32),
        delphi_token_id=_hex(section, "delphi_token_id", 32),
        bporacle_token_id=_hex(section, "bporacle_token_id", 32),
        batonminter_token_id=_hex(section, "batonminter_token_id", 32),
        interest_nfthash=bytes.fromhex(_hex(section, "interest_nfthash", 32)),
        mint_min_amount=_int(section, "mint_min_amount"),
        mint_max_amount=_int(section, "mint_max_amount"),
        mint_min_bp_rate=_int(section, "mint_min_bp_rate", maximum=0xFFFF),
        mint_max_bp_rate=_int(section, "mint_max_bp_rate", maximum=0xFFFF),
        mint_ratio=_fraction(section, "mint_ratio"),
        liquidation_ratio=_fraction(section, "liquidation_ratio"),
        batonminter_mint_fee=_int(section, "batonminter_mint_fee"),
        min_add_collateral=_int(section, "min_add_collateral"),
        borrowed_token_output_amount=_int(section, "borrowed_token_output_amount"),
        interest_mode=interest_mode,
    )


@dataclass(frozen=True)
class TxContext:
    """
    Fee and dust policy handed to every transaction builder.

    Both hooks default to the network dust threshold of the serialized output.
    """

    txfee_per_byte: Fraction = Fraction(1, 1)
    dust_relay_fee: int = DEFAULT_DUST_RELAY_FEE
    output_min_amount_hook: Optional[Callable[[Output], int]] = None
    preferred_token_output_bch_amount_hook: Optional[Callable[[Output], Optional[int]]] = None

    @classmethod
    def from_network(cls, params: NetworkParams, **hooks: Any) -> "TxContext":
        return cls(txfee_per_byte=params.txfee_per_byte, dust_relay_fee=params.dust_relay_fee, **hooks)

    def get_output_min_amount(self, output: Output) -> int:
        if self.output_min_amount_hook is not None:
            return self.output_min_amount_hook(output)
        return dust_threshold(output, self.dust_relay_fee)

    def get_preferred_token_output_bch_amount(self, output: Output) -> Optional[int]:
        if self.preferred_token_output_bch_amount_hook is not None:
            return self.preferred_token_output_bch_amount_hook(output)
        return dust_threshold(output, self.dust_relay_fee)

    def calc_txfee(self, tx_size: int) -> int:
        return self.txfee_per_byte.mul_floor(tx_size)
