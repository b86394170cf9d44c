"""
Script compiler/signer collaborator.

The toolkit never compiles or signs scripts itself. Builders describe each
input with an ``InputTemplate`` (a script id plus wallet data, a P2PKH coin
to be signed, or ready-made unlocking bytecode) and hand a ``TxTemplate`` to
a ``ScriptCompiler``. Unknown script ids must raise ``NotFoundError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple

from ..core.errors import InvalidInput
from ..state.types import UTXO, Output, P2PKHCoin


@dataclass(frozen=True)
class InputTemplate:
    utxo: UTXO
    script_id: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=dict)
    coin: Optional[P2PKHCoin] = None
    unlocking_bytecode: Optional[bytes] = None
    sequence_number: int = 0

    def __post_init__(self) -> None:
        given = sum(x is not None for x in (self.script_id, self.coin, self.unlocking_bytecode))
        if given != 1:
            raise InvalidInput("input template needs exactly one of script_id, coin or unlocking_bytecode")

    @classmethod
    def from_coin(cls, coin: P2PKHCoin, sequence_number: int = 0) -> "InputTemplate":
        return cls(utxo=coin.utxo, coin=coin, sequence_number=sequence_number)

    @classmethod
    def from_script(cls, utxo: UTXO, script_id: str, data: Optional[Mapping[str, Any]] = None) -> "InputTemplate":
        return cls(utxo=utxo, script_id=script_id, data=dict(data or {}))


@dataclass(frozen=True)
class TxTemplate:
    inputs: Tuple[InputTemplate, ...]
    outputs: Tuple[Output, ...]
    version: int = 2
    locktime: int = 0

    @property
    def source_outputs(self) -> Tuple[Output, ...]:
        return tuple(i.utxo.output for i in self.inputs)


@dataclass(frozen=True)
class CompiledTx:
    txbin: bytes
    txhash: bytes


class ScriptCompiler(Protocol):
    def generate_bytecode(self, script_id: str, data: Optional[Dict[str, Any]] = None) -> bytes:
        """Locking bytecode for ``script_id`` with ``data`` spliced in."""
        ...

    def compile_transaction(self, template: TxTemplate) -> CompiledTx:
        ...


def build_tx_template(inputs: Sequence[InputTemplate], outputs: Sequence[Output]) -> TxTemplate:
    return TxTemplate(tuple(inputs), tuple(outputs))
