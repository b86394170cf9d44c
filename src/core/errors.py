"""Exception taxonomy shared by the covenant toolkit.

Every error carries an ``ErrorKind`` so results can be reported across a
process boundary without relying on class names. ``error_to_dict`` and
``error_from_dict`` use an explicit table; adding a kind means adding a row.

Burn outcomes are not exceptions here. Policy hooks return ``Keep``/``Burn``
decisions (see ``src.state.types``); the ``BURN_*`` kinds only exist so that a
serialized burn outcome can be reported alongside real failures.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional, Type


@unique
class ErrorKind(str, Enum):
    VALUE_ERROR = "ValueError"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    INVALID_PROGRAM_STATE = "InvalidProgramState"
    NOT_FOUND = "NotFoundError"
    NOT_IMPLEMENTED = "NotImplemented"
    INSUFFICIENT_CAPITAL_IN_POOLS = "InsufficientCapitalInPools"
    BURN_TOKEN = "BurnToken"
    BURN_NFT = "BurnNFT"


class CovenantError(Exception):
    """Base class. ``payload`` holds JSON-friendly context (ints, strings)."""

    kind: ErrorKind = ErrorKind.VALUE_ERROR

    def __init__(self, message: str = "", payload: Optional[Dict[str, Any]] = None) -> None:
        self.payload: Dict[str, Any] = dict(payload or {})
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class InvalidInput(CovenantError, ValueError):
    """Malformed or out-of-range input. Also catchable as ``ValueError``."""

    kind = ErrorKind.VALUE_ERROR


class InsufficientFunds(CovenantError):
    """Funding shortfall; ``required_amount`` is how much more is needed."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, message: str = "", payload: Optional[Dict[str, Any]] = None, *, required_amount: Optional[int] = None) -> None:
        payload = dict(payload or {})
        if required_amount is not None:
            payload["required_amount"] = required_amount
        self.required_amount: Optional[int] = payload.get("required_amount")
        super().__init__(message, payload)


class InvalidProgramState(CovenantError):
    """An internal invariant broke. Never expected from valid input."""

    kind = ErrorKind.INVALID_PROGRAM_STATE


class NotFoundError(CovenantError, LookupError):
    """A referenced script id or search candidate does not exist."""

    kind = ErrorKind.NOT_FOUND


class NotSupported(CovenantError, NotImplementedError):
    """Unsupported coin or rule variant."""

    kind = ErrorKind.NOT_IMPLEMENTED


class InsufficientCapitalInPools(CovenantError):
    """The pools cannot provide the requested amount."""

    kind = ErrorKind.INSUFFICIENT_CAPITAL_IN_POOLS

    def __init__(self, message: str = "", payload: Optional[Dict[str, Any]] = None, *, requires: Optional[int] = None) -> None:
        payload = dict(payload or {})
        if requires is not None:
            payload["requires"] = requires
        self.requires: Optional[int] = payload.get("requires")
        super().__init__(message, payload)


class BurnReport(CovenantError):
    """Serialized form of a caller-directed burn. Never raised by the library."""

    kind = ErrorKind.BURN_TOKEN


class BurnNFTReport(BurnReport):
    kind = ErrorKind.BURN_NFT


_KIND_TO_CLASS: Dict[ErrorKind, Type[CovenantError]] = {
    ErrorKind.VALUE_ERROR: InvalidInput,
    ErrorKind.INSUFFICIENT_FUNDS: InsufficientFunds,
    ErrorKind.INVALID_PROGRAM_STATE: InvalidProgramState,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.NOT_IMPLEMENTED: NotSupported,
    ErrorKind.INSUFFICIENT_CAPITAL_IN_POOLS: InsufficientCapitalInPools,
    ErrorKind.BURN_TOKEN: BurnReport,
    ErrorKind.BURN_NFT: BurnNFTReport,
}


def error_to_dict(err: CovenantError) -> Dict[str, Any]:
    if not isinstance(err, CovenantError):
        raise TypeError(f"expected CovenantError, got {type(err).__name__}")
    return {"kind": err.kind.value, "message": err.message, "payload": dict(err.payload)}


def error_from_dict(data: Dict[str, Any]) -> CovenantError:
    raw_kind = data.get("kind")
    try:
        kind = ErrorKind(raw_kind)
    except ValueError:
        raise NotFoundError(f"unknown error kind: {raw_kind!r}", {"kind": raw_kind}) from None
    cls = _KIND_TO_CLASS[kind]
    return cls(str(data.get("message", "")), dict(data.get("payload") or {}))
