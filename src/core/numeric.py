"""
Exact integer helpers.

Rounding rule used across the package: anything owed to the protocol (debt,
fees, required collateral) rounds up through ``ceiling_div``; anything paid
out to a user rounds down with ``//``.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Callable, List, Sequence, TypeVar

from .errors import InvalidInput

T = TypeVar("T")

NATIVE_TOKEN_ID = "BCH"


@dataclass(frozen=True)
class Fraction:
    """A rational kept in the caller's denominator space. Never reduced."""

    numerator: int
    denominator: int

    def __post_init__(self) -> None:
        for name in ("numerator", "denominator"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be int")
        if self.denominator <= 0:
            raise InvalidInput(f"denominator must be positive: {self.denominator}")

    def mul_floor(self, value: int) -> int:
        return value * self.numerator // self.denominator


def ceiling_div(numerator: int, denominator: int) -> int:
    """Integer division rounded toward +infinity."""
    if denominator == 0:
        raise ZeroDivisionError("ceiling_div by zero")
    return -((-numerator) // denominator)


def convert_fraction_denominator(fraction: Fraction, target_denominator: int) -> Fraction:
    if fraction.denominator == target_denominator:
        return fraction
    return Fraction(fraction.numerator * target_denominator // fraction.denominator, target_denominator)


def _require_ints(values: Sequence[object], fn: str) -> None:
    if len(values) == 0:
        raise InvalidInput(f"{fn} requires at least one argument")
    for v in values:
        if not isinstance(v, int) or isinstance(v, bool):
            raise InvalidInput(f"{fn} requires all arguments to be int")


def bigint_max(*values: int) -> int:
    _require_ints(values, "bigint_max")
    return max(values)


def bigint_min(*values: int) -> int:
    _require_ints(values, "bigint_min")
    return min(values)


def sort_with_comparator(items: List[T], comparator: Callable[[T, T], int]) -> List[T]:
    """Stable in-place sort driven by a signed-int comparator; returns ``items``."""

    def _cmp(a: T, b: T) -> int:
        value = comparator(a, b)
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidInput("comparator must return an int")
        return (value > 0) - (value < 0)

    items.sort(key=functools.cmp_to_key(_cmp))
    return items


def convert_token_id_to_bytes(token_id: str) -> bytes:
    if token_id == NATIVE_TOKEN_ID:
        raise InvalidInput("the native token has no category bytes")
    if not isinstance(token_id, str) or len(token_id) != 64:
        raise InvalidInput(f"token_id must be 64 hex chars: {token_id!r}")
    try:
        return bytes.fromhex(token_id)
    except ValueError:
        raise InvalidInput(f"token_id is not hex: {token_id!r}") from None
