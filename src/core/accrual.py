"""
Interest and price accrual.

Everything owed to the protocol rounds up; everything a borrower may take
out rounds down. Prices are quoted in token units per 1e8 native units.
"""

from __future__ import annotations

from enum import Enum, unique

from .errors import InvalidInput, InvalidProgramState
from .numeric import Fraction, ceiling_div

SECONDS_PER_YEAR = 31_536_000
SECONDS_PER_DAY = 86_400
BP_DENOMINATOR = 10_000
NATIVE_UNIT = 100_000_000

DEFAULT_MINT_RATIO = Fraction(3, 2)
DEFAULT_LIQUIDATION_RATIO = Fraction(12, 10)
# Wider denominator so the rounding fix-up in collateral_for_target_rate has room to move.
MIN_RATIO = Fraction(3000, 2000)


@unique
class InterestMode(str, Enum):
    PER_SECOND = "per_second"
    DAILY = "daily"


def _require_non_negative(**values: int) -> None:
    for name, v in values.items():
        if not isinstance(v, int) or isinstance(v, bool):
            raise InvalidInput(f"{name} must be int")
        if v < 0:
            raise InvalidInput(f"{name} must be non-negative: {v}")


def _require_price(price: int) -> None:
    if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
        raise InvalidInput(f"price must be a positive int: {price!r}")


def interest_owed(principal: int, annual_interest_bp: int, now_ts: int, loan_ts: int) -> int:
    """Linear per-second interest, rounded up."""
    _require_non_negative(principal=principal, annual_interest_bp=annual_interest_bp, now_ts=now_ts, loan_ts=loan_ts)
    if now_ts < loan_ts:
        raise InvalidInput(f"now_ts ({now_ts}) precedes loan_ts ({loan_ts})")
    return ceiling_div(principal * annual_interest_bp * (now_ts - loan_ts), BP_DENOMINATOR * SECONDS_PER_YEAR)


def daily_interest_owed(principal: int, annual_interest_bp: int, now_ts: int, loan_ts: int) -> int:
    """Interest counted in started days, plus one unit."""
    _require_non_negative(principal=principal, annual_interest_bp=annual_interest_bp, now_ts=now_ts, loan_ts=loan_ts)
    if now_ts < loan_ts:
        raise InvalidInput(f"now_ts ({now_ts}) precedes loan_ts ({loan_ts})")
    days_elapsed = ceiling_div(now_ts - loan_ts, SECONDS_PER_DAY)
    return 1 + principal * annual_interest_bp * days_elapsed // (BP_DENOMINATOR * 365)


def accrue_interest(mode: InterestMode, principal: int, annual_interest_bp: int, now_ts: int, loan_ts: int) -> int:
    if InterestMode(mode) == InterestMode.DAILY:
        return daily_interest_owed(principal, annual_interest_bp, now_ts, loan_ts)
    return interest_owed(principal, annual_interest_bp, now_ts, loan_ts)


def redeemable_native_amount(total_owed_token: int, price: int) -> int:
    _require_non_negative(total_owed_token=total_owed_token)
    _require_price(price)
    return ceiling_div(total_owed_token * NATIVE_UNIT, price)


def max_loan_for_collateral(collateral: int, price: int, ratio: Fraction = DEFAULT_MINT_RATIO) -> int:
    _require_non_negative(collateral=collateral)
    _require_price(price)
    return collateral * ratio.denominator // ratio.numerator * price // NATIVE_UNIT


def validate_loan_sanity(loan_amount: int, collateral: int, price: int, ratio: Fraction = DEFAULT_MINT_RATIO) -> None:
    max_loan = max_loan_for_collateral(collateral, price, ratio)
    if loan_amount > max_loan:
        raise InvalidInput(
            f"loan amount exceeds the max loan for the collateral, loan: {loan_amount}, max: {max_loan}",
            {"loan_amount": loan_amount, "max_loan": max_loan},
        )


def collateral_ratio(collateral: int, price: int, owed: int) -> Fraction:
    """Collateral value in token units over the debt, never reduced."""
    _require_non_negative(collateral=collateral, owed=owed)
    _require_price(price)
    if owed == 0:
        raise InvalidInput("owed must be positive")
    return Fraction(collateral * price, owed * NATIVE_UNIT)


def is_liquidatable(collateral: int, price: int, owed: int, ratio: Fraction = DEFAULT_LIQUIDATION_RATIO) -> bool:
    """True when the max loan at ``ratio`` no longer exceeds ``owed``."""
    return max_loan_for_collateral(collateral, price, ratio) <= owed


def collateral_for_target_rate(loan_amount: int, rate: Fraction, price: int, *, minimal: bool = False) -> int:
    """
    Collateral needed for ``loan_amount`` at collateral ``rate``.

    With ``minimal=True`` the result is the smallest collateral whose max
    loan (at ``rate``) still covers ``loan_amount``.
    """
    _require_non_negative(loan_amount=loan_amount)
    _require_price(price)
    collateral = loan_amount * NATIVE_UNIT * rate.numerator // (price * rate.denominator)
    if not minimal:
        return collateral

    def max_loan(c: int) -> int:
        return c * rate.denominator // rate.numerator * price // NATIVE_UNIT

    for _ in range(100):
        if loan_amount > max_loan(collateral):
            collateral += 1
            continue
        if collateral > 0 and loan_amount <= max_loan(collateral - 1):
            collateral -= 1
            continue
        return collateral
    raise InvalidProgramState("reached max tries fixing the collateral rounding error")


def loan_for_collateral_at_target_rate(collateral: int, rate: Fraction, price: int) -> int:
    return max_loan_for_collateral(collateral, price, rate)
