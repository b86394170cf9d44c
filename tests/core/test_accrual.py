from __future__ import annotations

import pytest

from src.core.accrual import (
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    InterestMode,
    accrue_interest,
    collateral_for_target_rate,
    collateral_ratio,
    daily_interest_owed,
    interest_owed,
    is_liquidatable,
    loan_for_collateral_at_target_rate,
    max_loan_for_collateral,
    redeemable_native_amount,
    validate_loan_sanity,
)
from src.core.errors import InvalidInput
from src.core.numeric import Fraction


def test_interest_is_zero_at_loan_time() -> None:
    assert interest_owed(50_000, 500, 1000, 1000) == 0


def test_interest_after_one_year() -> None:
    assert interest_owed(50_000, 500, SECONDS_PER_YEAR, 0) == 2500


def test_interest_rounds_up() -> None:
    # 100 * 1 * 1 / (10000 * 31536000) is a tiny positive fraction
    assert interest_owed(100, 1, 1, 0) == 1


def test_interest_rejects_time_travel() -> None:
    with pytest.raises(InvalidInput):
        interest_owed(100, 1, 0, 10)


def test_daily_interest_counts_started_days_plus_one() -> None:
    assert daily_interest_owed(365_0000, 100, 0, 0) == 1
    # one second into the first day charges the whole day
    assert daily_interest_owed(365_0000, 100, 1, 0) == 1 + 365_0000 * 100 // (10_000 * 365)
    assert accrue_interest(InterestMode.DAILY, 365_0000, 100, SECONDS_PER_DAY, 0) == daily_interest_owed(
        365_0000, 100, SECONDS_PER_DAY, 0
    )


def test_accrue_interest_defaults_to_per_second() -> None:
    assert accrue_interest(InterestMode.PER_SECOND, 50_000, 500, SECONDS_PER_YEAR, 0) == 2500
    assert accrue_interest("per_second", 50_000, 500, SECONDS_PER_YEAR, 0) == 2500


def test_max_loan_at_mint_ratio() -> None:
    assert max_loan_for_collateral(200_000_000, 37_600) == 50_133
    assert max_loan_for_collateral(200_000_000, 37_500) == 49_999


def test_validate_loan_sanity() -> None:
    validate_loan_sanity(50_000, 200_000_000, 37_600)
    with pytest.raises(InvalidInput) as exc:
        validate_loan_sanity(50_000, 200_000_000, 37_500)
    assert exc.value.payload["max_loan"] == 49_999


def test_liquidation_threshold_is_inclusive() -> None:
    collateral, price = 200_000_000, 30_000
    threshold = max_loan_for_collateral(collateral, price, Fraction(12, 10))
    assert is_liquidatable(collateral, price, threshold)
    assert not is_liquidatable(collateral, price, threshold - 1)


def test_redeemable_amount_rounds_up() -> None:
    assert redeemable_native_amount(52_500, 37_600) == 139_627_660
    with pytest.raises(InvalidInput):
        redeemable_native_amount(1, 0)


def test_collateral_ratio_is_unreduced() -> None:
    ratio = collateral_ratio(200_000_000, 37_600, 50_000)
    assert ratio == Fraction(200_000_000 * 37_600, 50_000 * 100_000_000)
    with pytest.raises(InvalidInput):
        collateral_ratio(1, 1, 0)


def test_minimal_collateral_is_tight() -> None:
    rate = Fraction(3000, 2000)
    collateral = collateral_for_target_rate(50_000, rate, 37_600, minimal=True)
    assert loan_for_collateral_at_target_rate(collateral, rate, 37_600) >= 50_000
    assert loan_for_collateral_at_target_rate(collateral - 1, rate, 37_600) < 50_000
