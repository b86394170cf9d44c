"""
Core covenant algorithms: exact arithmetic, errors, quoting and accrual.

The router and the payout resolver live in ``src.core.routing`` and
``src.core.payout``; they depend on ``src.state`` and are imported directly.
"""

from .errors import (
    CovenantError,
    ErrorKind,
    InsufficientCapitalInPools,
    InsufficientFunds,
    InvalidInput,
    InvalidProgramState,
    NotFoundError,
    NotSupported,
    error_from_dict,
    error_to_dict,
)
from .numeric import (
    NATIVE_TOKEN_ID,
    Fraction,
    bigint_max,
    bigint_min,
    ceiling_div,
    convert_fraction_denominator,
    convert_token_id_to_bytes,
    sort_with_comparator,
)
from .accrual import (
    InterestMode,
    accrue_interest,
    collateral_ratio,
    interest_owed,
    is_liquidatable,
    max_loan_for_collateral,
    redeemable_native_amount,
    validate_loan_sanity,
)
from .cpmm import Quote, quote, supply_for_demand

__all__ = [
    "CovenantError",
    "ErrorKind",
    "InsufficientCapitalInPools",
    "InsufficientFunds",
    "InvalidInput",
    "InvalidProgramState",
    "NotFoundError",
    "NotSupported",
    "error_from_dict",
    "error_to_dict",
    "NATIVE_TOKEN_ID",
    "Fraction",
    "bigint_max",
    "bigint_min",
    "ceiling_div",
    "convert_fraction_denominator",
    "convert_token_id_to_bytes",
    "sort_with_comparator",
    "InterestMode",
    "accrue_interest",
    "collateral_ratio",
    "interest_owed",
    "is_liquidatable",
    "max_loan_for_collateral",
    "redeemable_native_amount",
    "validate_loan_sanity",
    "Quote",
    "quote",
    "supply_for_demand",
]
