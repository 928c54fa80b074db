"""
pricing.py - Present-Value Pricing of Principal and Yield Claims

Simple-interest zero-coupon pricing with time in seconds (365-day years)
and rates in basis points.

    discount_rate  = apr_bps / 10000 * seconds / SECONDS_PER_YEAR
    principal      = 1 / (1 + discount_rate)
    yield          = 1 - principal

Settlement functions work in Decimal fixed point with 18 fractional digits,
truncating every division like integer 1e18 arithmetic. Yield is always the
residual, so principal + yield is exactly 1 (and a split is exactly the
amount) by construction.

price_curve() is a vectorized float helper for analytics only.
"""

from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Tuple, Union

import numpy as np

from .core import SECONDS_PER_YEAR, BASIS_POINTS, TOKEN_QUANTUM, QUANTITY_EPSILON


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

PRICE_QUANTUM = TOKEN_QUANTUM
ONE = Decimal("1")
ZERO = Decimal("0")

_RATE_DENOMINATOR = Decimal(BASIS_POINTS) * Decimal(SECONDS_PER_YEAR)


def _validate_inputs(apr_bps: int, seconds: int) -> None:
    if apr_bps < 0:
        raise ValueError(f"apr_bps must be non-negative, got {apr_bps}")
    if seconds < 0:
        raise ValueError(f"seconds must be non-negative, got {seconds}")


def time_to_maturity(now: datetime, expiry: datetime) -> int:
    """Whole seconds from now until expiry, clamped at zero."""
    if now >= expiry:
        return 0
    return int((expiry - now).total_seconds())


def discount_rate(apr_bps: int, seconds: int) -> Decimal:
    """
    Simple-interest discount over `seconds` at `apr_bps`.

    The numerator is formed before dividing so no precision is lost to
    truncation order.
    """
    _validate_inputs(apr_bps, seconds)
    numerator = Decimal(apr_bps) * Decimal(seconds)
    return (numerator / _RATE_DENOMINATOR).quantize(PRICE_QUANTUM, rounding=ROUND_DOWN)


def principal_price(apr_bps: int, seconds: int) -> Decimal:
    """
    Present value of 1 unit due in `seconds`: 1 / (1 + discount_rate).

    At maturity (seconds == 0) the price is exactly 1 without dividing.
    """
    _validate_inputs(apr_bps, seconds)
    if seconds == 0:
        return ONE
    rate = discount_rate(apr_bps, seconds)
    return (ONE / (ONE + rate)).quantize(PRICE_QUANTUM, rounding=ROUND_DOWN)


def yield_price(apr_bps: int, seconds: int) -> Decimal:
    """Residual value of the yield claim: 1 - principal_price."""
    return ONE - principal_price(apr_bps, seconds)


def prices(apr_bps: int, seconds: int) -> Tuple[Decimal, Decimal]:
    """(principal_price, yield_price) for the same inputs."""
    principal = principal_price(apr_bps, seconds)
    return principal, ONE - principal


def split_amount(amount: Decimal, apr_bps: int, seconds: int) -> Tuple[Decimal, Decimal]:
    """
    Split a deposit into (principal_amount, yield_amount).

    principal_amount = amount * principal_price (truncated);
    yield_amount = amount - principal_amount, so the two always sum to amount.

    Example:
        >>> split_amount(Decimal("1"), 1000, SECONDS_PER_YEAR)
        (Decimal('0.909090909090909090'), Decimal('0.090909090909090910'))
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    price = principal_price(apr_bps, seconds)
    principal = (amount * price).quantize(PRICE_QUANTUM, rounding=ROUND_DOWN)
    residual = amount - principal
    if abs(residual) < QUANTITY_EPSILON:
        residual = ZERO
    return principal, residual


# ============================================================================
# ANALYTICS
# ============================================================================

def price_curve(apr_bps: Numeric, seconds: Numeric) -> np.ndarray:
    """
    Principal price over many horizons (float64, vectorized).

    Broadcasts apr_bps against seconds; zero horizons price at exactly 1.0.

    Raises:
        ValueError: If any input is negative or not finite
    """
    apr = np.asarray(apr_bps, dtype=np.float64)
    t = np.asarray(seconds, dtype=np.float64)
    if not np.all(np.isfinite(apr)) or np.any(apr < 0):
        raise ValueError("apr_bps must be non-negative and finite")
    if not np.all(np.isfinite(t)) or np.any(t < 0):
        raise ValueError("seconds must be non-negative and finite")
    rate = apr / BASIS_POINTS * t / SECONDS_PER_YEAR
    return 1.0 / (1.0 + rate)


def implied_apr(price: Numeric, seconds: Numeric) -> np.ndarray:
    """
    Annualized simple rate (in basis points) implied by a principal price.

    Inverse of price_curve; horizons of zero return 0.
    """
    p = np.asarray(price, dtype=np.float64)
    t = np.asarray(seconds, dtype=np.float64)
    if np.any(p <= 0) or np.any(p > 1):
        raise ValueError("price must be in (0, 1]")
    with np.errstate(divide='ignore', invalid='ignore'):
        apr = (1.0 / p - 1.0) * SECONDS_PER_YEAR / t * BASIS_POINTS
    return np.where(t > 0, apr, 0.0)
