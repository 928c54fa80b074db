"""
test_pricing.py - Unit tests for the present-value pricing functions

Tests:
- Discount rate fixed-point arithmetic
- Principal/yield prices and the zero-horizon boundary
- Splitting deposits into principal and yield amounts
- Monotonicity in time to maturity
- Vectorized analytics (price_curve, implied_apr)
"""

import numpy as np
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from yieldsplit import (
    SECONDS_PER_YEAR,
    time_to_maturity, discount_rate, principal_price, yield_price, prices,
    split_amount, price_curve, implied_apr,
)


HALF_YEAR = SECONDS_PER_YEAR // 2

apr_values = st.integers(min_value=0, max_value=100_000)
horizons = st.integers(min_value=0, max_value=50 * SECONDS_PER_YEAR)


class TestDiscountRate:

    def test_one_year_at_ten_percent(self):
        assert discount_rate(1000, SECONDS_PER_YEAR) == Decimal("0.1")

    def test_half_year(self):
        assert discount_rate(1000, HALF_YEAR) == Decimal("0.05")

    def test_zero_rate(self):
        assert discount_rate(0, SECONDS_PER_YEAR) == 0

    def test_multiplies_before_dividing(self):
        """1 bps for 1 second is ~3.17e-12, which survives truncation to 18 digits."""
        assert discount_rate(1, 1) == Decimal("0.000000000003170979")

    def test_negative_inputs_raise(self):
        with pytest.raises(ValueError):
            discount_rate(-1, 100)
        with pytest.raises(ValueError):
            discount_rate(100, -1)


class TestPrices:
    """Tests for principal_price / yield_price."""

    def test_one_year_at_ten_percent(self):
        assert principal_price(1000, SECONDS_PER_YEAR) == Decimal("0.909090909090909090")
        assert yield_price(1000, SECONDS_PER_YEAR) == Decimal("0.090909090909090910")

    def test_half_year_at_ten_percent(self):
        assert principal_price(1000, HALF_YEAR) == Decimal("0.952380952380952380")

    def test_zero_horizon_prices_at_par(self):
        assert principal_price(1000, 0) == Decimal("1")
        assert yield_price(1000, 0) == Decimal("0")

    def test_zero_rate_prices_at_par(self):
        assert prices(0, SECONDS_PER_YEAR) == (Decimal("1"), Decimal("0"))

    def test_prices_matches_individual_functions(self):
        assert prices(750, 1234567) == (principal_price(750, 1234567), yield_price(750, 1234567))

    @given(apr_values, horizons)
    @settings(max_examples=200)
    def test_prices_sum_to_one(self, apr_bps, seconds):
        principal, yield_ = prices(apr_bps, seconds)
        assert principal + yield_ == Decimal("1")

    @given(apr_values)
    def test_par_at_maturity_for_any_rate(self, apr_bps):
        assert prices(apr_bps, 0) == (Decimal("1"), Decimal("0"))

    @given(st.integers(min_value=1, max_value=100_000), horizons, horizons)
    @settings(max_examples=200)
    def test_principal_price_rises_toward_maturity(self, apr_bps, t1, t2):
        """Less time to maturity never lowers the principal price."""
        shorter, longer = sorted((t1, t2))
        assert principal_price(apr_bps, shorter) >= principal_price(apr_bps, longer)
        assert yield_price(apr_bps, shorter) <= yield_price(apr_bps, longer)

    def test_principal_price_strictly_increasing_over_a_year(self):
        samples = [principal_price(1000, SECONDS_PER_YEAR - d * 86400) for d in range(0, 366, 30)]
        assert all(a < b for a, b in zip(samples, samples[1:]))


class TestSplitAmount:

    def test_one_unit_ten_percent_one_year(self):
        principal, yield_ = split_amount(Decimal("1"), 1000, SECONDS_PER_YEAR)
        assert principal == Decimal("0.909090909090909090")
        assert yield_ == Decimal("0.090909090909090910")
        assert principal + yield_ == Decimal("1")

    def test_hundred_units(self):
        principal, yield_ = split_amount(Decimal("100"), 1000, SECONDS_PER_YEAR)
        assert principal == Decimal("90.909090909090909000")
        assert yield_ == Decimal("9.090909090909091000")

    def test_at_maturity_everything_is_principal(self):
        assert split_amount(Decimal("42.5"), 1000, 0) == (Decimal("42.5"), Decimal("0"))

    def test_negative_amount_raises(self):
        with pytest.raises(ValueError):
            split_amount(Decimal("-1"), 1000, 100)

    @given(
        st.decimals(min_value=Decimal("0.000000000000000001"), max_value=Decimal("1e12"), places=18),
        apr_values,
        horizons,
    )
    @settings(max_examples=200)
    def test_split_conserves_amount(self, amount, apr_bps, seconds):
        principal, yield_ = split_amount(amount, apr_bps, seconds)
        assert principal + yield_ == amount
        assert principal >= 0
        assert yield_ >= 0


class TestTimeToMaturity:

    def test_whole_seconds(self):
        now = datetime(2025, 1, 1)
        assert time_to_maturity(now, now + timedelta(days=365)) == SECONDS_PER_YEAR

    def test_clamped_at_zero(self):
        now = datetime(2025, 1, 1)
        assert time_to_maturity(now, now) == 0
        assert time_to_maturity(now + timedelta(seconds=1), now) == 0


class TestAnalytics:
    """Tests for the float helpers."""

    def test_price_curve_matches_fixed_point(self):
        curve = price_curve(1000, np.array([0, HALF_YEAR, SECONDS_PER_YEAR]))
        assert curve[0] == 1.0
        assert curve[1] == pytest.approx(float(principal_price(1000, HALF_YEAR)))
        assert curve[2] == pytest.approx(float(principal_price(1000, SECONDS_PER_YEAR)))

    def test_price_curve_broadcasts_rates(self):
        curve = price_curve(np.array([0, 500, 1000]), SECONDS_PER_YEAR)
        assert curve.shape == (3,)
        assert curve[0] == 1.0
        assert np.all(np.diff(curve) < 0)

    def test_price_curve_rejects_negative_horizon(self):
        with pytest.raises(ValueError):
            price_curve(1000, np.array([-1.0]))

    def test_implied_apr_inverts_price_curve(self):
        t = np.array([86400, HALF_YEAR, SECONDS_PER_YEAR])
        assert implied_apr(price_curve(750, t), t) == pytest.approx(750.0)

    def test_implied_apr_zero_horizon(self):
        assert implied_apr(1.0, 0) == 0.0

    def test_implied_apr_rejects_price_above_par(self):
        with pytest.raises(ValueError):
            implied_apr(1.01, SECONDS_PER_YEAR)
