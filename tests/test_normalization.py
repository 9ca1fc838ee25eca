"""
Tests for the normalization primitives.

============================================================
TEST SCENARIOS
============================================================
1. Half-up rounding and clamping
2. Winsorization (idempotent, NaN pass-through)
3. Percentile rank (mid-rank, monotonic)
4. z-score and logistic mapping
5. Series helpers (SMA, RSI, rolling sums, OLS, weekly)

============================================================
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from composite_risk.normalization import (
    clamp,
    daily_to_weekly,
    logistic01,
    ols,
    pct_change,
    percentile_rank,
    risk_from_percentile,
    risk_from_z,
    rolling_sum,
    round_half_up,
    rsi,
    sample_stddev,
    sma,
    winsorize,
    z_score,
)
from composite_risk.types import SeriesPoint


# ============================================================
# TEST: ROUNDING
# ============================================================

class TestRounding:
    """Half-up rounding, never banker's rounding."""

    @pytest.mark.parametrize("value,expected", [
        (0.5, 1),
        (1.5, 2),
        (2.5, 3),
        (61.25, 61),
        (61.5, 62),
        (-2.5, -3),
        (-0.4, 0),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_clamp(self):
        assert clamp(-3, 0, 100) == 0
        assert clamp(130, 0, 100) == 100
        assert clamp(42.5, 0, 100) == 42.5


# ============================================================
# TEST: WINSORIZE
# ============================================================

class TestWinsorize:
    """Tests for percentile clipping."""

    def test_clips_outliers(self):
        values = [float(v) for v in range(1, 21)] + [100.0]
        result = winsorize(values, 0.05, 0.95)

        assert result[-1] == 20.0
        assert result[0] == 2.0
        assert result[5] == values[5]

    def test_idempotent(self):
        values = [3.0, -40.0, 7.0, 9.0, 11.0, 250.0, 4.0, 6.0, 8.0, 5.0]
        once = winsorize(values)
        assert winsorize(once) == once

    def test_non_finite_pass_through(self):
        result = winsorize([1.0, math.nan, 3.0, 2.0])
        assert math.isnan(result[1])
        assert result[0] == 1.0

    def test_no_finite_values_returned_as_is(self):
        result = winsorize([math.nan, math.inf])
        assert math.isnan(result[0])
        assert result[1] == math.inf

    def test_does_not_mutate_input(self):
        values = [1.0, 2.0, 100.0]
        winsorize(values)
        assert values == [1.0, 2.0, 100.0]


# ============================================================
# TEST: PERCENTILE RANK
# ============================================================

class TestPercentileRank:
    """Tests for mid-rank percentiles."""

    def test_mid_rank(self):
        assert percentile_rank([1.0, 2.0, 3.0, 4.0], 3.0) == pytest.approx(0.625)

    def test_extremes(self):
        series = [1.0, 2.0, 3.0]
        assert percentile_rank(series, 0.0) == 0.0
        assert percentile_rank(series, 10.0) == 1.0

    def test_monotonic_in_x(self):
        series = [5.0, 1.0, 3.0, 3.0, 8.0, 2.0, 9.0]
        ranks = [percentile_rank(series, x) for x in range(0, 11)]
        assert ranks == sorted(ranks)

    def test_empty_series_is_nan(self):
        assert math.isnan(percentile_rank([], 1.0))
        assert math.isnan(percentile_rank([math.nan], 1.0))

    def test_non_finite_x_is_nan(self):
        assert math.isnan(percentile_rank([1.0, 2.0], math.nan))


# ============================================================
# TEST: Z-SCORE AND LOGISTIC
# ============================================================

class TestZScore:
    """Tests for z-scores and the risk mappings."""

    def test_population_z(self):
        assert z_score(3.0, [1.0, 2.0, 3.0]) == pytest.approx(1.0 / math.sqrt(2.0 / 3.0))

    def test_zero_variance_is_zero(self):
        assert z_score(5.0, [5.0, 5.0, 5.0]) == 0.0

    def test_invalid_inputs(self):
        assert math.isnan(z_score(math.nan, [1.0, 2.0]))
        assert math.isnan(z_score(1.0, []))

    def test_sample_stddev_short_series(self):
        assert sample_stddev([4.0]) == 1.0
        assert sample_stddev([1.0, 3.0]) == pytest.approx(math.sqrt(2.0))

    def test_logistic_midpoint(self):
        assert logistic01(0.5) == pytest.approx(0.5)
        assert math.isnan(logistic01(math.nan))

    def test_risk_from_percentile(self):
        assert risk_from_percentile(0.5) == 50
        assert risk_from_percentile(1.0) == 82
        assert risk_from_percentile(0.0) == 18

    def test_risk_from_percentile_inverted(self):
        assert risk_from_percentile(1.0, invert=True) == 18
        assert risk_from_percentile(0.0, invert=True) == 82

    @pytest.mark.parametrize("p", [-0.1, 1.2, math.nan])
    def test_risk_from_percentile_invalid(self, p):
        assert risk_from_percentile(p) is None

    def test_risk_from_z(self):
        assert risk_from_z(0.0) == 50
        assert risk_from_z(100.0) == risk_from_z(4.0)
        assert risk_from_z(2.0, direction=-1) < 50
        assert risk_from_z(math.nan) is None


# ============================================================
# TEST: SERIES HELPERS
# ============================================================

class TestSeriesHelpers:
    """Tests for SMA, RSI, rolling sums, OLS and weekly resampling."""

    def test_sma(self):
        result = sma([1.0, 2.0, 3.0, 4.0], 2)
        assert math.isnan(result[0])
        assert result[1:] == [1.5, 2.5, 3.5]

    def test_rsi_rising_closes(self):
        closes = [float(v) for v in range(1, 21)]
        result = rsi(closes, 14)
        assert math.isnan(result[13])
        assert result[14] == 100.0
        assert result[-1] == 100.0

    def test_rsi_short_series(self):
        assert all(math.isnan(v) for v in rsi([1.0, 2.0], 14))

    def test_rolling_sum(self):
        assert rolling_sum([1.0, 2.0, 3.0, 4.0], 2) == [3.0, 5.0, 7.0]
        assert rolling_sum([1.0], 2) == []

    def test_pct_change(self):
        assert pct_change([100.0, 110.0, 121.0], 1) == pytest.approx([0.1, 0.1])

    def test_ols_exact_line(self):
        xs = [float(x) for x in range(10)]
        ys = [1.0 + 2.0 * x for x in xs]
        a, b = ols(xs, ys)
        assert a == pytest.approx(1.0)
        assert b == pytest.approx(2.0)

    def test_ols_needs_min_points(self):
        xs = [float(x) for x in range(9)]
        assert ols(xs, xs) is None

    def test_ols_degenerate_x(self):
        assert ols([1.0] * 12, [float(y) for y in range(12)]) is None

    def test_daily_to_weekly(self):
        start = datetime(2024, 1, 4, tzinfo=timezone.utc)  # epoch-week aligned
        points = [SeriesPoint(start + timedelta(days=i), float(i + 1)) for i in range(14)]

        weekly = daily_to_weekly(points)

        assert [p.value for p in weekly] == [7.0, 14.0]
        assert weekly[-1].timestamp == start + timedelta(days=13)

    def test_daily_to_weekly_skips_non_positive(self):
        start = datetime(2024, 1, 4, tzinfo=timezone.utc)
        points = [
            SeriesPoint(start, 10.0),
            SeriesPoint(start + timedelta(days=1), 0.0),
        ]
        assert [p.value for p in daily_to_weekly(points)] == [10.0]
