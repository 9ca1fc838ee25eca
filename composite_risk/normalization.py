"""
Composite Risk Engine - Normalization Primitives.

============================================================
PURPOSE
============================================================
Pure numeric helpers that bring heterogeneous raw signals
onto one 0-100 risk scale.

- winsorize:            clip outliers to sample percentiles
- percentile_rank:      mid-rank percentile in [0, 1]
- z_score:              population z-score (0 when flat)
- logistic01:           smooth squash into (0, 1)
- risk_from_percentile: percentile -> integer risk score

Plus the series helpers the scorers and adjustments share
(SMA, RSI, rolling sums, OLS, weekly resampling).

============================================================
CONVENTIONS
============================================================
- Non-finite values (NaN, inf) are ignored by statistics
- Functions never mutate their inputs
- Rounding is half-up, never banker's rounding

============================================================
"""

import math
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from composite_risk.types import SeriesPoint


def is_finite(value: Optional[float]) -> bool:
    return value is not None and isinstance(value, (int, float)) and math.isfinite(value)


def finite_values(values: Sequence[Optional[float]]) -> List[float]:
    return [float(v) for v in values if is_finite(v)]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# ============================================================
# CORE PRIMITIVES
# ============================================================


def winsorize(values: Sequence[float], lower_pct: float = 0.05, upper_pct: float = 0.95) -> List[float]:
    """
    Clip each finite value to the sample's [p_lower, p_upper].

    Bounds are taken from the sorted finite values at
    floor(lower * n) and ceil(upper * n) - 1. Non-finite entries
    pass through untouched; an input with no finite values is
    returned as-is.
    """
    finite = sorted(finite_values(values))
    if not finite:
        return list(values)

    n = len(finite)
    lo_idx = min(n - 1, max(0, int(math.floor(lower_pct * n))))
    hi_idx = min(n - 1, max(0, int(math.ceil(upper_pct * n)) - 1))
    lower, upper = finite[lo_idx], finite[hi_idx]

    return [clamp(v, lower, upper) if is_finite(v) else v for v in values]


def percentile_rank(series: Sequence[float], x: float) -> float:
    """
    Mid-rank percentile of x within series.

    (count below x + 0.5 * count equal to x) / n over finite
    values. Returns NaN for an empty series or a non-finite x.
    """
    if not is_finite(x):
        return math.nan
    finite = finite_values(series)
    if not finite:
        return math.nan

    below = sum(1 for v in finite if v < x)
    equal = sum(1 for v in finite if v == x)
    return (below + 0.5 * equal) / len(finite)


def mean(values: Sequence[float]) -> float:
    finite = finite_values(values)
    if not finite:
        return math.nan
    return sum(finite) / len(finite)


def population_stddev(values: Sequence[float]) -> float:
    finite = finite_values(values)
    if not finite:
        return math.nan
    mu = sum(finite) / len(finite)
    return math.sqrt(sum((v - mu) ** 2 for v in finite) / len(finite))


def sample_stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1); 1.0 with fewer than two values."""
    finite = finite_values(values)
    if len(finite) < 2:
        return 1.0
    mu = sum(finite) / len(finite)
    return math.sqrt(sum((v - mu) ** 2 for v in finite) / (len(finite) - 1))


def z_score(x: float, series: Sequence[float]) -> float:
    """
    (x - mean) / population stddev of series.

    Returns 0.0 when the series has zero variance and NaN when
    x is non-finite or the series has no finite values.
    """
    if not is_finite(x):
        return math.nan
    finite = finite_values(series)
    if not finite:
        return math.nan
    std = population_stddev(finite)
    if std == 0:
        return 0.0
    return (x - mean(finite)) / std


def logistic01(x: float, k: float = 3.0, x0: float = 0.5) -> float:
    """1 / (1 + e^(-k (x - x0))), NaN for non-finite input."""
    if not is_finite(x):
        return math.nan
    return 1.0 / (1.0 + math.exp(-k * (x - x0)))


def tanh01(z: float, scale: float = 2.0) -> float:
    """Map a z-score into [0, 1] via 0.5 * (1 + tanh(z / scale))."""
    if not is_finite(z):
        return math.nan
    return 0.5 * (1.0 + math.tanh(z / scale))


def risk_from_percentile(p: float, invert: bool = False, k: float = 3.0) -> Optional[int]:
    """
    Convert a percentile in [0, 1] to an integer risk score.

    ``invert=True`` is used when a high raw value means LOW risk
    (e.g. rising liquidity). Returns None for invalid input.
    """
    if not is_finite(p) or p < 0.0 or p > 1.0:
        return None
    x = 1.0 - p if invert else p
    return round_half_up(100.0 * logistic01(x, k))


def risk_from_z(z: float, direction: int = 1, scale: float = 2.0, clip: float = 4.0) -> Optional[int]:
    """Convert a z-score to an integer risk score via tanh01."""
    if not is_finite(z):
        return None
    directed = direction * clamp(z, -clip, clip)
    return round_half_up(100.0 * tanh01(directed, scale))


# ============================================================
# SERIES HELPERS
# ============================================================


def sma(values: Sequence[float], n: int) -> List[float]:
    """Simple moving average; NaN until n finite values are seen."""
    out = [math.nan] * len(values)
    window: List[float] = []
    total = 0.0
    for i, v in enumerate(values):
        if not is_finite(v):
            continue
        window.append(v)
        total += v
        if len(window) > n:
            total -= window.pop(0)
        if len(window) >= n:
            out[i] = total / n
    return out


def rsi(closes: Sequence[float], period: int = 14) -> List[float]:
    """Wilder-smoothed RSI; NaN until period + 1 closes are available."""
    out = [math.nan] * len(closes)
    if len(closes) < period + 1:
        return out

    avg_gain = 0.0
    avg_loss = 0.0
    for i in range(1, period + 1):
        change = closes[i] - closes[i - 1]
        if change > 0:
            avg_gain += change
        else:
            avg_loss -= change
    avg_gain /= period
    avg_loss /= period

    def _value(gain: float, loss: float) -> float:
        if loss == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + gain / loss)

    out[period] = _value(avg_gain, avg_loss)
    for i in range(period + 1, len(closes)):
        change = closes[i] - closes[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _value(avg_gain, avg_loss)
    return out


def rolling_sum(values: Sequence[float], window: int) -> List[float]:
    """Trailing sums over ``window`` values; the first window-1 entries are dropped."""
    if window <= 0 or len(values) < window:
        return []
    sums = []
    total = sum(values[:window])
    sums.append(total)
    for i in range(window, len(values)):
        total += values[i] - values[i - window]
        sums.append(total)
    return sums


def pct_change(values: Sequence[float], periods: int) -> List[float]:
    """Fractional change over ``periods`` steps; NaN where undefined."""
    out = []
    for i in range(periods, len(values)):
        base = values[i - periods]
        out.append((values[i] - base) / abs(base) if base else math.nan)
    return out


def ols(xs: Sequence[float], ys: Sequence[float], min_points: int = 10) -> Optional[Tuple[float, float]]:
    """
    Ordinary least squares fit of y = a + b * x.

    Returns (a, b), or None with fewer than ``min_points``
    finite pairs or a degenerate x spread.
    """
    if len(xs) != len(ys):
        return None
    pairs = [(x, y) for x, y in zip(xs, ys) if is_finite(x) and is_finite(y)]
    n = len(pairs)
    if n < min_points:
        return None

    sx = sum(p[0] for p in pairs)
    sy = sum(p[1] for p in pairs)
    sxx = sum(p[0] * p[0] for p in pairs)
    sxy = sum(p[0] * p[1] for p in pairs)

    den = n * sxx - sx * sx
    if abs(den) < 1e-10:
        return None
    b = (n * sxy - sx * sy) / den
    a = (sy - b * sx) / n
    return a, b


_WEEK_SECONDS = 7 * 24 * 60 * 60


def daily_to_weekly(points: Sequence[SeriesPoint]) -> List[SeriesPoint]:
    """
    Resample daily closes to weekly closes.

    Weeks are epoch-aligned buckets of seven days; each bucket
    keeps its last positive close.
    """
    weekly: List[SeriesPoint] = []
    current_week: Optional[int] = None
    last: Optional[SeriesPoint] = None

    for point in sorted(points, key=lambda p: p.timestamp):
        if not is_finite(point.value) or point.value <= 0:
            continue
        week = int(_timestamp(point.timestamp) // _WEEK_SECONDS)
        if current_week is not None and week != current_week and last is not None:
            weekly.append(last)
        current_week = week
        last = point

    if last is not None:
        weekly.append(last)
    return weekly


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _timestamp(value: datetime) -> float:
    return as_utc(value).timestamp()
