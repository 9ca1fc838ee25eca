"""
Spike Adjustment - EWMA Volatility.

Today's log move against the last completed daily close,
standardized by EWMA volatility of recent daily returns.

    r     = ln(spot / ref_close)
    sigma = max(sqrt(ewma variance), sigma_floor)
    z     = clip(r / sigma, +/- z_clip)
    adj   = round(max_points * tanh(z / z_scale))

By default up moves add risk and down moves remove it. With
``down_moves_raise_risk`` the delta is |adj| for down moves.
Never raises: failures give adj_pts = 0 with a reason.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..config import SpikeAdjustmentConfig
from ..normalization import clamp, is_finite, round_half_up
from ..types import AdjustmentKind, AdjustmentResult, SeriesPoint


logger = logging.getLogger(__name__)


MIN_CLOSES = 3


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def ewma_sigma(closes: Sequence[float], lookback_days: int, ewma_lambda: float, sigma_floor: float) -> float:
    """
    EWMA daily volatility over the last ``lookback_days + 1`` log returns.

    The variance is seeded with the mean squared return, then
    updated v = lambda * v + (1 - lambda) * r^2 for each return.
    """
    rets = [
        math.log(b / a)
        for a, b in zip(closes[:-1], closes[1:])
        if a > 0 and b > 0
    ][-(lookback_days + 1):]

    if rets:
        v = sum(r * r for r in rets) / len(rets)
    else:
        v = sigma_floor * sigma_floor
    for r in rets:
        v = ewma_lambda * v + (1.0 - ewma_lambda) * r * r
    return max(math.sqrt(v), sigma_floor)


def compute_spike_adjustment(
    closes: Sequence[SeriesPoint],
    spot: Optional[float],
    as_of: datetime,
    config: SpikeAdjustmentConfig,
) -> AdjustmentResult:
    """
    Compute the volatility spike adjustment as of ``as_of``.

    Only closes dated before the ``as_of`` UTC day are treated as
    completed; the latest of them is the reference close.
    """
    kind = AdjustmentKind.SPIKE
    if not config.enabled:
        return AdjustmentResult.zero(kind, "disabled")

    as_of = _aware(as_of)
    completed = sorted(
        (p for p in closes if _aware(p.timestamp).date() < as_of.date() and is_finite(p.value)),
        key=lambda p: p.timestamp,
    )
    if len(completed) < MIN_CLOSES:
        return AdjustmentResult.zero(kind, "insufficient_data", closes=len(completed))
    if spot is None or not is_finite(spot):
        return AdjustmentResult.zero(kind, "missing_spot")

    ref = completed[-1]
    if ref.value <= 0 or spot <= 0:
        return AdjustmentResult.zero(kind, "invalid_prices", ref_close=ref.value, spot=spot)

    try:
        r = math.log(spot / ref.value)
        sigma = ewma_sigma(
            [p.value for p in completed],
            config.lookback_days,
            config.ewma_lambda,
            config.sigma_floor,
        )
        z = clamp(r / sigma, -config.z_clip, config.z_clip)

        adj = math.tanh(z / config.z_scale) * config.max_points
        if config.down_moves_raise_risk and r < 0:
            adj = abs(adj)

        return AdjustmentResult(
            kind=kind,
            adj_pts=round_half_up(adj),
            residual_or_z=z,
            last_utc=as_of,
            source=f"EWMA({config.lookback_days}d, lambda={config.ewma_lambda}) over daily returns",
            metrics={
                "r_1d": r,
                "sigma": sigma,
                "ref_close": ref.value,
                "ref_close_utc": ref.timestamp.isoformat(),
                "spot": spot,
            },
        )
    except (ArithmeticError, ValueError) as e:
        logger.error(f"Spike adjustment failed: {e}")
        return AdjustmentResult.zero(kind, f"calculation_error: {e}")
