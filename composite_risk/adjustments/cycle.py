"""
Cycle Adjustment - Power-Law Residual.

============================================================
PURPOSE
============================================================
Long-horizon valuation drift as a small additive delta.

1. Resample daily closes to weekly closes
2. Regress ln(price) on ln(days since anchor) (OLS)
3. Standardize the latest residual by the sample stddev
   of all residuals, clip to +/- z_clip
4. adj = round(max_points * tanh(z / z_scale))

Trading far above the long-run curve adds risk points;
trading far below removes them.

============================================================
FAIL-SOFT
============================================================
Disabled, too little history or a degenerate regression
all yield adj_pts = 0 with the reason recorded. This module
never raises.

============================================================
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Sequence

from ..config import CycleAdjustmentConfig
from ..normalization import clamp, daily_to_weekly, mean, ols, round_half_up, sample_stddev
from ..types import AdjustmentKind, AdjustmentResult, SeriesPoint


logger = logging.getLogger(__name__)


SOURCE = "Power-law residual (ln price vs ln time)"


def _anchor(config: CycleAdjustmentConfig) -> datetime:
    return datetime.strptime(config.anchor_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def compute_cycle_adjustment(
    closes: Sequence[SeriesPoint],
    as_of: datetime,
    config: CycleAdjustmentConfig,
) -> AdjustmentResult:
    """
    Compute the power-law residual adjustment as of ``as_of``.

    Args:
        closes: Daily closes (any order)
        as_of: Run timestamp; later observations are ignored
        config: Cycle adjustment settings

    Returns:
        AdjustmentResult with adj_pts in [-max_points, +max_points]
    """
    kind = AdjustmentKind.CYCLE
    if not config.enabled:
        return AdjustmentResult.zero(kind, "disabled")

    try:
        as_of = _aware(as_of)
        window_start = as_of - timedelta(days=365 * config.window_years)
        history = [
            p for p in closes
            if window_start <= _aware(p.timestamp) <= as_of
        ]
        weekly = daily_to_weekly(history)
        if len(weekly) < config.min_weekly_points:
            return AdjustmentResult.zero(kind, "insufficient_data", weekly_points=len(weekly))

        anchor = _anchor(config)
        xs, ys = [], []
        for point in weekly:
            days = max(1, math.floor((_aware(point.timestamp) - anchor).total_seconds() / 86400))
            xs.append(math.log(days))
            ys.append(math.log(point.value))

        fit = ols(xs, ys, min_points=config.min_weekly_points)
        if fit is None:
            return AdjustmentResult.zero(kind, "regression_failed", weekly_points=len(weekly))

        a, b = fit
        residuals = [y - (a + b * x) for x, y in zip(xs, ys)]
        std = sample_stddev(residuals)
        z = (residuals[-1] - mean(residuals)) / std if std > 0 else 0.0
        z = clamp(z, -config.z_clip, config.z_clip)

        adj_pts = round_half_up(config.max_points * math.tanh(z / config.z_scale))

        return AdjustmentResult(
            kind=kind,
            adj_pts=adj_pts,
            residual_or_z=z,
            last_utc=weekly[-1].timestamp,
            source=SOURCE,
            metrics={
                "intercept": a,
                "slope": b,
                "residual": residuals[-1],
                "weekly_points": len(weekly),
            },
        )
    except (ArithmeticError, ValueError) as e:
        logger.error(f"Cycle adjustment failed: {e}")
        return AdjustmentResult.zero(kind, f"calculation_error: {e}")
