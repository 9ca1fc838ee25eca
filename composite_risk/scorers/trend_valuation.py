"""
Trend & Valuation scorer.

Signals (all: higher reading = higher risk):
- mayer_multiple: close / 200-day SMA
- bmsb_distance:  distance from the bull market support band (20-week SMA)
- rsi:            Wilder RSI(14)
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..normalization import rsi, sma
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading, derive_series


MAYER_WINDOW = 200
BMSB_WINDOW = 140


class TrendValuationScorer(BaseFactorScorer):
    """Price-trend factor built from daily closes."""

    key = "trend_valuation"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("close")
        if not self.has_samples(points, factor_config):
            return {}

        closes = [p.value for p in points]
        sma200 = sma(closes, MAYER_WINDOW)
        sma140 = sma(closes, BMSB_WINDOW)

        mayer = [c / m if m else float("nan") for c, m in zip(closes, sma200)]
        bmsb = [(c - m) / m if m else float("nan") for c, m in zip(closes, sma140)]

        return {
            "mayer_multiple": SignalReading(
                name="mayer_multiple",
                label="Mayer Multiple",
                history=derive_series(points, mayer),
                invert=False,
                unit="x",
            ),
            "bmsb_distance": SignalReading(
                name="bmsb_distance",
                label="BMSB distance",
                history=derive_series(points, bmsb),
                invert=False,
            ),
            "rsi": SignalReading(
                name="rsi",
                label="RSI(14)",
                history=derive_series(points, rsi(closes)),
                invert=False,
            ),
        }
