"""
Funding & leverage scorer.

Signals (both: higher = more risk):
- funding_magnitude: |7-day mean funding rate|
- funding_momentum:  7-day mean minus 30-day mean
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..normalization import is_finite
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading, derive_series, moving_average


SHORT_WINDOW = 7
LONG_WINDOW = 30


class TermLeverageScorer(BaseFactorScorer):
    key = "term_leverage"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("funding")
        if not self.has_samples(points, factor_config) or len(points) < LONG_WINDOW:
            return {}

        rates = [p.value for p in points]
        short = moving_average(rates, SHORT_WINDOW)
        long_ = moving_average(rates, LONG_WINDOW)

        magnitude = [abs(v) if is_finite(v) else v for v in short]
        momentum = [
            s - l if is_finite(s) and is_finite(l) else float("nan")
            for s, l in zip(short, long_)
        ]

        return {
            "funding_magnitude": SignalReading(
                name="funding_magnitude",
                label="Funding |7d|",
                history=derive_series(points, magnitude),
                invert=False,
            ),
            "funding_momentum": SignalReading(
                name="funding_momentum",
                label="Funding 7d-30d",
                history=derive_series(points, momentum),
                invert=False,
            ),
        }
