"""
Stablecoin supply scorer.

Signal: 30-day percentage change of aggregate stablecoin
supply. Growing supply is dry powder, so higher growth means
lower risk (inverted).
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..normalization import pct_change
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading, derive_series


GROWTH_WINDOW = 30


class StablecoinsScorer(BaseFactorScorer):
    key = "stablecoins"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("supply")
        if not self.has_samples(points, factor_config):
            return {}

        growth = pct_change([p.value for p in points], GROWTH_WINDOW)
        return {
            "supply_growth": SignalReading(
                name="supply_growth",
                label="Supply 30d change",
                history=derive_series(points[GROWTH_WINDOW:], [g * 100.0 for g in growth]),
                invert=True,
                unit="%",
            ),
        }
