"""
Spot ETF flows scorer.

Signal: 21-day rolling sum of daily net creations/redemptions.
Sustained inflows mean lower risk (inverted).
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..normalization import rolling_sum
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading, derive_series


FLOW_WINDOW = 21


class EtfFlowsScorer(BaseFactorScorer):
    key = "etf_flows"

    def __init__(self, window: int = FLOW_WINDOW) -> None:
        self.window = window

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("flows")
        if not self.has_samples(points, factor_config) or len(points) < self.window:
            return {}

        sums = rolling_sum([p.value for p in points], self.window)
        return {
            "flow_sum": SignalReading(
                name="flow_sum",
                label=f"Flows {self.window}d sum",
                history=derive_series(points[self.window - 1:], sums),
                invert=True,
            ),
        }
