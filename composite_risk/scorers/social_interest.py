"""
Social interest scorer.

Signal: Fear & Greed index level. Greed means crowding, so a
higher reading is higher risk (not inverted).
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading


class SocialInterestScorer(BaseFactorScorer):
    key = "social_interest"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("fear_greed")
        if not self.has_samples(points, factor_config):
            return {}
        return {
            "fear_greed": SignalReading(
                name="fear_greed",
                label="Fear & Greed",
                history=points,
                invert=False,
            ),
        }
