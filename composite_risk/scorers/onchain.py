"""
On-chain activity scorer.

Signals:
- puell_multiple: miner revenue vs. its yearly mean (higher = more risk)
- fees:           network fees, 7-day mean (higher activity = lower risk)
- mempool:        mempool size, 7-day mean (higher activity = lower risk)

Each signal is optional; the factor is scored from whichever
signals have enough history.
"""

from typing import Dict, Optional

from ..config import FactorConfig
from ..types import FactorInput
from .base import BaseFactorScorer, SignalReading, derive_series, moving_average


ACTIVITY_SMOOTHING = 7


class OnchainScorer(BaseFactorScorer):
    key = "onchain"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        signals: Dict[str, Optional[SignalReading]] = {}

        puell = factor_input.get_series("puell_multiple")
        if self.has_samples(puell, factor_config):
            signals["puell_multiple"] = SignalReading(
                name="puell_multiple",
                label="Puell Multiple",
                history=puell,
                invert=False,
                unit="x",
            )

        for name, label in (("fees", "Fees 7d"), ("mempool", "Mempool 7d")):
            points = factor_input.get_series(name)
            if not self.has_samples(points, factor_config):
                continue
            smoothed = moving_average([p.value for p in points], ACTIVITY_SMOOTHING)
            signals[name] = SignalReading(
                name=name,
                label=label,
                history=derive_series(points, smoothed),
                invert=True,
            )

        return signals
