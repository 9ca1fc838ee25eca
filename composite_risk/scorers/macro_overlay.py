"""
Macro overlay scorer.

Signals (all: higher = more risk):
- dxy_change:  20-day % change of the broad dollar index
- us2y_change: 20-day change of the 2-year Treasury yield
- vix_level:   VIX close
"""

from typing import Dict, List, Optional

from ..config import FactorConfig
from ..normalization import pct_change
from ..types import FactorInput, SeriesPoint
from .base import BaseFactorScorer, SignalReading, derive_series


CHANGE_WINDOW = 20


def _diff(points: List[SeriesPoint], periods: int) -> List[float]:
    return [points[i].value - points[i - periods].value for i in range(periods, len(points))]


class MacroOverlayScorer(BaseFactorScorer):
    key = "macro_overlay"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        signals: Dict[str, Optional[SignalReading]] = {}

        dxy = factor_input.get_series("dxy")
        if self.has_samples(dxy, factor_config) and len(dxy) > CHANGE_WINDOW:
            change = pct_change([p.value for p in dxy], CHANGE_WINDOW)
            signals["dxy_change"] = SignalReading(
                name="dxy_change",
                label="DXY 20d change",
                history=derive_series(dxy[CHANGE_WINDOW:], [c * 100.0 for c in change]),
                invert=False,
                unit="%",
            )

        us2y = factor_input.get_series("us2y")
        if self.has_samples(us2y, factor_config) and len(us2y) > CHANGE_WINDOW:
            signals["us2y_change"] = SignalReading(
                name="us2y_change",
                label="US2Y 20d change",
                history=derive_series(us2y[CHANGE_WINDOW:], _diff(us2y, CHANGE_WINDOW)),
                invert=False,
                unit="pp",
            )

        vix = factor_input.get_series("vix")
        if self.has_samples(vix, factor_config):
            signals["vix_level"] = SignalReading(
                name="vix_level",
                label="VIX",
                history=vix,
                invert=False,
            )

        return signals
