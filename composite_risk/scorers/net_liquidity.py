"""
Net liquidity scorer.

Signal: Fed balance sheet minus reverse repo minus Treasury
General Account (WALCL - RRP - TGA). More liquidity means
lower risk (inverted).

Accepts either a ready ``net_liquidity`` series or the three
components; components are aligned by UTC date, carrying the
last known RRP/TGA value forward.
"""

from typing import Dict, List, Optional

from ..config import FactorConfig
from ..types import FactorInput, SeriesPoint
from .base import BaseFactorScorer, SignalReading


class NetLiquidityScorer(BaseFactorScorer):
    key = "net_liquidity"

    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        points = factor_input.get_series("net_liquidity") or self._compose(factor_input)
        if not self.has_samples(points, factor_config):
            return {}

        return {
            "net_liquidity": SignalReading(
                name="net_liquidity",
                label="Net liquidity",
                history=points,
                invert=True,
            ),
        }

    @staticmethod
    def _compose(factor_input: FactorInput) -> List[SeriesPoint]:
        walcl = factor_input.get_series("walcl")
        rrp = factor_input.get_series("rrp")
        tga = factor_input.get_series("tga")
        if not (walcl and rrp and tga):
            return []

        composed: List[SeriesPoint] = []
        i = j = 0
        last_rrp = last_tga = None
        for point in walcl:
            while i < len(rrp) and rrp[i].timestamp <= point.timestamp:
                last_rrp = rrp[i].value
                i += 1
            while j < len(tga) and tga[j].timestamp <= point.timestamp:
                last_tga = tga[j].value
                j += 1
            if last_rrp is None or last_tga is None:
                continue
            composed.append(SeriesPoint(point.timestamp, point.value - last_rrp - last_tga))
        return composed
