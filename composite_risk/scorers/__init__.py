"""
Factor Scorers.

One scorer per factor key, sharing the BaseFactorScorer
contract. Scorers are looked up by key through the registry.
"""

from typing import Dict, Optional, Type

from .base import BaseFactorScorer, SignalReading, derive_series
from .etf_flows import EtfFlowsScorer
from .macro_overlay import MacroOverlayScorer
from .net_liquidity import NetLiquidityScorer
from .onchain import OnchainScorer
from .social_interest import SocialInterestScorer
from .stablecoins import StablecoinsScorer
from .term_leverage import TermLeverageScorer
from .trend_valuation import TrendValuationScorer


SCORER_REGISTRY: Dict[str, Type[BaseFactorScorer]] = {
    scorer.key: scorer
    for scorer in (
        TrendValuationScorer,
        OnchainScorer,
        StablecoinsScorer,
        NetLiquidityScorer,
        EtfFlowsScorer,
        TermLeverageScorer,
        MacroOverlayScorer,
        SocialInterestScorer,
    )
}


def get_scorer(key: str) -> Optional[BaseFactorScorer]:
    """Instantiate the scorer registered for a factor key, or None."""
    scorer_cls = SCORER_REGISTRY.get(key)
    return scorer_cls() if scorer_cls else None


def default_scorers() -> Dict[str, BaseFactorScorer]:
    return {key: cls() for key, cls in SCORER_REGISTRY.items()}


__all__ = [
    "BaseFactorScorer",
    "SignalReading",
    "derive_series",
    "SCORER_REGISTRY",
    "get_scorer",
    "default_scorers",
    "TrendValuationScorer",
    "OnchainScorer",
    "StablecoinsScorer",
    "NetLiquidityScorer",
    "EtfFlowsScorer",
    "TermLeverageScorer",
    "MacroOverlayScorer",
    "SocialInterestScorer",
]
