"""
Composite Risk Engine - Package.

============================================================
PURPOSE
============================================================
Daily 0-100 market risk composite built from independently
scored factors, grouped into weighted pillars, nudged by two
bounded adjustments and classified into a band.

============================================================
PILLARS
============================================================
1. LIQUIDITY (35): stablecoins, net liquidity, ETF flows
2. MOMENTUM / VALUATION (25): trend valuation, on-chain
3. TERM STRUCTURE / LEVERAGE (20): funding
4. MACRO OVERLAY (10): dollar, rates, volatility
5. SOCIAL INTEREST (10): sentiment

Only fresh factors count; weights renormalize over what is
available. When nothing is fresh the composite is undefined.

============================================================
USAGE
============================================================
    from composite_risk import CompositeRiskEngine, FactorInput

    engine = CompositeRiskEngine()
    snapshot = engine.compute(inputs, as_of=now)
    print(format_snapshot_summary(snapshot))

============================================================
"""

from .types import (
    AdjustmentKind,
    AdjustmentResult,
    AlertLogEntry,
    AlertState,
    AlertType,
    Band,
    CompositeRiskError,
    CompositeSnapshot,
    CompositeUndefinedError,
    ConfigInvariantViolation,
    FactorInput,
    FactorResult,
    FactorStatus,
    InsufficientDataError,
    PillarResult,
    ScorerResult,
    SeriesPoint,
    SourceUnavailableError,
)
from .config import (
    ENGINE_VERSION,
    CompositeRiskConfig,
    get_default_config,
    load_config,
)
from .bands import BandClassifier
from .engine import (
    PRICE_INPUT_KEY,
    CompositeRiskEngine,
    format_snapshot_summary,
    score_risk,
)
from .state_machine import AlertDetector, AlertLog, InMemoryAlertLog


__all__ = [
    # Types
    "AdjustmentKind",
    "AdjustmentResult",
    "AlertLogEntry",
    "AlertState",
    "AlertType",
    "Band",
    "CompositeSnapshot",
    "FactorInput",
    "FactorResult",
    "FactorStatus",
    "PillarResult",
    "ScorerResult",
    "SeriesPoint",
    # Errors
    "CompositeRiskError",
    "CompositeUndefinedError",
    "ConfigInvariantViolation",
    "InsufficientDataError",
    "SourceUnavailableError",
    # Config
    "ENGINE_VERSION",
    "CompositeRiskConfig",
    "get_default_config",
    "load_config",
    # Engine
    "BandClassifier",
    "PRICE_INPUT_KEY",
    "CompositeRiskEngine",
    "format_snapshot_summary",
    "score_risk",
    # Alerts
    "AlertDetector",
    "AlertLog",
    "InMemoryAlertLog",
]
