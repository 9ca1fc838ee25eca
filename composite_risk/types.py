"""
Composite Risk Engine - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the Composite Risk Engine.

This module defines the enums, dataclasses and error types
shared by scorers, aggregation, adjustments, the band
classifier and the alert detector.

============================================================
DESIGN PRINCIPLES
============================================================
- All output types are immutable
- Enums for discrete state values
- A missing score is None, never a fabricated default
- Every result carries its timestamp, source and reason

============================================================
PILLARS AND FACTORS
============================================================
The composite is a weighted blend of pillars:

1. LIQUIDITY - Stablecoin supply, net liquidity, ETF flows
2. MOMENTUM - Trend/valuation and on-chain activity
3. LEVERAGE - Perpetual funding pressure
4. MACRO - Dollar, rates and volatility overlay
5. SOCIAL - Crowd sentiment

Each pillar is a weighted blend of its fresh factors.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# ENUMS
# ============================================================


class FactorStatus(str, Enum):
    """
    Freshness status of a factor.

    - FRESH: scored and within its TTL, contributes to the composite
    - STALE: scored but older than its TTL, excluded from blending
    - EXCLUDED: no score (insufficient data, source failure, disabled)
    """

    FRESH = "fresh"
    STALE = "stale"
    EXCLUDED = "excluded"


class AdjustmentKind(str, Enum):
    """The two bounded additive adjustments."""

    CYCLE = "cycle"
    SPIKE = "spike"


class AlertType(str, Enum):
    """Alert categories recorded in the alert log."""

    BAND_CHANGE = "band_change"
    ETF_ZERO_CROSS = "etf_zero_cross"
    FACTOR_STALE = "factor_stale"


class AlertState(str, Enum):
    """
    Per-type daily alert state.

    no_prior_state -> watching -> fired_today, reset each day by
    comparing yesterday against today.
    """

    NO_PRIOR_STATE = "no_prior_state"
    WATCHING = "watching"
    FIRED_TODAY = "fired_today"


# ============================================================
# INPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class SeriesPoint:
    """A single timestamped observation."""

    timestamp: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}


@dataclass(frozen=True)
class FactorInput:
    """
    Raw input for one factor as handed over by a data source.

    Either ``series`` (named raw series) or ``sub_scores``
    (pre-scored sub-signals on the 0-100 scale) may be provided.
    A non-empty ``error`` means the source failed and the factor
    must be excluded.
    """

    key: str
    series: Dict[str, List[SeriesPoint]] = field(default_factory=dict)
    sub_scores: Dict[str, Optional[float]] = field(default_factory=dict)
    source: str = "unknown"
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def get_series(self, name: str) -> List[SeriesPoint]:
        """Return a named series sorted by timestamp (empty when absent)."""
        return sorted(self.series.get(name, []), key=lambda p: p.timestamp)

    def last_timestamp(self) -> Optional[datetime]:
        """Most recent timestamp across all provided series."""
        stamps = [p.timestamp for points in self.series.values() for p in points]
        return max(stamps) if stamps else self.fetched_at


# ============================================================
# OUTPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class ScorerResult:
    """Output of a single factor scorer."""

    score: Optional[int]
    last_utc: Optional[datetime]
    source: str
    details: List[str] = field(default_factory=list)
    sub_scores: Dict[str, Optional[int]] = field(default_factory=dict)
    reason: Optional[str] = None


@dataclass(frozen=True)
class FactorResult:
    """
    Scored factor as it appears in the snapshot.

    ``effective_weight`` is the factor's share inside its pillar
    after renormalization over fresh factors (0 when not fresh).
    """

    key: str
    label: str
    pillar: str
    weight_pct: float
    score: Optional[int]
    status: FactorStatus
    last_utc: Optional[datetime] = None
    source: str = "unknown"
    reason: Optional[str] = None
    sub_scores: Dict[str, Optional[int]] = field(default_factory=dict)
    details: List[str] = field(default_factory=list)
    effective_weight: float = 0.0

    @property
    def is_fresh(self) -> bool:
        return self.status == FactorStatus.FRESH and self.score is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "pillar": self.pillar,
            "weight_pct": self.weight_pct,
            "score": self.score,
            "status": self.status.value,
            "last_utc": self.last_utc.isoformat() if self.last_utc else None,
            "source": self.source,
            "reason": self.reason,
            "sub_scores": dict(self.sub_scores),
            "details": list(self.details),
            "effective_weight": self.effective_weight,
        }


@dataclass(frozen=True)
class PillarResult:
    """Derived pillar aggregate. Never persisted on its own."""

    key: str
    label: str
    weight_pct: float
    score: Optional[float]
    effective_weight: float = 0.0
    factor_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "weight_pct": self.weight_pct,
            "score": self.score,
            "effective_weight": self.effective_weight,
            "factor_keys": list(self.factor_keys),
        }


@dataclass(frozen=True)
class AdjustmentResult:
    """Bounded additive adjustment in integer points."""

    kind: AdjustmentKind
    adj_pts: int = 0
    residual_or_z: Optional[float] = None
    last_utc: Optional[datetime] = None
    source: str = "unknown"
    reason: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def zero(cls, kind: AdjustmentKind, reason: str, **metrics: Any) -> "AdjustmentResult":
        """Fail-soft result: no adjustment, with the reason recorded."""
        return cls(kind=kind, adj_pts=0, reason=reason, metrics=dict(metrics))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "adj_pts": self.adj_pts,
            "residual_or_z": self.residual_or_z,
            "last_utc": self.last_utc.isoformat() if self.last_utc else None,
            "source": self.source,
            "reason": self.reason,
            "metrics": dict(self.metrics),
        }


@dataclass(frozen=True)
class Band:
    """Inclusive integer score range with its guidance."""

    key: str
    label: str
    lo: int
    hi: int
    color: str
    recommendation: str

    def contains(self, score: int) -> bool:
        return self.lo <= score <= self.hi

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "range": [self.lo, self.hi],
            "color": self.color,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class CompositeSnapshot:
    """
    Complete output of one daily run.

    ============================================================
    OUTPUT GUARANTEES
    ============================================================
    - composite_score: integer 0-100, or None when every factor
      is excluded
    - band: always the band containing composite_score (None
      only when composite_score is None)
    - adjustments: always contains both "cycle" and "spike"

    A snapshot is immutable; the next run supersedes it.
    ============================================================
    """

    as_of_utc: datetime
    composite_score: Optional[int]
    raw_composite: Optional[float]
    band: Optional[Band]
    factors: List[FactorResult] = field(default_factory=list)
    pillars: List[PillarResult] = field(default_factory=list)
    adjustments: Dict[str, AdjustmentResult] = field(default_factory=dict)
    config_digest: str = ""
    engine_version: str = "1.0.0"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_score(self) -> bool:
        return self.composite_score is not None

    @property
    def as_of_date(self) -> date:
        return self.as_of_utc.date()

    def require_score(self) -> int:
        """Return the composite score or raise CompositeUndefinedError."""
        if self.composite_score is None:
            raise CompositeUndefinedError("No fresh factors; composite score is undefined")
        return self.composite_score

    def get_factor(self, key: str) -> Optional[FactorResult]:
        for factor in self.factors:
            if factor.key == key:
                return factor
        return None

    @property
    def excluded_factors(self) -> List[str]:
        return [f.key for f in self.factors if not f.is_fresh]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "as_of_utc": self.as_of_utc.isoformat(),
            "composite_score": self.composite_score,
            "raw_composite": self.raw_composite,
            "band": self.band.to_dict() if self.band else None,
            "factors": [f.to_dict() for f in self.factors],
            "pillars": [p.to_dict() for p in self.pillars],
            "adjustments": {k: a.to_dict() for k, a in self.adjustments.items()},
            "config_digest": self.config_digest,
            "engine_version": self.engine_version,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class AlertLogEntry:
    """Append-only alert record. At most one per (UTC date, type)."""

    occurred_at: date
    type: AlertType
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> tuple:
        return (self.occurred_at, self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "occurred_at": self.occurred_at.isoformat(),
            "type": self.type.value,
            "details": dict(self.details),
        }


# ============================================================
# ERROR TYPES
# ============================================================


class CompositeRiskError(Exception):
    """Base exception for composite risk errors."""

    def __init__(self, message: str, factor: Optional[str] = None) -> None:
        super().__init__(message)
        self.factor = factor


class InsufficientDataError(CompositeRiskError):
    """
    Raised when a scorer or adjustment has fewer samples than it needs.

    NOTE: Always caught locally. The factor is excluded (or the
    adjustment is zero) with the reason recorded.
    """
    pass


class SourceUnavailableError(CompositeRiskError):
    """Raised by data sources after retries or timeout are exhausted."""
    pass


class ConfigInvariantViolation(CompositeRiskError):
    """Fatal configuration error detected at startup."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("Invalid configuration: " + "; ".join(errors))
        self.errors = list(errors)


class CompositeUndefinedError(CompositeRiskError):
    """Raised when a caller insists on a score that does not exist."""
    pass
