"""
Factor Scorers - Base Contract.

============================================================
PURPOSE
============================================================
Every factor scorer shares one contract:

    score(input, factor_config, normalization, as_of) -> ScorerResult

A scorer derives one or more raw signals from its input
series. Each signal is percentile-ranked against its own
history (limited to the factor's lookback window) and mapped
to 0-100 with an explicit direction flag. Signals are then
blended with the factor's sub-weights, renormalized over the
signals that could be computed.

============================================================
FAILURE HANDLING
============================================================
Scorers raise InsufficientDataError when no signal can be
computed. The engine converts that into an excluded factor
with the reason recorded; scorers never invent a score.

============================================================
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from ..aggregation import blend_sub_scores
from ..config import FactorConfig, NormalizationConfig
from ..normalization import (
    as_utc,
    finite_values,
    is_finite,
    percentile_rank,
    risk_from_percentile,
    round_half_up,
    winsorize,
    z_score,
)
from ..types import FactorInput, InsufficientDataError, ScorerResult, SeriesPoint


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalReading:
    """
    One raw signal ready for normalization.

    ``history`` is the signal's own time series; its last point
    is the latest reading. ``invert`` is True when a high raw
    value means LOW risk.
    """

    name: str
    label: str
    history: List[SeriesPoint]
    invert: bool
    unit: str = ""
    extra: Dict[str, float] = field(default_factory=dict)

    @property
    def latest(self) -> Optional[SeriesPoint]:
        return self.history[-1] if self.history else None


def derive_series(points: Sequence[SeriesPoint], values: Sequence[float]) -> List[SeriesPoint]:
    """Pair derived values with the timestamps of their source points, dropping non-finite ones."""
    return [
        SeriesPoint(timestamp=p.timestamp, value=float(v))
        for p, v in zip(points, values)
        if is_finite(v)
    ]


def moving_average(values: Sequence[float], n: int) -> List[float]:
    """Trailing mean over up to n values (partial windows allowed once n values exist)."""
    out = [math.nan] * len(values)
    for i in range(n - 1, len(values)):
        window = finite_values(values[i - n + 1:i + 1])
        if window:
            out[i] = sum(window) / len(window)
    return out


class BaseFactorScorer(ABC):
    """
    Abstract base class for factor scorers.

    Subclasses set ``key`` and implement ``compute_signals``.
    """

    key: str = ""

    # --------------------------------------------------------
    # SUBCLASS HOOK
    # --------------------------------------------------------

    @abstractmethod
    def compute_signals(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
    ) -> Dict[str, Optional[SignalReading]]:
        """
        Derive raw signals from the input series.

        Returns a mapping of sub-signal name to reading, with
        None for signals whose inputs are missing or too short.
        """

    # --------------------------------------------------------
    # SCORING
    # --------------------------------------------------------

    def score(
        self,
        factor_input: FactorInput,
        factor_config: FactorConfig,
        normalization: NormalizationConfig,
        as_of: datetime,
    ) -> ScorerResult:
        """
        Score the factor as of ``as_of``.

        Raises:
            InsufficientDataError: If no sub-signal can be scored.
        """
        if factor_input.sub_scores:
            return self._score_presupplied(factor_input, factor_config)

        as_of = as_utc(as_of)
        trimmed = self._trim_to_as_of(factor_input, as_of)
        signals = self.compute_signals(trimmed, factor_config)

        sub_scores: Dict[str, Optional[int]] = {}
        details: List[str] = []
        last_stamps: List[datetime] = []
        window_start = as_of - timedelta(days=factor_config.lookback_days)

        for name in factor_config.subweights:
            reading = signals.get(name)
            if reading is None or reading.latest is None:
                sub_scores[name] = None
                details.append(f"{name}: unavailable")
                continue

            history = [p.value for p in reading.history if p.timestamp >= window_start]
            # Derived signals can be shorter than min_samples by construction;
            # only a window that cuts the history below it disqualifies.
            required = min(factor_config.min_samples, len(reading.history))
            if len(history) < required:
                sub_scores[name] = None
                details.append(
                    f"{name}: {len(history)} points in lookback window "
                    f"(need {factor_config.min_samples})"
                )
                continue
            latest = reading.latest.value
            p = percentile_rank(history, latest)
            risk = risk_from_percentile(p, invert=reading.invert, k=normalization.logistic_k)
            sub_scores[name] = risk
            if risk is None:
                details.append(f"{name}: outside lookback window")
                continue

            bounded = winsorize(history, normalization.winsor_lower_pct, normalization.winsor_upper_pct)
            z = z_score(latest, bounded)
            direction = "inverted" if reading.invert else "direct"
            details.append(
                f"{reading.label}: {latest:.6g}{reading.unit} "
                f"(pct={p:.2f}, z={z:.2f}, {direction}) -> {risk}"
            )
            last_stamps.append(reading.latest.timestamp)

        blended = blend_sub_scores(sub_scores, factor_config.subweights)
        if blended is None:
            raise InsufficientDataError(
                f"{self.key}: no sub-signal could be scored", factor=self.key
            )

        return ScorerResult(
            score=round_half_up(blended),
            last_utc=min(last_stamps) if last_stamps else None,
            source=factor_input.source,
            details=details,
            sub_scores=sub_scores,
        )

    def _score_presupplied(self, factor_input: FactorInput, factor_config: FactorConfig) -> ScorerResult:
        """Blend sub-scores that a collaborator already put on the 0-100 scale."""
        sub_scores: Dict[str, Optional[int]] = {}
        for name in factor_config.subweights:
            value = factor_input.sub_scores.get(name)
            if value is None or not is_finite(value):
                sub_scores[name] = None
                continue
            if not 0.0 <= float(value) <= 100.0:
                raise InsufficientDataError(
                    f"{self.key}: sub-score {name}={value} outside [0, 100]", factor=self.key
                )
            sub_scores[name] = round_half_up(float(value))

        blended = blend_sub_scores(sub_scores, factor_config.subweights)
        if blended is None:
            raise InsufficientDataError(f"{self.key}: no pre-scored sub-signal", factor=self.key)

        return ScorerResult(
            score=round_half_up(blended),
            last_utc=factor_input.fetched_at,
            source=factor_input.source,
            details=[f"{name}: {value}" for name, value in sub_scores.items()],
            sub_scores=sub_scores,
        )

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    @staticmethod
    def _trim_to_as_of(factor_input: FactorInput, as_of: datetime) -> FactorInput:
        """Drop observations after ``as_of`` so back-dated runs see only past data."""
        series = {
            name: [
                SeriesPoint(timestamp=as_utc(p.timestamp), value=p.value)
                for p in points
                if as_utc(p.timestamp) <= as_of
            ]
            for name, points in factor_input.series.items()
        }
        return FactorInput(
            key=factor_input.key,
            series=series,
            source=factor_input.source,
            fetched_at=factor_input.fetched_at,
            error=factor_input.error,
        )

    @staticmethod
    def has_samples(points: Sequence[SeriesPoint], factor_config: FactorConfig) -> bool:
        return len(points) >= factor_config.min_samples
