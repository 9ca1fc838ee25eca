"""
Composite Risk Engine - Main Orchestrator.

============================================================
PURPOSE
============================================================
The CompositeRiskEngine runs one daily scoring pass.

It orchestrates:
1. Factor scoring (one scorer per factor key)
2. Freshness classification against per-factor TTLs
3. Pillar and composite aggregation with renormalization
4. Cycle and spike adjustments
5. Band classification
6. Snapshot packaging

============================================================
DESIGN PRINCIPLES
============================================================
- Configuration is validated once, at construction
- Deterministic and stateless per call
- A factor failure degrades that factor, never the run
- No fresh factors -> composite None, never a default
- Adjustments are summed, clamped once, rounded once

============================================================
USAGE
============================================================
    from composite_risk import CompositeRiskEngine

    engine = CompositeRiskEngine()
    snapshot = engine.compute(inputs, as_of=datetime.now(timezone.utc), price=price_input)

    print(format_snapshot_summary(snapshot))

============================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional

from .adjustments import compute_cycle_adjustment, compute_spike_adjustment
from .aggregation import aggregate
from .bands import BandClassifier
from .config import CompositeRiskConfig, FactorConfig, get_default_config
from .normalization import clamp, round_half_up
from .scorers import BaseFactorScorer, default_scorers
from .types import (
    AdjustmentKind,
    AdjustmentResult,
    CompositeSnapshot,
    FactorInput,
    FactorResult,
    FactorStatus,
    InsufficientDataError,
)


logger = logging.getLogger(__name__)


PRICE_INPUT_KEY = "price"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class CompositeRiskEngine:
    """
    Main composite risk engine.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Score every configured factor
    - Mark factors fresh / stale / excluded
    - Blend into pillars and the composite
    - Apply bounded adjustments and classify the band

    ============================================================
    NON-RESPONSIBILITIES
    ============================================================
    - Fetching data (data_sources)
    - Persistence (repository)
    - Alert detection and delivery (state_machine, alerting)

    ============================================================
    """

    def __init__(
        self,
        config: Optional[CompositeRiskConfig] = None,
        scorers: Optional[Mapping[str, BaseFactorScorer]] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine configuration (uses defaults if not provided)
            scorers: Scorer override per factor key (uses the registry if not provided)

        Raises:
            ConfigInvariantViolation: If the configuration is invalid.
        """
        self._config = (config or get_default_config()).validate()
        self._classifier = BandClassifier(self._config.bands)
        self._scorers: Dict[str, BaseFactorScorer] = dict(scorers or default_scorers())
        self._digest = self._config.digest()

        logger.info(
            f"CompositeRiskEngine initialized (version={self._config.engine_version}, "
            f"digest={self._digest}, factors={len(self._config.factors)})"
        )

    @property
    def config(self) -> CompositeRiskConfig:
        return self._config

    @property
    def classifier(self) -> BandClassifier:
        return self._classifier

    @property
    def config_digest(self) -> str:
        return self._digest

    # --------------------------------------------------------
    # FACTORS
    # --------------------------------------------------------

    def _excluded(self, factor: FactorConfig, reason: str, source: str = "unknown") -> FactorResult:
        logger.info(f"Factor {factor.key} excluded: {reason}")
        return FactorResult(
            key=factor.key,
            label=factor.label,
            pillar=factor.pillar,
            weight_pct=factor.weight_pct,
            score=None,
            status=FactorStatus.EXCLUDED,
            source=source,
            reason=reason,
        )

    def score_factor(
        self,
        factor: FactorConfig,
        factor_input: Optional[FactorInput],
        as_of: datetime,
    ) -> FactorResult:
        """Score one factor and classify its freshness."""
        if not factor.enabled:
            return self._excluded(factor, "disabled")
        if factor_input is None:
            return self._excluded(factor, "no_input")
        if factor_input.failed:
            return self._excluded(factor, f"source_unavailable: {factor_input.error}", factor_input.source)

        scorer = self._scorers.get(factor.key)
        if scorer is None:
            return self._excluded(factor, "no_scorer", factor_input.source)

        try:
            result = scorer.score(factor_input, factor, self._config.normalization, as_of)
        except InsufficientDataError as e:
            return self._excluded(factor, f"insufficient_data: {e}", factor_input.source)
        except (ArithmeticError, ValueError, TypeError) as e:
            logger.warning(f"Factor {factor.key} scorer failed: {type(e).__name__}: {e}")
            return self._excluded(factor, f"calculation_error: {e}", factor_input.source)

        status = FactorStatus.FRESH
        reason = result.reason
        if result.last_utc is None:
            status = FactorStatus.STALE
            reason = "missing timestamp"
        else:
            age = as_of - _aware(result.last_utc)
            if age > timedelta(hours=factor.freshness_hours):
                status = FactorStatus.STALE
                reason = f"stale: {age.total_seconds() / 3600:.1f}h old (ttl {factor.freshness_hours:g}h)"
                logger.info(f"Factor {factor.key} {reason}")

        return FactorResult(
            key=factor.key,
            label=factor.label,
            pillar=factor.pillar,
            weight_pct=factor.weight_pct,
            score=result.score,
            status=status,
            last_utc=result.last_utc,
            source=result.source,
            reason=reason,
            sub_scores=result.sub_scores,
            details=result.details,
        )

    def score_factors(self, inputs: Mapping[str, FactorInput], as_of: datetime) -> List[FactorResult]:
        return [
            self.score_factor(factor, inputs.get(factor.key), as_of)
            for factor in self._config.factors
        ]

    # --------------------------------------------------------
    # ADJUSTMENTS
    # --------------------------------------------------------

    def compute_adjustments(
        self,
        price: Optional[FactorInput],
        as_of: datetime,
    ) -> Dict[str, AdjustmentResult]:
        """Both adjustments; each is zero with a reason when it cannot run."""
        if price is None or price.failed:
            reason = f"source_unavailable: {price.error}" if price is not None else "no_price_input"
            return {
                AdjustmentKind.CYCLE.value: AdjustmentResult.zero(AdjustmentKind.CYCLE, reason),
                AdjustmentKind.SPIKE.value: AdjustmentResult.zero(AdjustmentKind.SPIKE, reason),
            }

        closes = price.get_series("close")
        spot_points = [p for p in price.get_series("spot") if _aware(p.timestamp) <= as_of]
        spot = spot_points[-1].value if spot_points else None
        if spot is None:
            today = [p for p in closes if _aware(p.timestamp).date() == as_of.date()]
            spot = today[-1].value if today else None

        cycle = compute_cycle_adjustment(closes, as_of, self._config.cycle)
        spike = compute_spike_adjustment(closes, spot, as_of, self._config.spike)
        for adj in (cycle, spike):
            if adj.adj_pts == 0 and adj.reason:
                logger.info(f"{adj.kind.value} adjustment is 0: {adj.reason}")

        return {cycle.kind.value: cycle, spike.kind.value: spike}

    # --------------------------------------------------------
    # MAIN ENTRY POINT
    # --------------------------------------------------------

    def compute(
        self,
        inputs: Mapping[str, FactorInput],
        as_of: Optional[datetime] = None,
        price: Optional[FactorInput] = None,
    ) -> CompositeSnapshot:
        """
        Run one scoring pass.

        Args:
            inputs: Factor inputs keyed by factor key
            as_of: Run timestamp (defaults to now, UTC)
            price: Daily closes (and optional spot) for adjustments;
                falls back to inputs["price"]

        Returns:
            CompositeSnapshot for the as_of UTC date
        """
        as_of = _aware(as_of or datetime.now(timezone.utc))
        if price is None:
            price = inputs.get(PRICE_INPUT_KEY)

        # Step 1: Score factors
        factors = self.score_factors(inputs, as_of)

        # Step 2: Aggregate fresh factors
        factors, pillars, raw = aggregate(factors, self._config)

        # Step 3: Adjustments
        adjustments = self.compute_adjustments(price, as_of)

        # Step 4: Final score and band
        score = None
        band = None
        if raw is not None:
            delta = sum(a.adj_pts for a in adjustments.values())
            score = round_half_up(clamp(raw + delta, 0.0, 100.0))
            band = self._classifier.classify(score)
            logger.info(
                f"Composite {score} ({band.key}) raw={raw:.2f} adj={delta:+d} "
                f"fresh={sum(1 for f in factors if f.is_fresh)}/{len(factors)}"
            )
        else:
            logger.warning(f"No score available for {as_of.date()}: all factors excluded")

        return CompositeSnapshot(
            as_of_utc=as_of,
            composite_score=score,
            raw_composite=raw,
            band=band,
            factors=factors,
            pillars=pillars,
            adjustments=adjustments,
            config_digest=self._digest,
            engine_version=self._config.engine_version,
        )


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================


def score_risk(
    inputs: Mapping[str, FactorInput],
    as_of: Optional[datetime] = None,
    config: Optional[CompositeRiskConfig] = None,
) -> CompositeSnapshot:
    """
    One-shot scoring with a throwaway engine.

    For repeated scoring, create a CompositeRiskEngine instance.
    """
    return CompositeRiskEngine(config).compute(inputs, as_of=as_of)


def format_snapshot_summary(snapshot: Optional[CompositeSnapshot]) -> str:
    """
    Format a human-readable snapshot summary.

    Useful for logging, the CLI and alerts.
    """
    if snapshot is None:
        return "no snapshot yet"

    lines = [
        "=" * 50,
        f"COMPOSITE RISK {snapshot.as_of_date.isoformat()}",
        "=" * 50,
    ]
    if snapshot.composite_score is None:
        lines.append("Composite: no score available")
    else:
        lines.append(f"Composite: {snapshot.composite_score}/100")
        if snapshot.band:
            lines.append(f"Band: {snapshot.band.label} - {snapshot.band.recommendation}")

    lines.append("")
    lines.append("Factors:")
    for factor in snapshot.factors:
        score = "--" if factor.score is None else str(factor.score)
        note = f" ({factor.reason})" if factor.reason else ""
        lines.append(f"  {factor.label:<22} {score:>4}  {factor.status.value}{note}")

    lines.append("")
    lines.append("Adjustments:")
    for key, adj in snapshot.adjustments.items():
        note = f" ({adj.reason})" if adj.reason else ""
        lines.append(f"  {key:<8} {adj.adj_pts:+d}{note}")

    lines.append(f"Config digest: {snapshot.config_digest}")
    lines.append("=" * 50)
    return "\n".join(lines)
