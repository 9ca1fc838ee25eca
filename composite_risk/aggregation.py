"""
Composite Risk Engine - Aggregation.

============================================================
PURPOSE
============================================================
Weighted blending with graceful degradation.

Two levels use the same rule:
1. Sub-signals inside a factor (sub-weights)
2. Factors inside a pillar, pillars inside the composite

============================================================
RENORMALIZATION RULE
============================================================
Given configured weights w_i and the set A of available
items, each available item gets w_i / sum(w_j for j in A).
Unavailable items get 0. If A is empty there is no result:
the caller reports None, never a default value.

Example:
    Pillars 35/25/20/10/10, leverage excluded
    -> liquidity 0.4375, momentum 0.3125, macro 0.125, social 0.125

============================================================
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .config import CompositeRiskConfig, FactorConfig
from .types import ConfigInvariantViolation, FactorResult, PillarResult


logger = logging.getLogger(__name__)


def renormalize_weights(weights: Mapping[str, float], available: Optional[set] = None) -> Dict[str, float]:
    """
    Renormalize weights over the available keys.

    Args:
        weights: Configured weights (any positive scale)
        available: Keys that are available; defaults to all keys

    Returns:
        Mapping of available key -> weight, summing to 1.0.
        Empty when nothing is available or total weight is zero.
    """
    keys = set(weights) if available is None else set(available) & set(weights)
    total = sum(weights[k] for k in keys)
    if not keys or total <= 0:
        return {}
    return {k: weights[k] / total for k in keys}


def blend_sub_scores(sub_scores: Mapping[str, Optional[float]], weights: Mapping[str, float]) -> Optional[float]:
    """
    Weighted average of the available sub-scores.

    Returns None when no weighted sub-score is available.
    """
    available = {k for k, v in sub_scores.items() if v is not None and k in weights}
    effective = renormalize_weights(weights, available)
    if not effective:
        return None
    return sum(effective[k] * float(sub_scores[k]) for k in effective)


def subweight_errors(factors: Iterable[FactorConfig], tolerance: float = 1e-6) -> List[str]:
    """Sub-weight violations per factor (empty when all are valid)."""
    errors: List[str] = []
    for factor in factors:
        if not factor.subweights:
            errors.append(f"factor {factor.key} has no sub-weights")
            continue
        if any(w < 0 for w in factor.subweights.values()):
            errors.append(f"factor {factor.key} has a negative sub-weight")
        total = sum(factor.subweights.values())
        if abs(total - 1.0) > tolerance:
            errors.append(f"factor {factor.key} sub-weights must sum to 1.0 (got {total:.6f})")
    return errors


def validate_subweights(config: CompositeRiskConfig) -> None:
    """
    Check every factor's sub-weights sum to 1.0.

    Raises:
        ConfigInvariantViolation: On any violation.
    """
    errors = subweight_errors(config.factors, config.normalization.weight_tolerance)
    if errors:
        raise ConfigInvariantViolation(errors)


def aggregate(
    factors: List[FactorResult],
    config: CompositeRiskConfig,
) -> Tuple[List[FactorResult], List[PillarResult], Optional[float]]:
    """
    Blend fresh factors into pillars and pillars into the composite.

    Only FRESH factors with a score contribute. Pillars with no
    fresh factor drop out of the top-level renormalization.

    Returns:
        (factors with effective weights, pillar results, raw composite or None)
    """
    by_pillar: Dict[str, List[FactorResult]] = {}
    for factor in factors:
        by_pillar.setdefault(factor.pillar, []).append(factor)

    weighted_factors: List[FactorResult] = []
    pillar_scores: Dict[str, float] = {}
    pillar_members: Dict[str, List[str]] = {}

    for pillar in config.pillars:
        members = by_pillar.get(pillar.key, [])
        pillar_members[pillar.key] = [f.key for f in members]

        fresh = {f.key: f for f in members if f.is_fresh}
        effective = renormalize_weights({f.key: f.weight_pct for f in members}, set(fresh))
        for factor in members:
            weighted_factors.append(replace(factor, effective_weight=effective.get(factor.key, 0.0)))

        if effective:
            pillar_scores[pillar.key] = sum(effective[k] * fresh[k].score for k in effective)

    configured = {p.key for p in config.pillars}
    for factor in factors:
        if factor.pillar not in configured:
            logger.warning(f"Factor {factor.key} has unknown pillar {factor.pillar!r}; weight 0")
            weighted_factors.append(replace(factor, effective_weight=0.0))

    pillar_effective = renormalize_weights(
        {p.key: p.weight_pct for p in config.pillars}, set(pillar_scores)
    )

    pillars = [
        PillarResult(
            key=p.key,
            label=p.label,
            weight_pct=p.weight_pct,
            score=pillar_scores.get(p.key),
            effective_weight=pillar_effective.get(p.key, 0.0),
            factor_keys=pillar_members.get(p.key, []),
        )
        for p in config.pillars
    ]

    if not pillar_effective:
        logger.warning("No fresh factors in any pillar; composite is undefined")
        return weighted_factors, pillars, None

    composite = sum(pillar_effective[k] * pillar_scores[k] for k in pillar_effective)
    return weighted_factors, pillars, composite


def aggregate_pillar_scores(pillar_scores: Mapping[str, Optional[float]], config: CompositeRiskConfig) -> Optional[float]:
    """
    Composite from already-computed pillar scores.

    Pillars mapped to None are treated as fully excluded.
    """
    available = {k for k, v in pillar_scores.items() if v is not None}
    effective = renormalize_weights({p.key: p.weight_pct for p in config.pillars}, available)
    if not effective:
        return None
    return sum(effective[k] * float(pillar_scores[k]) for k in effective)
