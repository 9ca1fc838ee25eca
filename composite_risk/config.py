"""
Composite Risk Engine - Configuration.

============================================================
PURPOSE
============================================================
Defines all configuration dataclasses and tuned constants
for the Composite Risk Engine.

Every tuned constant (deadband multiplier, EWMA decay,
clip/scale bounds, TTLs) is a named field so it can be
overridden from a JSON file or the environment.

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable configurations
- Pillar weights are percentages summing to 100
- Factor weights are percentages summing to their pillar weight
- Sub-weights inside a factor sum to 1.0
- Invalid configuration is fatal at startup

============================================================
LOADING ORDER
============================================================
1. Built-in defaults (get_default_config)
2. JSON override file (COMPOSITE_RISK_CONFIG or explicit path)
3. Environment variables (FAST_SPIKE_*, POWER_LAW_*, ...)
4. validate()

============================================================
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from composite_risk.bands import band_table_errors
from composite_risk.types import Band, ConfigInvariantViolation


logger = logging.getLogger(__name__)


ENGINE_VERSION = "1.0.0"


# ============================================================
# PILLARS AND FACTORS
# ============================================================


@dataclass(frozen=True)
class PillarConfig:
    """A top-level pillar and its weight in percent."""

    key: str
    label: str
    weight_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "weight_pct": self.weight_pct}


@dataclass(frozen=True)
class FactorConfig:
    """
    Configuration for one factor.

    ============================================================
    FIELDS
    ============================================================
    weight_pct:      Share of the composite, in percent
    freshness_hours: TTL; older data marks the factor stale
    subweights:      Sub-signal weights, summing to 1.0
    min_samples:     Minimum history length for scoring
    lookback_days:   History window for percentile ranking
    ============================================================
    """

    key: str
    label: str
    pillar: str
    weight_pct: float
    freshness_hours: float = 48.0
    subweights: Dict[str, float] = field(default_factory=dict)
    min_samples: int = 30
    lookback_days: int = 1825
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "pillar": self.pillar,
            "weight_pct": self.weight_pct,
            "freshness_hours": self.freshness_hours,
            "subweights": dict(sorted(self.subweights.items())),
            "min_samples": self.min_samples,
            "lookback_days": self.lookback_days,
            "enabled": self.enabled,
        }


# ============================================================
# NORMALIZATION CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class NormalizationConfig:
    """Shared constants for the normalization primitives."""

    winsor_lower_pct: float = 0.05
    winsor_upper_pct: float = 0.95
    logistic_k: float = 3.0
    z_scale: float = 2.0
    z_clip: float = 4.0
    percentile_window_days: int = 1825
    weight_tolerance: float = 1e-6

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winsor_lower_pct": self.winsor_lower_pct,
            "winsor_upper_pct": self.winsor_upper_pct,
            "logistic_k": self.logistic_k,
            "z_scale": self.z_scale,
            "z_clip": self.z_clip,
            "percentile_window_days": self.percentile_window_days,
            "weight_tolerance": self.weight_tolerance,
        }


# ============================================================
# ADJUSTMENT CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class CycleAdjustmentConfig:
    """
    Long-horizon power-law residual adjustment.

    ln(price) is regressed on ln(days since anchor) over weekly
    closes; the latest residual z-score maps to at most
    +/- max_points.
    """

    enabled: bool = True
    anchor_date: str = "2010-07-18"
    window_years: int = 12
    min_weekly_points: int = 10
    z_clip: float = 4.0
    z_scale: float = 2.0
    max_points: int = 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "anchor_date": self.anchor_date,
            "window_years": self.window_years,
            "min_weekly_points": self.min_weekly_points,
            "z_clip": self.z_clip,
            "z_scale": self.z_scale,
            "max_points": self.max_points,
        }


@dataclass(frozen=True)
class SpikeAdjustmentConfig:
    """
    Short-horizon EWMA volatility spike adjustment.

    Today's log move versus the last completed close, scaled by
    EWMA volatility, maps to at most +/- max_points.
    """

    enabled: bool = True
    lookback_days: int = 60
    ewma_lambda: float = 0.94
    sigma_floor: float = 0.02
    z_clip: float = 5.0
    z_scale: float = 2.0
    max_points: int = 6
    down_moves_raise_risk: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "lookback_days": self.lookback_days,
            "ewma_lambda": self.ewma_lambda,
            "sigma_floor": self.sigma_floor,
            "z_clip": self.z_clip,
            "z_scale": self.z_scale,
            "max_points": self.max_points,
            "down_moves_raise_risk": self.down_moves_raise_risk,
        }


# ============================================================
# ALERTING CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class AlertingConfig:
    """
    Alert detection and dispatch settings.

    Deadband for the ETF zero-cross:
        max(round(deadband_multiplier * stddev(last N sums)), deadband_floor)
    """

    band_change_enabled: bool = True
    etf_zero_cross_enabled: bool = True
    factor_stale_enabled: bool = True
    flow_window_days: int = 21
    deadband_lookback: int = 180
    deadband_multiplier: float = 0.02
    deadband_floor: float = 1000.0

    # Optional outbound webhook
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_timeout_seconds: float = 10.0

    def to_dict(self) -> Dict[str, Any]:
        # Secrets stay out of the digest and the API.
        return {
            "band_change_enabled": self.band_change_enabled,
            "etf_zero_cross_enabled": self.etf_zero_cross_enabled,
            "factor_stale_enabled": self.factor_stale_enabled,
            "flow_window_days": self.flow_window_days,
            "deadband_lookback": self.deadband_lookback,
            "deadband_multiplier": self.deadband_multiplier,
            "deadband_floor": self.deadband_floor,
            "webhook_enabled": bool(self.webhook_url),
        }


# ============================================================
# SOURCE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class SourceConfig:
    """Fetch behavior for external data sources."""

    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_base: float = 2.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_base": self.retry_backoff_base,
        }


# ============================================================
# DEFAULT TABLES
# ============================================================


DEFAULT_PILLARS: Tuple[PillarConfig, ...] = (
    PillarConfig("liquidity", "Liquidity", 35.0),
    PillarConfig("momentum", "Momentum / Valuation", 25.0),
    PillarConfig("leverage", "Term Structure / Leverage", 20.0),
    PillarConfig("macro", "Macro Overlay", 10.0),
    PillarConfig("social", "Social Interest", 10.0),
)


DEFAULT_FACTORS: Tuple[FactorConfig, ...] = (
    FactorConfig(
        key="trend_valuation",
        label="Trend & Valuation",
        pillar="momentum",
        weight_pct=20.0,
        subweights={"mayer_multiple": 0.4, "bmsb_distance": 0.4, "rsi": 0.2},
        min_samples=210,
    ),
    FactorConfig(
        key="onchain",
        label="On-chain Activity",
        pillar="momentum",
        weight_pct=5.0,
        freshness_hours=24.0,
        subweights={"puell_multiple": 0.5, "fees": 0.25, "mempool": 0.25},
        min_samples=30,
    ),
    FactorConfig(
        key="stablecoins",
        label="Stablecoin Supply",
        pillar="liquidity",
        weight_pct=15.0,
        subweights={"supply_growth": 1.0},
        min_samples=40,
    ),
    FactorConfig(
        key="net_liquidity",
        label="Net Liquidity",
        pillar="liquidity",
        weight_pct=15.0,
        subweights={"net_liquidity": 1.0},
        min_samples=20,
    ),
    FactorConfig(
        key="etf_flows",
        label="Spot ETF Flows",
        pillar="liquidity",
        weight_pct=5.0,
        subweights={"flow_sum": 1.0},
        min_samples=21,
    ),
    FactorConfig(
        key="term_leverage",
        label="Funding & Leverage",
        pillar="leverage",
        weight_pct=20.0,
        freshness_hours=12.0,
        subweights={"funding_magnitude": 0.5, "funding_momentum": 0.5},
        min_samples=30,
    ),
    FactorConfig(
        key="macro_overlay",
        label="Macro Overlay",
        pillar="macro",
        weight_pct=10.0,
        subweights={"dxy_change": 0.4, "us2y_change": 0.3, "vix_level": 0.3},
        min_samples=40,
    ),
    FactorConfig(
        key="social_interest",
        label="Social Interest",
        pillar="social",
        weight_pct=10.0,
        subweights={"fear_greed": 1.0},
        min_samples=30,
    ),
)


DEFAULT_BANDS: Tuple[Band, ...] = (
    Band("aggressive_buy", "Aggressive Buying", 0, 14, "green",
         "Historically depressed/washed-out conditions."),
    Band("dca_buy", "Regular DCA Buying", 15, 34, "green",
         "Favorable long-term conditions; take your time."),
    Band("moderate_buy", "Moderate Buying", 35, 49, "yellow",
         "Moderate buying opportunities."),
    Band("hold_wait", "Hold & Wait", 50, 64, "orange",
         "Hold core; buy dips selectively."),
    Band("reduce_risk", "Reduce Risk", 65, 79, "red",
         "Trim risk; tighten risk controls."),
    Band("high_risk", "High Risk", 80, 100, "red",
         "Crowded tape; prone to disorderly moves."),
)


# ============================================================
# MASTER CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class CompositeRiskConfig:
    """
    Master configuration for the Composite Risk Engine.

    Aggregates pillars, factors, bands, normalization,
    adjustments, alerting and source settings.
    """

    pillars: Tuple[PillarConfig, ...] = DEFAULT_PILLARS
    factors: Tuple[FactorConfig, ...] = DEFAULT_FACTORS
    bands: Tuple[Band, ...] = DEFAULT_BANDS

    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    cycle: CycleAdjustmentConfig = field(default_factory=CycleAdjustmentConfig)
    spike: SpikeAdjustmentConfig = field(default_factory=SpikeAdjustmentConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)

    engine_version: str = ENGINE_VERSION

    def get_pillar(self, key: str) -> Optional[PillarConfig]:
        for pillar in self.pillars:
            if pillar.key == key:
                return pillar
        return None

    def get_factor(self, key: str) -> Optional[FactorConfig]:
        for factor in self.factors:
            if factor.key == key:
                return factor
        return None

    def factors_for_pillar(self, pillar_key: str) -> List[FactorConfig]:
        return [f for f in self.factors if f.pillar == pillar_key and f.enabled]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pillars": [p.to_dict() for p in self.pillars],
            "factors": [f.to_dict() for f in self.factors],
            "bands": [b.to_dict() for b in self.bands],
            "normalization": self.normalization.to_dict(),
            "cycle": self.cycle.to_dict(),
            "spike": self.spike.to_dict(),
            "alerting": self.alerting.to_dict(),
            "sources": self.sources.to_dict(),
            "engine_version": self.engine_version,
        }

    def digest(self) -> str:
        """Short, stable fingerprint of the effective configuration."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def collect_errors(self) -> List[str]:
        """Return every invariant violation (empty when valid)."""
        errors: List[str] = []
        tol = self.normalization.weight_tolerance

        pillar_keys = [p.key for p in self.pillars]
        if len(set(pillar_keys)) != len(pillar_keys):
            errors.append("duplicate pillar keys")

        pillar_total = sum(p.weight_pct for p in self.pillars)
        if abs(pillar_total - 100.0) > tol:
            errors.append(f"pillar weights must sum to 100 (got {pillar_total})")

        factor_keys = [f.key for f in self.factors]
        if len(set(factor_keys)) != len(factor_keys):
            errors.append("duplicate factor keys")

        for factor in self.factors:
            if factor.pillar not in pillar_keys:
                errors.append(f"factor {factor.key} references unknown pillar {factor.pillar}")
            if factor.weight_pct < 0:
                errors.append(f"factor {factor.key} has negative weight")
            if factor.freshness_hours <= 0:
                errors.append(f"factor {factor.key} freshness_hours must be positive")

        # aggregation imports this module
        from composite_risk.aggregation import subweight_errors

        errors.extend(subweight_errors(self.factors, tol))

        for pillar in self.pillars:
            enabled_total = sum(f.weight_pct for f in self.factors_for_pillar(pillar.key))
            if abs(enabled_total - pillar.weight_pct) > tol:
                errors.append(
                    f"pillar {pillar.key} weight {pillar.weight_pct} != "
                    f"sum of enabled factor weights {enabled_total}"
                )

        errors.extend(band_table_errors(self.bands))

        norm = self.normalization
        if not 0.0 <= norm.winsor_lower_pct < norm.winsor_upper_pct <= 1.0:
            errors.append("winsor percentiles must satisfy 0 <= lower < upper <= 1")
        if not 0.0 < self.spike.ewma_lambda < 1.0:
            errors.append("spike.ewma_lambda must be in (0, 1)")
        if self.spike.sigma_floor <= 0:
            errors.append("spike.sigma_floor must be positive")
        for name, adj in (("cycle", self.cycle), ("spike", self.spike)):
            if adj.z_scale <= 0 or adj.z_clip <= 0:
                errors.append(f"{name} z_scale and z_clip must be positive")
            if adj.max_points < 0:
                errors.append(f"{name}.max_points must be non-negative")
        if self.alerting.deadband_floor < 0 or self.alerting.deadband_multiplier < 0:
            errors.append("alerting deadband settings must be non-negative")

        return errors

    def validate(self) -> "CompositeRiskConfig":
        """Raise ConfigInvariantViolation on any violation; return self."""
        errors = self.collect_errors()
        if errors:
            raise ConfigInvariantViolation(errors)
        return self


# ============================================================
# DEFAULT CONFIGURATION
# ============================================================


def get_default_config() -> CompositeRiskConfig:
    """
    Get the default configuration.

    Five pillars (35/25/20/10/10), eight factors, six bands.
    """
    return CompositeRiskConfig()


# ============================================================
# OVERRIDES
# ============================================================


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def apply_overrides(config: CompositeRiskConfig, data: Dict[str, Any]) -> CompositeRiskConfig:
    """
    Apply a JSON-style override document to a configuration.

    Recognized keys: pillars ({key: weight_pct}), factors
    ({key: {field: value}}), bands (list of band dicts),
    normalization, cycle, spike, alerting, sources.
    """
    pillars = config.pillars
    if "pillars" in data:
        weights = data["pillars"]
        pillars = tuple(
            replace(p, weight_pct=float(weights.get(p.key, p.weight_pct))) for p in pillars
        )

    factors = config.factors
    if "factors" in data:
        overrides = data["factors"]
        updated = []
        for factor in factors:
            patch = overrides.get(factor.key)
            updated.append(replace(factor, **patch) if patch else factor)
        factors = tuple(updated)

    bands = config.bands
    if "bands" in data:
        bands = tuple(
            Band(
                key=b["key"],
                label=b.get("label", b["key"]),
                lo=int(b["range"][0]) if "range" in b else int(b["lo"]),
                hi=int(b["range"][1]) if "range" in b else int(b["hi"]),
                color=b.get("color", "gray"),
                recommendation=b.get("recommendation", ""),
            )
            for b in data["bands"]
        )

    return replace(
        config,
        pillars=pillars,
        factors=factors,
        bands=bands,
        normalization=replace(config.normalization, **data.get("normalization", {})),
        cycle=replace(config.cycle, **data.get("cycle", {})),
        spike=replace(config.spike, **data.get("spike", {})),
        alerting=replace(config.alerting, **data.get("alerting", {})),
        sources=replace(config.sources, **data.get("sources", {})),
    )


def apply_env_overrides(config: CompositeRiskConfig) -> CompositeRiskConfig:
    """Apply FAST_SPIKE_*, POWER_LAW_*, ETF_DEADBAND_* and ALERT_* variables."""
    spike = config.spike
    spike = replace(
        spike,
        enabled=_env_bool("FAST_SPIKE_ENABLED", spike.enabled),
        lookback_days=_env_int("FAST_SPIKE_LOOKBACK_DAYS", spike.lookback_days),
        ewma_lambda=_env_float("FAST_SPIKE_EWMA_LAMBDA", spike.ewma_lambda),
        sigma_floor=_env_float("FAST_SPIKE_SIGMA_FLOOR", spike.sigma_floor),
        z_clip=_env_float("FAST_SPIKE_Z_CLIP", spike.z_clip),
        z_scale=_env_float("FAST_SPIKE_Z_SCALE", spike.z_scale),
        max_points=_env_int("FAST_SPIKE_MAX_POINTS", spike.max_points),
        down_moves_raise_risk=_env_bool("FAST_SPIKE_DOWN_RAISES_RISK", spike.down_moves_raise_risk),
    )

    cycle = config.cycle
    cycle = replace(
        cycle,
        enabled=_env_bool("POWER_LAW_ENABLED", cycle.enabled),
        window_years=_env_int("POWER_LAW_WINDOW_YEARS", cycle.window_years),
        z_clip=_env_float("POWER_LAW_Z_CLIP", cycle.z_clip),
        z_scale=_env_float("POWER_LAW_Z_SCALE", cycle.z_scale),
        max_points=_env_int("POWER_LAW_MAX_POINTS", cycle.max_points),
    )

    alerting = config.alerting
    alerting = replace(
        alerting,
        deadband_multiplier=_env_float("ETF_DEADBAND_MULTIPLIER", alerting.deadband_multiplier),
        deadband_floor=_env_float("ETF_DEADBAND_FLOOR", alerting.deadband_floor),
        webhook_url=os.getenv("ALERT_WEBHOOK_URL") or alerting.webhook_url,
        webhook_secret=os.getenv("ALERT_WEBHOOK_SECRET") or alerting.webhook_secret,
    )

    return replace(config, spike=spike, cycle=cycle, alerting=alerting)


def load_config(path: Optional[str] = None, use_env: bool = True) -> CompositeRiskConfig:
    """
    Build the effective configuration and validate it.

    Args:
        path: Optional JSON override file. Falls back to the
            COMPOSITE_RISK_CONFIG environment variable.
        use_env: Apply environment overrides (loads .env first).

    Raises:
        ConfigInvariantViolation: If the result is invalid.
    """
    if use_env:
        load_dotenv()

    config = get_default_config()

    path = path or (os.getenv("COMPOSITE_RISK_CONFIG") if use_env else None)
    if path:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        config = apply_overrides(config, data)
        logger.info(f"Loaded configuration overrides from {path}")

    if use_env:
        config = apply_env_overrides(config)

    config.validate()
    logger.info(f"Configuration validated (digest={config.digest()})")
    return config
