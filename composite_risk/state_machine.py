"""
Composite Risk Engine - Alert State Machine.

============================================================
PURPOSE
============================================================
Detects significant day-over-day state changes and records
each one at most once per UTC day.

Alert types:
- band_change:    yesterday's band != today's band
- etf_zero_cross: the 21-day rolling ETF flow sum crosses zero
                  by more than a volatility-scaled deadband
- factor_stale:   factors fresh yesterday are stale or
                  excluded today

============================================================
STATE MACHINE (per alert type)
============================================================
    NO_PRIOR_STATE --(prior day available)--> WATCHING
    WATCHING       --(condition met)--------> FIRED_TODAY
    FIRED_TODAY    --(next UTC day)---------> WATCHING

The "fired today" state is the alert log itself: before
appending, the detector looks for an existing entry with the
same (date, type). Re-running a processed day appends nothing.

============================================================
DEADBAND
============================================================
    eps = max(round(multiplier * stddev(last N sums)), floor)

Today's sum must exceed eps in magnitude and have the opposite
sign of the most recent prior sum that also exceeded eps.
Oscillation inside the deadband never fires.

============================================================
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .bands import BandClassifier
from .config import AlertingConfig
from .normalization import as_utc, is_finite, population_stddev, rolling_sum, round_half_up
from .types import AlertLogEntry, AlertState, AlertType, Band, CompositeSnapshot


logger = logging.getLogger(__name__)


# ============================================================
# ALERT LOG
# ============================================================


class AlertLog(Protocol):
    """Append-only store with at most one entry per (date, type)."""

    def has_entry(self, day: date, alert_type: AlertType) -> bool:
        ...

    def append(self, entry: AlertLogEntry) -> bool:
        """Append unless (date, type) exists. Returns True when written."""
        ...

    def entries(self, since: Optional[date] = None) -> List[AlertLogEntry]:
        ...


class InMemoryAlertLog:
    """Alert log kept in memory (dry runs and tests)."""

    def __init__(self, entries: Optional[Sequence[AlertLogEntry]] = None) -> None:
        self._entries: Dict[Tuple[date, AlertType], AlertLogEntry] = {}
        for entry in entries or []:
            self.append(entry)

    def has_entry(self, day: date, alert_type: AlertType) -> bool:
        return (day, alert_type) in self._entries

    def append(self, entry: AlertLogEntry) -> bool:
        if entry.dedupe_key in self._entries:
            return False
        self._entries[entry.dedupe_key] = entry
        return True

    def entries(self, since: Optional[date] = None) -> List[AlertLogEntry]:
        items = sorted(self._entries.values(), key=lambda e: (e.occurred_at, e.type.value))
        if since is not None:
            items = [e for e in items if e.occurred_at >= since]
        return items

    def __len__(self) -> int:
        return len(self._entries)


# ============================================================
# DETECTOR
# ============================================================


class AlertDetector:
    """
    Evaluates alert conditions for one UTC day.

    Usage:
        detector = AlertDetector(config.alerting, classifier)
        fired = detector.run(day, today, yesterday, flows, alert_log)
    """

    def __init__(self, config: AlertingConfig, classifier: BandClassifier) -> None:
        self.config = config
        self.classifier = classifier

    # --------------------------------------------------------
    # STATE
    # --------------------------------------------------------

    def state_for(self, alert_type: AlertType, day: date, log: AlertLog, has_prior: bool) -> AlertState:
        """Current state of one alert type for ``day``."""
        if log.has_entry(day, alert_type):
            return AlertState.FIRED_TODAY
        if not has_prior:
            return AlertState.NO_PRIOR_STATE
        return AlertState.WATCHING

    # --------------------------------------------------------
    # BAND CHANGE
    # --------------------------------------------------------

    def resolve_band(self, snapshot: Optional[CompositeSnapshot]) -> Optional[Band]:
        """Band re-derived from a snapshot's score; None when unavailable."""
        if snapshot is None:
            return None
        persisted = snapshot.band.key if snapshot.band else None
        return self.classifier.rederive_band(snapshot.composite_score, persisted)

    def detect_band_change(
        self,
        day: date,
        today: Optional[CompositeSnapshot],
        yesterday: Optional[CompositeSnapshot],
    ) -> Optional[AlertLogEntry]:
        """Return a band_change entry when yesterday's band differs from today's."""
        previous_band = self.resolve_band(yesterday)
        current_band = self.resolve_band(today)
        if previous_band is None or current_band is None:
            return None
        if previous_band.key == current_band.key:
            return None

        return AlertLogEntry(
            occurred_at=day,
            type=AlertType.BAND_CHANGE,
            details={
                "from": previous_band.key,
                "to": current_band.key,
                "from_label": previous_band.label,
                "to_label": current_band.label,
                "previous_score": yesterday.composite_score,
                "score": today.composite_score,
            },
        )

    # --------------------------------------------------------
    # ETF ZERO CROSS
    # --------------------------------------------------------

    def rolling_sums(self, daily_flows: Sequence[float]) -> List[float]:
        return rolling_sum(list(daily_flows), self.config.flow_window_days)

    def compute_deadband(self, sums: Sequence[float]) -> float:
        """Deadband from the last ``deadband_lookback`` rolling sums."""
        recent = list(sums)[-self.config.deadband_lookback:]
        std = population_stddev(recent)
        scaled = round_half_up(self.config.deadband_multiplier * std) if is_finite(std) else 0
        return max(float(scaled), self.config.deadband_floor)

    def detect_zero_cross_from_sums(self, day: date, sums: Sequence[float]) -> Optional[AlertLogEntry]:
        """
        Zero-cross check on a chronological list of rolling sums.

        The last element is the sum for ``day``.
        """
        if len(sums) < 2:
            return None

        eps = self.compute_deadband(sums)
        current = sums[-1]
        if abs(current) <= eps:
            return None

        previous = None
        for value in reversed(sums[:-1]):
            if abs(value) > eps:
                previous = value
                break
        if previous is None or (previous > 0) == (current > 0):
            return None

        direction = "up" if current > 0 else "down"
        return AlertLogEntry(
            occurred_at=day,
            type=AlertType.ETF_ZERO_CROSS,
            details={
                "direction": direction,
                "from": previous,
                "to": current,
                "deadband": eps,
                "window_days": self.config.flow_window_days,
            },
        )

    def detect_zero_cross(self, day: date, flow_points: Sequence[Tuple[date, float]]) -> Optional[AlertLogEntry]:
        """
        Zero-cross check on dated daily flows.

        Only a flow dated ``day`` can move the rolling sum, so days
        without a new flow (weekends, holidays, a late source) never
        re-report the last crossing.
        """
        points = [(d, v) for d, v in flow_points if d <= day]
        if not points:
            return None
        if points[-1][0] != day:
            logger.debug(f"No ETF flow dated {day} (latest {points[-1][0]}); zero cross not evaluated")
            return None
        return self.detect_zero_cross_from_sums(day, self.rolling_sums([v for _, v in points]))

    # --------------------------------------------------------
    # FACTOR STALENESS
    # --------------------------------------------------------

    def detect_factor_stale(
        self,
        day: date,
        today: Optional[CompositeSnapshot],
        yesterday: Optional[CompositeSnapshot],
    ) -> Optional[AlertLogEntry]:
        """
        One factor_stale entry listing every factor that was fresh
        yesterday and is stale or excluded today.
        """
        if today is None or yesterday is None:
            return None

        was_fresh = {f.key for f in yesterday.factors if f.is_fresh}
        lapsed = []
        for factor in today.factors:
            if factor.key not in was_fresh or factor.is_fresh:
                continue
            age_hours = None
            if factor.last_utc is not None:
                age_hours = round((as_utc(today.as_of_utc) - as_utc(factor.last_utc)).total_seconds() / 3600, 1)
            lapsed.append({
                "key": factor.key,
                "label": factor.label,
                "status": factor.status.value,
                "reason": factor.reason,
                "last_utc": as_utc(factor.last_utc).isoformat() if factor.last_utc else None,
                "age_hours": age_hours,
            })

        if not lapsed:
            return None
        return AlertLogEntry(
            occurred_at=day,
            type=AlertType.FACTOR_STALE,
            details={"factors": lapsed, "count": len(lapsed)},
        )

    # --------------------------------------------------------
    # DAILY RUN
    # --------------------------------------------------------

    def detect(
        self,
        day: date,
        today: Optional[CompositeSnapshot],
        yesterday: Optional[CompositeSnapshot],
        flow_points: Sequence[Tuple[date, float]],
    ) -> List[AlertLogEntry]:
        """All alert candidates for ``day``, before de-duplication."""
        candidates: List[Optional[AlertLogEntry]] = []
        if self.config.band_change_enabled:
            candidates.append(self.detect_band_change(day, today, yesterday))
        if self.config.etf_zero_cross_enabled:
            candidates.append(self.detect_zero_cross(day, flow_points))
        if self.config.factor_stale_enabled:
            candidates.append(self.detect_factor_stale(day, today, yesterday))
        return [entry for entry in candidates if entry is not None]

    def run(
        self,
        day: date,
        today: Optional[CompositeSnapshot],
        yesterday: Optional[CompositeSnapshot],
        flow_points: Sequence[Tuple[date, float]],
        log: AlertLog,
    ) -> List[AlertLogEntry]:
        """
        Detect and record alerts for ``day``.

        Returns only entries appended by this call; entries whose
        (date, type) already exist are skipped.
        """
        appended: List[AlertLogEntry] = []
        for entry in self.detect(day, today, yesterday, flow_points):
            if log.has_entry(entry.occurred_at, entry.type):
                logger.info(f"Alert {entry.type.value} already recorded for {day}; skipping")
                continue
            if log.append(entry):
                logger.info(f"Alert recorded: {entry.type.value} on {day} {entry.details}")
                appended.append(entry)
        return appended
