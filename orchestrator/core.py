"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Runs the daily composite risk pass end to end.

1. Resolve factor inputs from the registered sources
2. Compute the snapshot
3. Persist the snapshot and the ETF flow history
4. Detect and record alerts against the alert log
5. Dispatch newly recorded alerts

============================================================
ARCHITECTURAL POSITION
============================================================
- No scoring logic lives here
- Persistence happens in one transaction per run
- Alert delivery failures never fail the run

============================================================
"""

import json
import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from composite_risk.alerting import AlertDispatcher
from composite_risk.engine import CompositeRiskEngine
from composite_risk.repository import CompositeRiskRepository
from composite_risk.state_machine import AlertDetector, InMemoryAlertLog
from composite_risk.types import AlertLogEntry, CompositeSnapshot, FactorInput
from data_sources.registry import SourceRegistry


ETF_FLOWS_KEY = "etf_flows"
FLOW_SERIES = "flows"


# ============================================================
# LOGGING SETUP
# ============================================================


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log line."""

    def __init__(self, correlation_id: Optional[str] = None) -> None:
        super().__init__()
        self._correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self._correlation_id,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging on the root logger.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonLogFormatter(correlation_id)
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


logger = logging.getLogger(__name__)


# ============================================================
# RUN RESULT
# ============================================================


@dataclass
class PipelineResult:
    """Outcome of one daily run."""

    run_id: str
    snapshot: CompositeSnapshot
    alerts: List[AlertLogEntry] = field(default_factory=list)
    delivery: Dict[str, bool] = field(default_factory=dict)
    snapshot_id: Optional[int] = None
    flows_written: int = 0
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.snapshot.composite_score is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "snapshot_id": self.snapshot_id,
            "dry_run": self.dry_run,
            "snapshot": self.snapshot.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "delivery": dict(self.delivery),
            "flows_written": self.flows_written,
        }


def extract_daily_flows(factor_input: Optional[FactorInput], until: date) -> List[Tuple[date, float]]:
    """
    Daily ETF flows from the etf_flows input, keyed by UTC date.

    A later point on the same date replaces an earlier one.
    """
    if factor_input is None or factor_input.failed:
        return []

    by_day: Dict[date, float] = {}
    for point in factor_input.get_series(FLOW_SERIES):
        day = point.timestamp.astimezone(timezone.utc).date()
        if day <= until:
            by_day[day] = point.value
    return sorted(by_day.items())


# ============================================================
# DAILY PIPELINE
# ============================================================


class DailyRiskPipeline:
    """
    Coordinates one scoring pass per UTC day.

    With a session factory the snapshot, flow history and alert
    log are persisted in a single transaction. Without one the
    run is purely in memory. A dry run performs every step,
    then rolls back and skips delivery.
    """

    def __init__(
        self,
        engine: CompositeRiskEngine,
        registry: SourceRegistry,
        session_factory: Optional[Callable[[], Session]] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        dry_run: bool = False,
        source_timeout: Optional[float] = None,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._dry_run = dry_run
        self._source_timeout = source_timeout or engine.config.sources.timeout_seconds
        self._detector = AlertDetector(engine.config.alerting, engine.classifier)

    @property
    def detector(self) -> AlertDetector:
        return self._detector

    async def run(self, as_of: Optional[datetime] = None) -> PipelineResult:
        """
        Execute the daily pass.

        Returns:
            PipelineResult with the snapshot and newly recorded alerts

        Raises:
            DatabasePersistenceError / SQLAlchemyError: If persistence fails
        """
        run_id = uuid.uuid4().hex[:12]
        as_of = as_of or datetime.now(timezone.utc)
        logger.info(f"Run {run_id} started (as_of={as_of.isoformat()}, dry_run={self._dry_run})")

        # Step 1: Resolve inputs
        inputs = await self._registry.resolve_all(timeout=self._source_timeout)

        # Step 2: Compute
        snapshot = self._engine.compute(inputs, as_of=as_of)
        day = snapshot.as_of_date
        flows = extract_daily_flows(inputs.get(ETF_FLOWS_KEY), day)

        # Steps 3-4: Persist and detect
        if self._session_factory is None:
            result = self._run_in_memory(run_id, snapshot, flows)
        else:
            result = self._run_persisted(run_id, snapshot, flows)

        # Step 5: Dispatch
        if result.alerts and self._dispatcher and not self._dry_run:
            result.delivery = await self._dispatcher.dispatch(
                day,
                result.alerts,
                run_id=run_id,
                diagnostics={
                    "composite_score": snapshot.composite_score,
                    "band": snapshot.band.key if snapshot.band else None,
                    "excluded_factors": snapshot.excluded_factors,
                },
            )

        logger.info(
            f"Run {run_id} finished: score={snapshot.composite_score} "
            f"alerts={len(result.alerts)} snapshot_id={result.snapshot_id}"
        )
        return result

    def _run_in_memory(
        self,
        run_id: str,
        snapshot: CompositeSnapshot,
        flows: List[Tuple[date, float]],
    ) -> PipelineResult:
        log = InMemoryAlertLog()
        alerts = self._detector.run(
            snapshot.as_of_date,
            snapshot,
            None,
            flows,
            log,
        )
        return PipelineResult(run_id=run_id, snapshot=snapshot, alerts=alerts, dry_run=self._dry_run)

    def _run_persisted(
        self,
        run_id: str,
        snapshot: CompositeSnapshot,
        flows: List[Tuple[date, float]],
    ) -> PipelineResult:
        day = snapshot.as_of_date
        session = self._session_factory()
        try:
            repo = CompositeRiskRepository(session, self._engine.classifier)

            yesterday = repo.get_previous_snapshot(day)
            record = repo.save_snapshot(snapshot)
            written = repo.upsert_flows(flows, source=self._flow_source(snapshot))

            alerts = self._detector.run(
                day,
                snapshot,
                yesterday,
                repo.get_flow_points(until=day),
                repo,
            )

            if self._dry_run:
                session.rollback()
                logger.info(f"Dry run {run_id}: rolled back snapshot and {len(alerts)} alert(s)")
            else:
                session.commit()

            return PipelineResult(
                run_id=run_id,
                snapshot=snapshot,
                alerts=alerts,
                snapshot_id=None if self._dry_run else record.id,
                flows_written=written,
                dry_run=self._dry_run,
            )
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _flow_source(snapshot: CompositeSnapshot) -> Optional[str]:
        factor = snapshot.get_factor(ETF_FLOWS_KEY)
        return factor.source if factor else None


__all__ = [
    "JsonLogFormatter",
    "setup_logging",
    "PipelineResult",
    "extract_daily_flows",
    "DailyRiskPipeline",
]
