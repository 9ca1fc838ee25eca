"""
Composite Risk Engine - Repository.

============================================================
PURPOSE
============================================================
Repository pattern implementation for composite risk persistence.

Provides clean interface for:
- Saving snapshots (append-only)
- Reading latest / previous / per-date snapshots
- The alert log (implements the AlertLog protocol)
- ETF flow history

Every snapshot read re-derives the band from the stored score.

============================================================
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from .bands import BandClassifier
from .models import AlertLogRecord, CompositeSnapshotRecord, FactorScoreRecord, FlowHistoryRecord
from .types import (
    AdjustmentKind,
    AdjustmentResult,
    AlertLogEntry,
    AlertType,
    CompositeSnapshot,
    FactorResult,
    FactorStatus,
    PillarResult,
)


logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return _aware(datetime.fromisoformat(value)) if value else None


def _factor_from_dict(data: Dict[str, Any]) -> FactorResult:
    return FactorResult(
        key=data["key"],
        label=data.get("label", data["key"]),
        pillar=data["pillar"],
        weight_pct=float(data.get("weight_pct", 0.0)),
        score=data.get("score"),
        status=FactorStatus(data.get("status", FactorStatus.EXCLUDED.value)),
        last_utc=_parse_dt(data.get("last_utc")),
        source=data.get("source") or "unknown",
        reason=data.get("reason"),
        sub_scores=dict(data.get("sub_scores") or {}),
        details=list(data.get("details") or []),
        effective_weight=float(data.get("effective_weight", 0.0)),
    )


def _pillar_from_dict(data: Dict[str, Any]) -> PillarResult:
    return PillarResult(
        key=data["key"],
        label=data.get("label", data["key"]),
        weight_pct=float(data.get("weight_pct", 0.0)),
        score=data.get("score"),
        effective_weight=float(data.get("effective_weight", 0.0)),
        factor_keys=list(data.get("factor_keys") or []),
    )


def _adjustment_from_dict(data: Dict[str, Any]) -> AdjustmentResult:
    return AdjustmentResult(
        kind=AdjustmentKind(data["kind"]),
        adj_pts=int(data.get("adj_pts", 0)),
        residual_or_z=data.get("residual_or_z"),
        last_utc=_parse_dt(data.get("last_utc")),
        source=data.get("source") or "unknown",
        reason=data.get("reason"),
        metrics=dict(data.get("metrics") or {}),
    )


class CompositeRiskRepository:
    """
    Repository for composite risk persistence operations.

    ============================================================
    METHODS
    ============================================================
    - save_snapshot: Persist a snapshot (never updates)
    - get_latest_snapshot / get_previous_snapshot / get_snapshot_for_date
    - get_history: One snapshot per day, oldest first
    - has_entry / append / entries: Alert log
    - upsert_flows / get_flow_points: ETF flow history

    ============================================================
    """

    def __init__(self, session: Session, classifier: BandClassifier):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
            classifier: Live band classifier used to re-derive bands
        """
        self._session = session
        self._classifier = classifier

    # --------------------------------------------------------
    # SNAPSHOTS
    # --------------------------------------------------------

    def save_snapshot(self, snapshot: CompositeSnapshot) -> CompositeSnapshotRecord:
        """
        Insert a snapshot and its factor rows.

        Returns:
            Created CompositeSnapshotRecord with ID
        """
        adjustments = snapshot.adjustments
        record = CompositeSnapshotRecord(
            as_of_date=snapshot.as_of_date,
            as_of_utc=snapshot.as_of_utc,
            composite_score=snapshot.composite_score,
            raw_composite=snapshot.raw_composite,
            band_key=snapshot.band.key if snapshot.band else None,
            cycle_adj_pts=adjustments[AdjustmentKind.CYCLE.value].adj_pts if AdjustmentKind.CYCLE.value in adjustments else 0,
            spike_adj_pts=adjustments[AdjustmentKind.SPIKE.value].adj_pts if AdjustmentKind.SPIKE.value in adjustments else 0,
            config_digest=snapshot.config_digest,
            engine_version=snapshot.engine_version,
            payload_json=snapshot.to_dict(),
            created_at=snapshot.created_at,
        )

        for factor in snapshot.factors:
            record.factor_scores.append(
                FactorScoreRecord(
                    factor_key=factor.key,
                    pillar=factor.pillar,
                    score=factor.score,
                    status=factor.status.value,
                    last_utc=factor.last_utc,
                    source=factor.source,
                    reason=factor.reason,
                    effective_weight=factor.effective_weight,
                )
            )

        self._session.add(record)
        self._session.flush()
        logger.info(
            f"Saved snapshot id={record.id} date={record.as_of_date} "
            f"score={record.composite_score} factors={len(record.factor_scores)}"
        )
        return record

    def to_snapshot(self, record: CompositeSnapshotRecord) -> CompositeSnapshot:
        """Rebuild a CompositeSnapshot, re-deriving the band from the score."""
        payload = record.payload_json or {}
        band = self._classifier.rederive_band(record.composite_score, record.band_key)

        return CompositeSnapshot(
            as_of_utc=_aware(record.as_of_utc),
            composite_score=record.composite_score,
            raw_composite=record.raw_composite,
            band=band,
            factors=[_factor_from_dict(f) for f in payload.get("factors", [])],
            pillars=[_pillar_from_dict(p) for p in payload.get("pillars", [])],
            adjustments={
                key: _adjustment_from_dict(a)
                for key, a in (payload.get("adjustments") or {}).items()
            },
            config_digest=record.config_digest,
            engine_version=record.engine_version,
            created_at=_aware(record.created_at),
        )

    def _latest_record(self, *criteria) -> Optional[CompositeSnapshotRecord]:
        stmt = (
            select(CompositeSnapshotRecord)
            .where(*criteria)
            .order_by(
                desc(CompositeSnapshotRecord.as_of_date),
                desc(CompositeSnapshotRecord.id),
            )
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def get_latest_snapshot(self) -> Optional[CompositeSnapshot]:
        """Most recent snapshot, or None if none exist."""
        record = self._latest_record()
        return self.to_snapshot(record) if record else None

    def get_snapshot_for_date(self, day: date) -> Optional[CompositeSnapshot]:
        """Latest snapshot written for a UTC date."""
        record = self._latest_record(CompositeSnapshotRecord.as_of_date == day)
        return self.to_snapshot(record) if record else None

    def get_previous_snapshot(self, before: date) -> Optional[CompositeSnapshot]:
        """Latest snapshot strictly before a UTC date ("yesterday")."""
        record = self._latest_record(CompositeSnapshotRecord.as_of_date < before)
        return self.to_snapshot(record) if record else None

    def get_history(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompositeSnapshot]:
        """
        One snapshot per UTC date (the last one written), oldest first.
        """
        stmt = select(CompositeSnapshotRecord)
        if start is not None:
            stmt = stmt.where(CompositeSnapshotRecord.as_of_date >= start)
        if end is not None:
            stmt = stmt.where(CompositeSnapshotRecord.as_of_date <= end)
        stmt = stmt.order_by(CompositeSnapshotRecord.as_of_date, CompositeSnapshotRecord.id)

        latest: Dict[date, CompositeSnapshotRecord] = {}
        for record in self._session.execute(stmt).scalars():
            latest[record.as_of_date] = record
        return [self.to_snapshot(latest[day]) for day in sorted(latest)]

    # --------------------------------------------------------
    # ALERT LOG
    # --------------------------------------------------------

    def has_entry(self, day: date, alert_type: AlertType) -> bool:
        stmt = select(AlertLogRecord.id).where(
            AlertLogRecord.occurred_on == day,
            AlertLogRecord.alert_type == alert_type.value,
        )
        return self._session.execute(stmt).first() is not None

    def append(self, entry: AlertLogEntry) -> bool:
        """
        Append an alert unless (date, type) already exists.

        Returns:
            True when a row was written
        """
        if self.has_entry(entry.occurred_at, entry.type):
            return False

        record = AlertLogRecord(
            occurred_on=entry.occurred_at,
            alert_type=entry.type.value,
            details_json=dict(entry.details),
        )
        self._session.add(record)
        self._session.flush()
        return True

    def entries(self, since: Optional[date] = None) -> List[AlertLogEntry]:
        stmt = select(AlertLogRecord)
        if since is not None:
            stmt = stmt.where(AlertLogRecord.occurred_on >= since)
        stmt = stmt.order_by(AlertLogRecord.occurred_on, AlertLogRecord.alert_type)
        return [
            AlertLogEntry(
                occurred_at=record.occurred_on,
                type=AlertType(record.alert_type),
                details=dict(record.details_json or {}),
            )
            for record in self._session.execute(stmt).scalars()
        ]

    # --------------------------------------------------------
    # FLOW HISTORY
    # --------------------------------------------------------

    def upsert_flows(self, flows: Iterable[Tuple[date, float]], source: Optional[str] = None) -> int:
        """
        Insert or update daily flows.

        Returns:
            Number of rows inserted or changed
        """
        changed = 0
        for day, value in flows:
            record = self._session.execute(
                select(FlowHistoryRecord).where(FlowHistoryRecord.day == day)
            ).scalar_one_or_none()
            if record is None:
                self._session.add(FlowHistoryRecord(day=day, net_flow=float(value), source=source))
                changed += 1
            elif record.net_flow != float(value):
                record.net_flow = float(value)
                record.source = source
                changed += 1
        self._session.flush()
        if changed:
            logger.info(f"Flow history: {changed} rows written")
        return changed

    def get_flow_points(self, until: Optional[date] = None) -> List[Tuple[date, float]]:
        stmt = select(FlowHistoryRecord)
        if until is not None:
            stmt = stmt.where(FlowHistoryRecord.day <= until)
        stmt = stmt.order_by(FlowHistoryRecord.day)
        return [(r.day, r.net_flow) for r in self._session.execute(stmt).scalars()]

    def get_flow_values(self, until: Optional[date] = None) -> List[float]:
        """Daily flows in date order, up to and including ``until``."""
        return [value for _, value in self.get_flow_points(until)]
