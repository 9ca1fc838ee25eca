"""
Composite Risk Engine - Persistence Models.

============================================================
PURPOSE
============================================================
ORM models for persisting daily snapshots, the alert log and
the ETF flow history.

============================================================
MODELS
============================================================
1. CompositeSnapshotRecord: One row per run (append-only)
2. FactorScoreRecord: Per-factor breakdown (child of snapshot)
3. AlertLogRecord: Alert log, unique per (date, type)
4. FlowHistoryRecord: Daily ETF net flows, unique per date

The band stored on a snapshot is a cache; readers re-derive
it from composite_score.

============================================================
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# SNAPSHOT MODEL
# ============================================================


class CompositeSnapshotRecord(Base):
    """
    Persisted composite snapshot.

    ============================================================
    WHAT IT STORES
    ============================================================
    - Composite score (0-100, NULL when undefined)
    - Raw composite before adjustments
    - Cached band key
    - Config digest and engine version
    - Full snapshot payload as JSON

    Snapshots are never updated. A re-run for the same date
    inserts a new row that supersedes the earlier one.
    ============================================================
    """

    __tablename__ = "composite_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    as_of_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="UTC date the snapshot is keyed by",
    )

    as_of_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Exact run timestamp",
    )

    composite_score: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Final composite score (0-100); NULL when no factor was fresh",
    )

    raw_composite: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Composite before adjustments",
    )

    band_key: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        comment="Cached band key; re-derived on read",
    )

    cycle_adj_pts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spike_adj_pts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    config_digest: Mapped[str] = mapped_column(String(32), nullable=False)
    engine_version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0.0")

    payload_json: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Full CompositeSnapshot as JSON",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    factor_scores: Mapped[List["FactorScoreRecord"]] = relationship(
        "FactorScoreRecord",
        back_populates="snapshot",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_composite_snapshots_as_of_date", "as_of_date"),
        Index("ix_composite_snapshots_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CompositeSnapshotRecord(id={self.id}, date={self.as_of_date}, "
            f"score={self.composite_score}, band={self.band_key})>"
        )


# ============================================================
# FACTOR SCORE MODEL
# ============================================================


class FactorScoreRecord(Base):
    """Per-factor breakdown for a snapshot."""

    __tablename__ = "composite_factor_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    snapshot_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("composite_snapshots.id", ondelete="CASCADE"),
        nullable=False,
    )

    factor_key: Mapped[str] = mapped_column(String(40), nullable=False)
    pillar: Mapped[str] = mapped_column(String(40), nullable=False)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="fresh, stale, excluded")
    last_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    effective_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    snapshot: Mapped["CompositeSnapshotRecord"] = relationship(
        "CompositeSnapshotRecord",
        back_populates="factor_scores",
    )

    __table_args__ = (
        Index("ix_composite_factor_scores_snapshot", "snapshot_id"),
        Index("ix_composite_factor_scores_factor", "factor_key"),
    )


# ============================================================
# ALERT LOG MODEL
# ============================================================


class AlertLogRecord(Base):
    """
    Append-only alert log.

    The unique constraint on (occurred_on, alert_type) backs
    the at-most-once-per-day guarantee.
    """

    __tablename__ = "composite_alert_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(40), nullable=False)
    details_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("occurred_on", "alert_type", name="uq_alert_log_day_type"),
        Index("ix_composite_alert_log_occurred_on", "occurred_on"),
    )


# ============================================================
# FLOW HISTORY MODEL
# ============================================================


class FlowHistoryRecord(Base):
    """Daily ETF net flow, one row per UTC date."""

    __tablename__ = "composite_flow_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    day: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    net_flow: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
