"""
Tests for the composite risk repository against in-memory SQLite.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from composite_risk.repository import CompositeRiskRepository
from composite_risk.types import (
    AdjustmentKind,
    AdjustmentResult,
    AlertLogEntry,
    AlertType,
    CompositeSnapshot,
    FactorResult,
    FactorStatus,
)
from database import (
    DatabaseInitializationError,
    create_all_tables,
    create_database_engine,
    verify_required_tables,
)


@pytest.fixture
def session():
    engine = create_database_engine("sqlite://")
    create_all_tables(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    db = factory()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def repo(session, classifier):
    return CompositeRiskRepository(session, classifier)


class TestSnapshots:
    """Append-only snapshot storage."""

    def test_save_and_read_back(self, repo, as_of, classifier):
        snapshot = CompositeSnapshot(
            as_of_utc=as_of,
            composite_score=61,
            raw_composite=61.25,
            band=classifier.classify(61),
            factors=[
                FactorResult(
                    key="etf_flows",
                    label="ETF Flows",
                    pillar="liquidity",
                    weight_pct=5.0,
                    score=70,
                    status=FactorStatus.FRESH,
                    last_utc=as_of,
                    source="farside",
                    sub_scores={"flow_sum": 70},
                    effective_weight=0.2,
                ),
            ],
            adjustments={
                "spike": AdjustmentResult(kind=AdjustmentKind.SPIKE, adj_pts=2, residual_or_z=1.4),
                "cycle": AdjustmentResult.zero(AdjustmentKind.CYCLE, "insufficient_data"),
            },
            config_digest="abc123",
        )

        record = repo.save_snapshot(snapshot)
        loaded = repo.get_latest_snapshot()

        assert record.id is not None
        assert record.spike_adj_pts == 2
        assert record.cycle_adj_pts == 0
        assert loaded.composite_score == 61
        assert loaded.raw_composite == pytest.approx(61.25)
        assert loaded.band.key == "hold_wait"
        assert loaded.as_of_utc == as_of
        assert loaded.config_digest == "abc123"
        factor = loaded.get_factor("etf_flows")
        assert factor.score == 70
        assert factor.status == FactorStatus.FRESH
        assert factor.last_utc == as_of
        assert loaded.adjustments["cycle"].reason == "insufficient_data"
        assert loaded.adjustments["spike"].adj_pts == 2

    def test_empty_store(self, repo, as_of):
        assert repo.get_latest_snapshot() is None
        assert repo.get_previous_snapshot(as_of.date()) is None
        assert repo.get_history() == []

    def test_undefined_score_round_trip(self, repo, make_snapshot):
        repo.save_snapshot(make_snapshot(None))

        loaded = repo.get_latest_snapshot()

        assert loaded.composite_score is None
        assert loaded.band is None

    def test_band_rederived_from_score(self, repo, session, make_snapshot):
        record = repo.save_snapshot(make_snapshot(90))
        record.band_key = "aggressive_buy"
        session.flush()

        loaded = repo.get_latest_snapshot()

        assert loaded.band.key == "high_risk"

    def test_rerun_appends_and_latest_wins(self, repo, make_snapshot, as_of):
        repo.save_snapshot(make_snapshot(40, as_of))
        repo.save_snapshot(make_snapshot(45, as_of))

        assert repo.get_snapshot_for_date(as_of.date()).composite_score == 45
        assert len(repo.get_history()) == 1

    def test_previous_snapshot(self, repo, make_snapshot, as_of):
        repo.save_snapshot(make_snapshot(30, as_of - timedelta(days=2)))
        repo.save_snapshot(make_snapshot(35, as_of - timedelta(days=1)))
        repo.save_snapshot(make_snapshot(50, as_of))

        previous = repo.get_previous_snapshot(as_of.date())

        assert previous.composite_score == 35
        assert previous.as_of_date == as_of.date() - timedelta(days=1)

    def test_history_range(self, repo, make_snapshot, as_of):
        for offset, score in enumerate([10, 20, 30, 40]):
            repo.save_snapshot(make_snapshot(score, as_of - timedelta(days=3 - offset)))

        history = repo.get_history(start=as_of.date() - timedelta(days=2), end=as_of.date() - timedelta(days=1))

        assert [s.composite_score for s in history] == [20, 30]


class TestAlertLog:
    """Alert log keyed by (date, type)."""

    def test_append_once_per_day_and_type(self, repo):
        day = date(2024, 5, 1)
        entry = AlertLogEntry(day, AlertType.BAND_CHANGE, {"from": "dca_buy", "to": "hold_wait"})

        assert repo.append(entry) is True
        assert repo.append(entry) is False
        assert repo.has_entry(day, AlertType.BAND_CHANGE)
        assert not repo.has_entry(day, AlertType.ETF_ZERO_CROSS)

    def test_entries_since(self, repo):
        repo.append(AlertLogEntry(date(2024, 4, 29), AlertType.ETF_ZERO_CROSS, {"direction": "up"}))
        repo.append(AlertLogEntry(date(2024, 5, 1), AlertType.BAND_CHANGE))
        repo.append(AlertLogEntry(date(2024, 5, 1), AlertType.ETF_ZERO_CROSS))

        entries = repo.entries(since=date(2024, 4, 30))

        assert [(e.occurred_at, e.type) for e in entries] == [
            (date(2024, 5, 1), AlertType.BAND_CHANGE),
            (date(2024, 5, 1), AlertType.ETF_ZERO_CROSS),
        ]
        assert repo.entries()[0].details == {"direction": "up"}


class TestFlowHistory:
    """Daily ETF flow upserts."""

    def test_upsert_counts_changes(self, repo):
        flows = [(date(2024, 4, 29), 100.0), (date(2024, 4, 30), -50.0)]

        assert repo.upsert_flows(flows, source="farside") == 2
        assert repo.upsert_flows(flows, source="farside") == 0
        assert repo.upsert_flows([(date(2024, 4, 30), -75.0)], source="farside") == 1

        assert repo.get_flow_points() == [(date(2024, 4, 29), 100.0), (date(2024, 4, 30), -75.0)]

    def test_flow_values_until(self, repo):
        repo.upsert_flows([(date(2024, 4, 29), 1.0), (date(2024, 4, 30), 2.0), (date(2024, 5, 1), 3.0)])

        assert repo.get_flow_values(until=date(2024, 4, 30)) == [1.0, 2.0]


class TestSchemaBootstrap:
    """Table creation and verification."""

    def test_missing_tables_are_reported(self):
        engine = create_database_engine("sqlite://")
        try:
            with pytest.raises(DatabaseInitializationError, match="composite_snapshots"):
                verify_required_tables(engine)

            create_all_tables(engine)
            verify_required_tables(engine)
        finally:
            engine.dispose()
