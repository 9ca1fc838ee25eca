"""
Tests for the daily pipeline: scoring, persistence, alerts and delivery.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from composite_risk.alerting import AlertDispatcher
from composite_risk.engine import CompositeRiskEngine
from composite_risk.repository import CompositeRiskRepository
from composite_risk.types import AlertType, FactorInput, SeriesPoint
from data_sources import SourceRegistry, StaticSeriesSource
from database import create_all_tables, create_database_engine
from orchestrator.core import DailyRiskPipeline, PipelineResult, extract_daily_flows


class RecordingSender:
    def __init__(self):
        self.batches = []

    async def send(self, batch):
        self.batches.append(batch)
        return True


@pytest.fixture
def engine():
    return CompositeRiskEngine()


@pytest.fixture
def session_factory():
    db_engine = create_database_engine("sqlite://")
    create_all_tables(db_engine)
    yield sessionmaker(bind=db_engine, expire_on_commit=False)
    db_engine.dispose()


@pytest.fixture
def sender():
    return RecordingSender()


def _registry(config, as_of, score, flows=None, skip=()):
    inputs = {
        factor.key: FactorInput(
            key=factor.key,
            sub_scores={name: score for name in factor.subweights},
            source="fixture",
            fetched_at=as_of - timedelta(hours=1),
        )
        for factor in config.factors
        if factor.key not in skip
    }
    if flows is not None:
        start = as_of - timedelta(days=len(flows) - 1)
        inputs["etf_flows"] = FactorInput(
            key="etf_flows",
            series={"flows": [SeriesPoint(start + timedelta(days=i), v) for i, v in enumerate(flows)]},
            sub_scores={"flow_sum": score},
            source="farside",
            fetched_at=as_of - timedelta(hours=1),
        )
    registry = SourceRegistry()
    registry.register(StaticSeriesSource("fixture", inputs))
    return registry


class TestExtractDailyFlows:
    """Flow extraction from the etf_flows input."""

    def test_last_value_per_day(self, as_of):
        factor_input = FactorInput(
            key="etf_flows",
            series={
                "flows": [
                    SeriesPoint(as_of - timedelta(days=1), 10.0),
                    SeriesPoint(as_of - timedelta(hours=12), 20.0),
                    SeriesPoint(as_of, 30.0),
                    SeriesPoint(as_of + timedelta(days=1), 40.0),
                ]
            },
        )

        flows = extract_daily_flows(factor_input, as_of.date())

        assert flows == [(date(2024, 4, 30), 20.0), (date(2024, 5, 1), 30.0)]

    def test_failed_input(self, as_of):
        assert extract_daily_flows(FactorInput(key="etf_flows", error="down"), as_of.date()) == []


class TestInMemoryRun:
    """No session factory: nothing persisted."""

    @pytest.mark.asyncio
    async def test_scores_without_persistence(self, engine, config, as_of):
        pipeline = DailyRiskPipeline(engine, _registry(config, as_of, 60.0))

        result = await pipeline.run(as_of)

        assert isinstance(result, PipelineResult)
        assert result.success
        assert result.snapshot.composite_score == 60
        assert result.snapshot_id is None
        assert result.alerts == []

    @pytest.mark.asyncio
    async def test_zero_cross_detected_from_inputs(self, engine, config, as_of, sender):
        flows = [-100.0] * 21 + [5000.0]
        pipeline = DailyRiskPipeline(
            engine,
            _registry(config, as_of, 60.0, flows=flows),
            dispatcher=AlertDispatcher([sender]),
        )

        result = await pipeline.run(as_of)

        assert [a.type for a in result.alerts] == [AlertType.ETF_ZERO_CROSS]
        assert result.delivery == {"RecordingSender": True}
        assert sender.batches[0].run_id == result.run_id


class TestPersistedRun:
    """Runs backed by SQLite."""

    @pytest.mark.asyncio
    async def test_band_change_between_days(self, engine, config, as_of, session_factory, sender):
        yesterday = as_of - timedelta(days=1)
        dispatcher = AlertDispatcher([sender])

        first = await DailyRiskPipeline(
            engine, _registry(config, yesterday, 40.0), session_factory, dispatcher
        ).run(yesterday)
        second = await DailyRiskPipeline(
            engine, _registry(config, as_of, 60.0), session_factory, dispatcher
        ).run(as_of)

        assert first.alerts == []
        assert first.snapshot_id is not None
        assert [a.type for a in second.alerts] == [AlertType.BAND_CHANGE]
        assert second.alerts[0].details["from"] == "moderate_buy"
        assert second.alerts[0].details["to"] == "hold_wait"
        assert len(sender.batches) == 1

        with session_factory() as session:
            repo = CompositeRiskRepository(session, engine.classifier)
            assert [s.composite_score for s in repo.get_history()] == [40, 60]
            assert len(repo.entries()) == 1

    @pytest.mark.asyncio
    async def test_rerun_same_day_does_not_refire(self, engine, config, as_of, session_factory, sender):
        yesterday = as_of - timedelta(days=1)
        dispatcher = AlertDispatcher([sender])
        await DailyRiskPipeline(engine, _registry(config, yesterday, 40.0), session_factory).run(yesterday)

        first = await DailyRiskPipeline(
            engine, _registry(config, as_of, 60.0), session_factory, dispatcher
        ).run(as_of)
        again = await DailyRiskPipeline(
            engine, _registry(config, as_of, 60.0), session_factory, dispatcher
        ).run(as_of)

        assert len(first.alerts) == 1
        assert again.alerts == []
        assert again.delivery == {}
        assert len(sender.batches) == 1

        with session_factory() as session:
            repo = CompositeRiskRepository(session, engine.classifier)
            assert repo.get_latest_snapshot().composite_score == 60
            assert len(repo.entries()) == 1

    @pytest.mark.asyncio
    async def test_flows_persisted(self, engine, config, as_of, session_factory):
        flows = [100.0] * 5

        result = await DailyRiskPipeline(
            engine, _registry(config, as_of, 60.0, flows=flows), session_factory
        ).run(as_of)

        assert result.flows_written == 5
        with session_factory() as session:
            repo = CompositeRiskRepository(session, engine.classifier)
            assert repo.get_flow_values() == flows

    @pytest.mark.asyncio
    async def test_dry_run_rolls_back(self, engine, config, as_of, session_factory, sender):
        yesterday = as_of - timedelta(days=1)
        await DailyRiskPipeline(engine, _registry(config, yesterday, 40.0), session_factory).run(yesterday)

        result = await DailyRiskPipeline(
            engine,
            _registry(config, as_of, 60.0),
            session_factory,
            AlertDispatcher([sender]),
            dry_run=True,
        ).run(as_of)

        assert result.dry_run
        assert result.snapshot_id is None
        assert [a.type for a in result.alerts] == [AlertType.BAND_CHANGE]
        assert sender.batches == []

        with session_factory() as session:
            repo = CompositeRiskRepository(session, engine.classifier)
            assert repo.get_snapshot_for_date(as_of.date()) is None
            assert repo.entries() == []

    @pytest.mark.asyncio
    async def test_undefined_score_is_persisted(self, engine, as_of, session_factory):
        registry = SourceRegistry()

        result = await DailyRiskPipeline(engine, registry, session_factory).run(as_of)

        assert not result.success
        assert result.snapshot_id is not None
        with session_factory() as session:
            repo = CompositeRiskRepository(session, engine.classifier)
            assert repo.get_latest_snapshot().composite_score is None

    @pytest.mark.asyncio
    async def test_lapsed_factor_alert(self, engine, config, as_of, session_factory):
        yesterday = as_of - timedelta(days=1)
        await DailyRiskPipeline(engine, _registry(config, yesterday, 60.0), session_factory).run(yesterday)

        result = await DailyRiskPipeline(
            engine, _registry(config, as_of, 60.0, skip=("onchain",)), session_factory
        ).run(as_of)

        assert [a.type for a in result.alerts] == [AlertType.FACTOR_STALE]
        assert [f["key"] for f in result.alerts[0].details["factors"]] == ["onchain"]
