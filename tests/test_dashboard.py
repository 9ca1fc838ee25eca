"""
Tests for the read API.
"""

from datetime import date, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from composite_risk.repository import CompositeRiskRepository
from composite_risk.types import AlertLogEntry, AlertType
from dashboard.dependencies import get_config, get_db
from dashboard.main import create_app
from database import DatabaseConnectionError, create_all_tables, create_database_engine
import run_dashboard


@pytest.fixture
def session_factory():
    db_engine = create_database_engine("sqlite://")
    create_all_tables(db_engine)
    yield sessionmaker(bind=db_engine, expire_on_commit=False)
    db_engine.dispose()


@pytest.fixture
def client(session_factory, config):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_config] = lambda: config
    return TestClient(app)


@pytest.fixture
def seeded(session_factory, classifier, make_snapshot, as_of):
    with session_factory() as session:
        repo = CompositeRiskRepository(session, classifier)
        repo.save_snapshot(make_snapshot(40, as_of - timedelta(days=1)))
        repo.save_snapshot(make_snapshot(60, as_of))
        repo.append(AlertLogEntry(as_of.date(), AlertType.BAND_CHANGE, {"from": "moderate_buy", "to": "hold_wait"}))
        session.commit()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["database"] is True

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"


class TestLatest:
    def test_no_snapshot_yet(self, client):
        response = client.get("/api/latest")

        assert response.status_code == 404
        assert response.json()["detail"] == "no snapshot yet"

    def test_latest(self, client, seeded):
        response = client.get("/api/latest")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["composite_score"] == 60
        assert data["band"]["key"] == "hold_wait"
        assert data["band"]["range"] == [50, 64]


class TestHistory:
    def test_history(self, client, seeded, as_of):
        response = client.get("/api/history", params={"days": 7, "end": as_of.date().isoformat()})

        assert response.status_code == 200
        points = response.json()["data"]
        assert [p["composite_score"] for p in points] == [40, 60]
        assert points[-1]["date"] == "2024-05-01"
        assert points[0]["band"] == "moderate_buy"

    def test_history_window(self, client, seeded, as_of):
        response = client.get("/api/history", params={"days": 1, "end": as_of.date().isoformat()})

        assert [p["composite_score"] for p in response.json()["data"]] == [60]

    def test_invalid_days(self, client):
        assert client.get("/api/history", params={"days": 0}).status_code == 422


class TestAlertsAndConfig:
    def test_alerts(self, client, seeded):
        response = client.get("/api/alerts", params={"since": "2024-04-01"})

        assert response.status_code == 200
        alerts = response.json()["data"]
        assert alerts == [
            {
                "occurred_at": "2024-05-01",
                "type": "band_change",
                "details": {"from": "moderate_buy", "to": "hold_wait"},
            }
        ]

    def test_alerts_since_filters(self, client, seeded):
        assert client.get("/api/alerts", params={"since": "2024-05-02"}).json()["data"] == []

    def test_config(self, client, config):
        body = client.get("/api/config").json()

        assert body["digest"] == config.digest()
        assert "webhook_secret" not in body["data"]["alerting"]


class TestRunner:
    """run_dashboard entry point."""

    def test_parser_reads_port_from_env(self, monkeypatch):
        monkeypatch.setenv("DASHBOARD_PORT", "9100")

        args = run_dashboard.create_parser().parse_args([])

        assert args.port == 9100
        assert args.log_level == "INFO"

    def test_initializes_database_then_serves(self):
        with patch("run_dashboard.setup_logging"), \
             patch("run_dashboard.initialize_database") as init_db, \
             patch("run_dashboard.uvicorn.run") as serve:
            code = run_dashboard.main(["--database-url", "sqlite://", "--port", "9001"])

        assert code == 0
        init_db.assert_called_once_with("sqlite://")
        assert serve.call_args.args == ("dashboard.main:app",)
        assert serve.call_args.kwargs["port"] == 9001

    def test_database_failure_exits_nonzero(self):
        with patch("run_dashboard.setup_logging"), \
             patch("run_dashboard.initialize_database", side_effect=DatabaseConnectionError("down")), \
             patch("run_dashboard.uvicorn.run") as serve:
            code = run_dashboard.main([])

        assert code == 1
        serve.assert_not_called()
