"""
Tests for the composite-risk command line.
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from composite_risk.config import get_default_config
from orchestrator.cli import EXIT_CONFIG, EXIT_ERROR, EXIT_OK, create_parser, main, parse_as_of, validate_args


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("COMPOSITE_RISK_CONFIG", "ALERT_WEBHOOK_URL", "DATABASE_URL", "FAST_SPIKE_ENABLED"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def bundle(tmp_path):
    """Bundle with every factor pre-scored at 60, fetched at the run date."""
    factors = {
        factor.key: {
            "source": "fixture",
            "fetched_at": "2024-05-01T00:00:00Z",
            "sub_scores": {name: 60 for name in factor.subweights},
        }
        for factor in get_default_config().factors
    }
    path = tmp_path / "inputs.json"
    path.write_text(json.dumps({"factors": factors}), encoding="utf-8")
    return path


class TestArguments:
    """Parsing and validation."""

    def test_parse_as_of_date_is_midnight_utc(self):
        assert parse_as_of("2024-05-01") == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_parse_as_of_converts_to_utc(self):
        assert parse_as_of("2024-05-01T02:00:00+02:00") == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_run_requires_inputs(self):
        args = create_parser().parse_args(["run"])

        assert "run requires at least one --inputs or --inputs-url" in validate_args(args)

    def test_missing_inputs_file(self, tmp_path):
        assert main(["run", "--inputs", str(tmp_path / "nope.json"), "--no-persist"]) == EXIT_ERROR

    def test_invalid_as_of(self, bundle):
        args = create_parser().parse_args(["run", "--inputs", str(bundle), "--as-of", "yesterday"])

        assert any(e.startswith("Invalid --as-of") for e in validate_args(args))

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestValidateConfig:
    """validate-config command."""

    def test_default_config(self, capsys):
        assert main(["validate-config", "--log-format", "text"]) == EXIT_OK

        out = capsys.readouterr().out
        assert out.startswith("Configuration OK")
        assert "liquidity" in out

    def test_invalid_override(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"pillars": {"social": 50.0}}), encoding="utf-8")

        assert main(["validate-config", "--config", str(path)]) == EXIT_CONFIG


class TestRun:
    """run and show-latest commands."""

    def test_run_without_database(self, bundle, capsys):
        code = main(["run", "--inputs", str(bundle), "--as-of", "2024-05-01", "--no-persist"])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "COMPOSITE RISK 2024-05-01" in out
        assert "Composite: 60/100" in out

    def test_run_json(self, bundle, capsys):
        code = main(["run", "--inputs", str(bundle), "--as-of", "2024-05-01", "--no-persist", "--json"])

        assert code == EXIT_OK
        result = json.loads(capsys.readouterr().out)
        assert result["snapshot"]["composite_score"] == 60
        assert result["snapshot_id"] is None

    def test_run_then_show_latest(self, bundle, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'risk.db'}"

        assert main(["run", "--inputs", str(bundle), "--as-of", "2024-05-01", "--database-url", url]) == EXIT_OK
        capsys.readouterr()

        assert main(["show-latest", "--database-url", url, "--json"]) == EXIT_OK
        snapshot = json.loads(capsys.readouterr().out)
        assert snapshot["composite_score"] == 60
        assert snapshot["band"]["key"] == "hold_wait"

    def test_show_latest_empty(self, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'empty.db'}"

        assert main(["show-latest", "--database-url", url]) == EXIT_OK
        assert "no snapshot yet" in capsys.readouterr().out
