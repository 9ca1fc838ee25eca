"""
Tests for series sources, the bundle parser and the registry.
"""

import asyncio
import json
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from composite_risk.types import FactorInput
from data_sources import SourceRegistry
from data_sources.base import BaseSeriesSource
from data_sources.exceptions import FetchError, NormalizationError, RateLimitError
from data_sources.models import SourceHealth, SourceStatus
from data_sources.providers import HttpJsonSeriesSource, JsonFileSource, StaticSeriesSource
from data_sources.providers.bundle import parse_bundle, parse_timestamp


BUNDLE = {
    "factors": {
        "social_interest": {
            "source": "alternative.me",
            "fetched_at": "2024-05-01T00:00:00Z",
            "series": {"fear_greed": [["2024-04-30", 55], {"timestamp": "2024-05-01", "value": 60}]},
        },
        "macro_overlay": {"sub_scores": {"dxy_change": 40, "us2y_change": None}},
    },
    "price": {"series": {"close": [[1714435200, 63000.0]]}},
}


class ScriptedSource(BaseSeriesSource):
    """Raises the scripted errors in turn, then returns a payload."""

    def __init__(self, errors, name="scripted", max_retries=3):
        super().__init__(max_retries=max_retries)
        self._errors = list(errors)
        self._name = name
        self.calls = 0

    @property
    def name(self):
        return self._name

    @property
    def factor_keys(self):
        return ("social_interest",)

    async def fetch_raw(self):
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return {"factors": {"social_interest": {"sub_scores": {"fear_greed": 70}}}}

    def normalize(self, raw):
        return parse_bundle(raw, self.name)


class SlowSource(StaticSeriesSource):
    async def fetch_raw(self):
        await asyncio.sleep(5)
        return await super().fetch_raw()


def _input(key, source="static", error=None):
    return FactorInput(key=key, sub_scores={"x": 50.0}, source=source, error=error)


class TestBundleParsing:
    """Bundle schema."""

    def test_parse_bundle(self):
        inputs = parse_bundle(BUNDLE, "file:inputs.json")

        social = inputs["social_interest"]
        assert social.source == "alternative.me"
        assert social.fetched_at == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert [p.value for p in social.get_series("fear_greed")] == [55.0, 60.0]
        macro = inputs["macro_overlay"]
        assert macro.source == "file:inputs.json"
        assert macro.sub_scores == {"dxy_change": 40.0, "us2y_change": None}
        assert inputs["price"].get_series("close")[0].timestamp.date() == date(2024, 4, 30)

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-05-01T12:00:00Z", datetime(2024, 5, 1, 12, tzinfo=timezone.utc)),
            ("2024-05-01", datetime(2024, 5, 1, tzinfo=timezone.utc)),
            (1714521600, datetime(2024, 5, 1, tzinfo=timezone.utc)),
            (1714521600000, datetime(2024, 5, 1, tzinfo=timezone.utc)),
            (date(2024, 5, 1), datetime(2024, 5, 1, tzinfo=timezone.utc)),
        ],
    )
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected

    def test_malformed_point(self):
        bad = {"factors": {"social_interest": {"series": {"fear_greed": [["2024-05-01"]]}}}}

        with pytest.raises(NormalizationError):
            parse_bundle(bad, "test")

    def test_not_an_object(self):
        with pytest.raises(NormalizationError):
            parse_bundle([1, 2, 3], "test")


class TestJsonFileSource:
    """Bundle files on disk."""

    @pytest.mark.asyncio
    async def test_reads_bundle(self, tmp_path):
        path = tmp_path / "inputs.json"
        path.write_text(json.dumps(BUNDLE), encoding="utf-8")

        async with JsonFileSource(path) as source:
            inputs = await source.fetch()

        assert source.name == "file:inputs.json"
        assert set(inputs) == {"social_interest", "macro_overlay", "price"}
        assert source.get_health().status == SourceStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_missing_file_fails_every_key(self, tmp_path):
        source = JsonFileSource(tmp_path / "missing.json", factor_keys=["onchain", "price"])

        inputs = await source.fetch()

        assert set(inputs) == {"onchain", "price"}
        assert all(i.failed for i in inputs.values())
        assert "Cannot read bundle" in inputs["onchain"].error
        assert source.get_health().consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "inputs.json"
        path.write_text("{not json", encoding="utf-8")

        inputs = await JsonFileSource(path, factor_keys=["onchain"]).fetch()

        assert inputs["onchain"].failed


class TestRetry:
    """Retry with backoff in BaseSeriesSource."""

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        source = ScriptedSource([
            FetchError("HTTP 503", "scripted", status_code=503),
            FetchError("Connection error", "scripted"),
        ])

        with patch("data_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            inputs = await source.fetch()

        assert source.calls == 3
        assert sleep.await_count == 2
        assert not inputs["social_interest"].failed
        assert inputs["social_interest"].sub_scores == {"fear_greed": 70.0}

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        source = ScriptedSource([FetchError("HTTP 404", "scripted", status_code=404)])

        with patch("data_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            inputs = await source.fetch()

        assert source.calls == 1
        sleep.assert_not_awaited()
        assert inputs["social_interest"].failed

    @pytest.mark.asyncio
    async def test_rate_limit_waits_retry_after(self):
        source = ScriptedSource([RateLimitError("Rate limit exceeded", "scripted", retry_after_seconds=7.0)])

        with patch("data_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            inputs = await source.fetch()

        sleep.assert_awaited_once_with(7.0)
        assert not inputs["social_interest"].failed

    @pytest.mark.asyncio
    async def test_exhausted_retries(self):
        errors = [FetchError("HTTP 500", "scripted", status_code=500) for _ in range(3)]
        source = ScriptedSource(errors)

        with patch("data_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            inputs = await source.fetch()

        assert source.calls == 3
        assert sleep.await_count == 2
        assert "Failed after 3 attempts" in inputs["social_interest"].error

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self):
        source = ScriptedSource([KeyError("boom")])

        inputs = await source.fetch()

        assert inputs["social_interest"].failed
        assert "Unexpected error" in inputs["social_interest"].error

    @pytest.mark.asyncio
    async def test_health_degrades(self):
        source = ScriptedSource([FetchError("HTTP 401", "scripted", status_code=401) for _ in range(3)])

        for _ in range(3):
            await source.fetch()

        assert source.get_health().status == SourceStatus.DEGRADED


class TestSourceRegistry:
    """Resolution across sources."""

    def test_duplicate_name_rejected(self):
        registry = SourceRegistry()
        registry.register(StaticSeriesSource("a", {}))

        with pytest.raises(ValueError):
            registry.register(StaticSeriesSource("a", {}))

    @pytest.mark.asyncio
    async def test_empty_registry(self):
        assert await SourceRegistry().resolve_all() == {}

    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        registry = SourceRegistry()
        registry.register(StaticSeriesSource("primary", {"onchain": _input("onchain", "primary")}))
        registry.register(StaticSeriesSource("backup", {
            "onchain": _input("onchain", "backup"),
            "etf_flows": _input("etf_flows", "backup"),
        }))

        inputs = await registry.resolve_all()

        assert inputs["onchain"].source == "primary"
        assert inputs["etf_flows"].source == "backup"

    @pytest.mark.asyncio
    async def test_failure_falls_back(self):
        failures = []
        registry = SourceRegistry()
        registry.on_failure(lambda name, error: failures.append(name))
        registry.register(StaticSeriesSource("primary", {"onchain": _input("onchain", "primary", error="HTTP 503")}))
        registry.register(StaticSeriesSource("backup", {"onchain": _input("onchain", "backup")}))

        inputs = await registry.resolve_all()

        assert inputs["onchain"].source == "backup"
        assert not inputs["onchain"].failed
        assert failures == ["primary"]

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_input(self):
        registry = SourceRegistry()
        registry.register(SlowSource("slow", {"onchain": _input("onchain", "slow")}))

        inputs = await registry.resolve_all(timeout=0.05)

        assert inputs["onchain"].failed
        assert "Timed out" in inputs["onchain"].error

    @pytest.mark.asyncio
    async def test_stats(self):
        registry = SourceRegistry()
        registry.register(StaticSeriesSource("a", {"onchain": _input("onchain")}))
        await registry.resolve_all()

        stats = registry.get_stats()

        assert stats["total_sources"] == 1
        assert stats["sources"]["a"]["status"] == "healthy"


class TestSourceHealth:
    """Health transitions on SourceHealth."""

    def test_streak_degrades_then_recovers(self):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        health = SourceHealth(status=SourceStatus.UNKNOWN, last_check=now, degraded_after=2, unavailable_after=3)

        assert health.record_failure("HTTP 500", now) is False
        assert health.record_failure("HTTP 500", now) is True
        assert health.status == SourceStatus.DEGRADED
        assert health.record_failure("HTTP 500", now) is True
        assert health.status == SourceStatus.UNAVAILABLE

        assert health.record_success(now) is True
        assert health.status == SourceStatus.HEALTHY
        assert health.consecutive_failures == 0
        assert health.success_rate == 25.0
        assert health.to_dict()["last_error"] == "HTTP 500"

    def test_success_rate_undefined_before_first_fetch(self):
        health = SourceHealth(status=SourceStatus.UNKNOWN, last_check=datetime.now(timezone.utc))

        assert health.success_rate is None


class TestRetryable:
    """Which fetch errors are worth retrying."""

    @pytest.mark.parametrize("status, expected", [(None, True), (500, True), (503, True), (404, False), (401, False)])
    def test_by_status(self, status, expected):
        assert FetchError("x", status_code=status).retryable is expected

    def test_rate_limit_is_retryable(self):
        assert RateLimitError("slow down").retryable is True

    def test_transient_override(self):
        assert FetchError("Cannot read bundle", transient=False).retryable is False

    def test_str_is_single_line(self):
        error = FetchError("HTTP 503", "glassnode", status_code=503)

        assert str(error) == "HTTP 503 [source=glassnode]"


class FakeResponse:
    def __init__(self, status, payload=None, headers=None):
        self.status = status
        self.headers = headers or {}
        self._payload = payload

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Replays canned responses for session.get()."""

    closed = False

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def get(self, url, params=None, headers=None):
        self.requests.append(url)
        return self._responses.pop(0)


class TestHttpJsonSeriesSource:
    """Bundle fetched over HTTP."""

    @pytest.mark.asyncio
    async def test_fetches_bundle(self):
        session = FakeSession([FakeResponse(200, BUNDLE)])
        source = HttpJsonSeriesSource("https://feeds.example/inputs", session=session)

        inputs = await source.fetch()

        assert session.requests == ["https://feeds.example/inputs"]
        assert inputs["social_interest"].source == "alternative.me"
        assert not inputs["macro_overlay"].failed

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self):
        session = FakeSession([
            FakeResponse(429, headers={"Retry-After": "3"}),
            FakeResponse(200, BUNDLE),
        ])
        source = HttpJsonSeriesSource("https://feeds.example/inputs", session=session)

        with patch("data_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            inputs = await source.fetch()

        sleep.assert_awaited_once_with(3.0)
        assert not inputs["social_interest"].failed

    @pytest.mark.asyncio
    async def test_not_found_excludes_declared_keys(self):
        session = FakeSession([FakeResponse(404)])
        source = HttpJsonSeriesSource("https://feeds.example/inputs", factor_keys=["onchain"], session=session)

        inputs = await source.fetch()

        assert inputs["onchain"].failed
        assert inputs["onchain"].error.startswith("HTTP 404")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        session = FakeSession([FakeResponse(200, ValueError("Expecting value"))])
        source = HttpJsonSeriesSource("https://feeds.example/inputs", factor_keys=["onchain"], session=session)

        inputs = await source.fetch()

        assert "Response is not JSON" in inputs["onchain"].error
        assert len(session.requests) == 1
