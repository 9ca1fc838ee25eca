"""
Shared fixtures for the composite risk test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from composite_risk.bands import BandClassifier
from composite_risk.config import get_default_config
from composite_risk.types import CompositeSnapshot, SeriesPoint


AS_OF = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def config():
    return get_default_config()


@pytest.fixture
def classifier(config):
    return BandClassifier(config.bands)


@pytest.fixture
def make_points():
    """Factory: daily points ending at ``end`` (inclusive), one per value."""

    def _make(values, end=AS_OF, step=timedelta(days=1)):
        n = len(values)
        return [
            SeriesPoint(end - step * (n - 1 - i), float(v))
            for i, v in enumerate(values)
        ]

    return _make


@pytest.fixture
def make_snapshot(classifier):
    """Factory: minimal snapshot for a score on a given day."""

    def _make(score, as_of=AS_OF):
        return CompositeSnapshot(
            as_of_utc=as_of,
            composite_score=score,
            raw_composite=float(score) if score is not None else None,
            band=classifier.classify(score) if score is not None else None,
            config_digest="test",
        )

    return _make
