"""
Tests for the Band Classifier.
"""

import logging

import pytest

from composite_risk.bands import BandClassifier, band_table_errors
from composite_risk.config import DEFAULT_BANDS
from composite_risk.types import Band, ConfigInvariantViolation


@pytest.fixture
def classifier():
    return BandClassifier(DEFAULT_BANDS)


def _band(key, lo, hi):
    return Band(key, key.title(), lo, hi, "grey", "")


class TestClassify:
    """Every score maps to exactly one band."""

    def test_every_score_has_exactly_one_band(self, classifier):
        for score in range(0, 101):
            containing = [b for b in DEFAULT_BANDS if b.contains(score)]
            assert len(containing) == 1
            assert classifier.classify(score) == containing[0]

    @pytest.mark.parametrize("score,key", [
        (0, "aggressive_buy"),
        (14, "aggressive_buy"),
        (15, "dca_buy"),
        (49, "moderate_buy"),
        (61.25, "hold_wait"),
        (64.5, "reduce_risk"),
        (80, "high_risk"),
        (100, "high_risk"),
    ])
    def test_boundaries(self, classifier, score, key):
        assert classifier.classify(score).key == key

    def test_out_of_range_is_clamped(self, classifier):
        assert classifier.classify(-12).key == "aggressive_buy"
        assert classifier.classify(140).key == "high_risk"

    def test_get(self, classifier):
        assert classifier.get("hold_wait").lo == 50
        assert classifier.get("missing") is None


class TestBandTable:
    """Invalid tables are configuration errors."""

    def test_default_table_is_valid(self):
        assert band_table_errors(DEFAULT_BANDS) == []

    def test_gap_rejected(self):
        bands = (_band("low", 0, 40), _band("high", 45, 100))
        with pytest.raises(ConfigInvariantViolation) as exc:
            BandClassifier(bands)
        assert any("gap" in e for e in exc.value.errors)

    def test_overlap_rejected(self):
        bands = (_band("low", 0, 50), _band("high", 50, 100))
        assert any("overlap" in e for e in band_table_errors(bands))

    def test_must_cover_range(self):
        errors = band_table_errors((_band("low", 1, 50), _band("high", 51, 99)))
        assert len(errors) == 2

    def test_empty_table(self):
        assert band_table_errors(()) == ["band table is empty"]


class TestRederive:
    """Persisted bands are re-derived from the score."""

    def test_none_score(self, classifier):
        assert classifier.rederive_band(None, "hold_wait") is None

    def test_mismatch_uses_live_band(self, classifier, caplog):
        with caplog.at_level(logging.WARNING, logger="composite_risk.bands"):
            band = classifier.rederive_band(70, "hold_wait")
        assert band.key == "reduce_risk"
        assert "disagrees" in caplog.text

    def test_match_is_silent(self, classifier, caplog):
        with caplog.at_level(logging.WARNING, logger="composite_risk.bands"):
            band = classifier.rederive_band(55, "hold_wait")
        assert band.key == "hold_wait"
        assert caplog.text == ""
