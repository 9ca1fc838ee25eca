"""
Composite Risk Engine - Band Classifier.

============================================================
PURPOSE
============================================================
Maps an integer composite score (0-100) to exactly one band.

The band table must be ordered, integer-bounded, contiguous
(lo of each band = hi of the previous band + 1) and cover
[0, 100]. Any gap or overlap is a configuration error.

============================================================
PERSISTED BANDS
============================================================
A band stored next to a score is a cache. Readers re-derive
the band from the score with the live classifier and log a
warning when the stored value disagrees.

============================================================
"""

import logging
from typing import List, Optional, Sequence

from composite_risk.normalization import round_half_up
from composite_risk.types import Band, ConfigInvariantViolation


logger = logging.getLogger(__name__)


SCORE_MIN = 0
SCORE_MAX = 100


def band_table_errors(bands: Sequence[Band]) -> List[str]:
    """Return the list of invariant violations for a band table."""
    errors: List[str] = []
    if not bands:
        return ["band table is empty"]

    keys = [b.key for b in bands]
    if len(set(keys)) != len(keys):
        errors.append("duplicate band keys")

    for band in bands:
        if not isinstance(band.lo, int) or not isinstance(band.hi, int):
            errors.append(f"band {band.key} bounds must be integers")
        if band.lo > band.hi:
            errors.append(f"band {band.key} has lo > hi ({band.lo} > {band.hi})")

    if bands[0].lo != SCORE_MIN:
        errors.append(f"first band must start at {SCORE_MIN} (got {bands[0].lo})")
    if bands[-1].hi != SCORE_MAX:
        errors.append(f"last band must end at {SCORE_MAX} (got {bands[-1].hi})")

    for prev, curr in zip(bands, bands[1:]):
        if curr.lo != prev.hi + 1:
            kind = "gap" if curr.lo > prev.hi + 1 else "overlap"
            errors.append(f"{kind} between bands {prev.key} and {curr.key}")

    return errors


class BandClassifier:
    """
    Classifies composite scores into bands.

    Usage:
        classifier = BandClassifier(config.bands)
        band = classifier.classify(61.25)  # -> hold_wait
    """

    def __init__(self, bands: Sequence[Band]) -> None:
        errors = band_table_errors(bands)
        if errors:
            raise ConfigInvariantViolation(errors)
        self._bands = tuple(bands)

    @property
    def bands(self) -> Sequence[Band]:
        return self._bands

    def classify(self, score: float) -> Band:
        """
        Return the band containing the rounded score.

        Scores are rounded half-up and clamped into [0, 100]
        before lookup, so every input maps to exactly one band.
        """
        s = int(round_half_up(score))
        s = max(SCORE_MIN, min(SCORE_MAX, s))
        for band in self._bands:
            if band.contains(s):
                return band
        # Unreachable for a valid table.
        return self._bands[-1]

    def get(self, key: str) -> Optional[Band]:
        for band in self._bands:
            if band.key == key:
                return band
        return None

    def rederive_band(self, score: Optional[float], persisted_key: Optional[str] = None) -> Optional[Band]:
        """
        Re-derive the band for a stored score.

        Returns None when the score is None. A persisted key that
        disagrees with the classifier is logged and ignored.
        """
        if score is None:
            return None
        band = self.classify(score)
        if persisted_key is not None and persisted_key != band.key:
            logger.warning(
                f"Persisted band {persisted_key!r} disagrees with score {score}; "
                f"using {band.key!r}"
            )
        return band
