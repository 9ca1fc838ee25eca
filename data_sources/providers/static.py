"""
Static Series Source - Serves inputs held in memory.

Used for dry runs, fixtures and callers that assemble inputs
themselves.
"""

import logging
from typing import Any, Mapping

from composite_risk.types import FactorInput
from data_sources.base import BaseSeriesSource


logger = logging.getLogger(__name__)


class StaticSeriesSource(BaseSeriesSource):
    """Returns a fixed set of factor inputs."""

    def __init__(self, name: str, inputs: Mapping[str, FactorInput]) -> None:
        super().__init__(max_retries=1)
        self._name = name
        self._inputs = dict(inputs)

    @property
    def name(self) -> str:
        return self._name

    @property
    def factor_keys(self) -> tuple[str, ...]:
        return tuple(self._inputs)

    async def fetch_raw(self) -> Any:
        return self._inputs

    def normalize(self, raw: Any) -> dict[str, FactorInput]:
        return dict(raw)
