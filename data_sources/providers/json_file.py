"""
JSON File Source - Reads a series bundle from local disk.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from composite_risk.config import DEFAULT_FACTORS
from composite_risk.types import FactorInput
from data_sources.base import BaseSeriesSource
from data_sources.exceptions import FetchError
from data_sources.providers.bundle import PRICE_KEY, parse_bundle


logger = logging.getLogger(__name__)


def default_factor_keys() -> tuple[str, ...]:
    return tuple(f.key for f in DEFAULT_FACTORS) + (PRICE_KEY,)


class JsonFileSource(BaseSeriesSource):
    """
    Loads a bundle file (see providers.bundle for the schema).

    Missing or unreadable files are fetch errors; no retry is
    attempted because the file will not change between attempts.
    """

    def __init__(
        self,
        path: Union[str, Path],
        factor_keys: Optional[Iterable[str]] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(max_retries=1)
        self._path = Path(path)
        self._factor_keys = tuple(factor_keys) if factor_keys is not None else default_factor_keys()
        self._name = name or f"file:{self._path.name}"

    @property
    def name(self) -> str:
        return self._name

    @property
    def factor_keys(self) -> tuple[str, ...]:
        return self._factor_keys

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Any:
        with self._path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    async def fetch_raw(self) -> Any:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, json.JSONDecodeError) as e:
            raise FetchError(
                message=f"Cannot read bundle {self._path}: {e}",
                source_name=self.name,
                original_error=e,
                transient=False,
            ) from e

    def normalize(self, raw: Any) -> dict[str, FactorInput]:
        inputs = parse_bundle(raw, self.name)
        logger.info(f"[{self.name}] Loaded {len(inputs)} inputs from {self._path}")
        return inputs
