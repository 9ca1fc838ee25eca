"""
HTTP JSON Source - Fetches a series bundle from an HTTP endpoint.
"""

import logging
from typing import Any, Iterable, Optional

from composite_risk.types import FactorInput
from data_sources.base import BaseSeriesSource
from data_sources.providers.bundle import parse_bundle
from data_sources.providers.json_file import default_factor_keys


logger = logging.getLogger(__name__)


class HttpJsonSeriesSource(BaseSeriesSource):
    """
    GETs a bundle from ``url``.

    Server errors, rate limits and connection errors are
    retried with exponential backoff; client errors are not.
    """

    def __init__(
        self,
        url: str,
        factor_keys: Optional[Iterable[str]] = None,
        name: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: float = BaseSeriesSource.DEFAULT_TIMEOUT,
        max_retries: int = BaseSeriesSource.MAX_RETRIES,
        retry_backoff_base: float = BaseSeriesSource.RETRY_BACKOFF_BASE,
        session=None,
    ) -> None:
        super().__init__(
            timeout=timeout,
            max_retries=max_retries,
            retry_backoff_base=retry_backoff_base,
            session=session,
        )
        self._url = url
        self._params = params
        self._headers = headers
        self._factor_keys = tuple(factor_keys) if factor_keys is not None else default_factor_keys()
        self._name = name or f"http:{url}"

    @property
    def name(self) -> str:
        return self._name

    @property
    def factor_keys(self) -> tuple[str, ...]:
        return self._factor_keys

    async def fetch_raw(self) -> Any:
        return await self._get_json(self._url, params=self._params, headers=self._headers)

    def normalize(self, raw: Any) -> dict[str, FactorInput]:
        return parse_bundle(raw, self.name)
