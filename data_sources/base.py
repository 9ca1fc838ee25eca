"""
Base Series Source - Contract for factor input providers.

============================================================
CONTRACT
============================================================
A source declares the factor keys it serves (plus "price"
when it carries closes) and implements two steps:

    fetch_raw()   -> raw payload (may raise FetchError)
    normalize()   -> {factor_key: FactorInput}

fetch() wraps both with retry and health tracking and never
raises: on failure every declared key comes back as a
FactorInput carrying the error, which excludes the factor.

============================================================
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from composite_risk.types import FactorInput
from data_sources.exceptions import (
    DataSourceError,
    FetchError,
    NormalizationError,
    RateLimitError,
)
from data_sources.models import (
    SourceHealth,
    SourceMetadata,
    SourceStatus,
)


logger = logging.getLogger(__name__)

USER_AGENT = "composite-risk-engine/1.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseSeriesSource(ABC):
    """
    Retrying, health-tracked series source.

    HTTP sources share one aiohttp session per instance; pass
    ``session`` to reuse a caller-owned one.
    """

    DEFAULT_TIMEOUT = 30.0
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_backoff_base: float = RETRY_BACKOFF_BASE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_base = retry_backoff_base
        self._session = session
        self._owns_session = session is None

        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=_utcnow(),
            degraded_after=self.DEGRADED_THRESHOLD,
            unavailable_after=self.UNAVAILABLE_THRESHOLD,
        )

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @property
    @abstractmethod
    def factor_keys(self) -> tuple[str, ...]:
        """Factor keys (and "price") this source provides."""
        pass

    @abstractmethod
    async def fetch_raw(self) -> Any:
        """
        Fetch the raw payload.

        Raises:
            FetchError: If the fetch fails
        """
        pass

    @abstractmethod
    def normalize(self, raw: Any) -> dict[str, FactorInput]:
        """
        Convert a raw payload into factor inputs keyed by factor key.

        Raises:
            NormalizationError: If the payload is malformed
        """
        pass

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(name=self.name, factor_keys=tuple(self.factor_keys))

    async def fetch(self) -> dict[str, FactorInput]:
        """
        Fetch and normalize (main entry point).

        Never raises; failures are returned as error inputs.
        """
        try:
            raw = await self._fetch_with_retry()
            inputs = self.normalize(raw)
            self._on_success()
            return inputs

        except DataSourceError as e:
            self._on_error(e)
            return self.error_inputs(str(e))
        except Exception as e:
            error = DataSourceError(
                message=f"Unexpected error: {e}",
                source_name=self.name,
                original_error=e,
            )
            self._on_error(error)
            return self.error_inputs(str(error))

    def error_inputs(self, message: str) -> dict[str, FactorInput]:
        """One failed FactorInput per declared key."""
        now = _utcnow()
        return {
            key: FactorInput(key=key, source=self.name, fetched_at=now, error=message)
            for key in self.factor_keys
        }

    def _backoff(self, error: DataSourceError, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after_seconds:
            return error.retry_after_seconds
        return self._backoff_base ** attempt

    async def _fetch_with_retry(self) -> Any:
        """
        Fetch with exponential backoff.

        Only retryable errors are retried (see FetchError.retryable);
        anything else propagates on the first attempt.
        """
        last_error: Optional[DataSourceError] = None

        for attempt in range(self._max_retries):
            try:
                return await self.fetch_raw()
            except DataSourceError as e:
                if not e.retryable:
                    raise
                last_error = e
                if attempt == self._max_retries - 1:
                    break
                wait_time = self._backoff(e, attempt)
                logger.warning(
                    f"[{self.name}] {e.message}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)

        raise FetchError(
            message=f"Failed after {self._max_retries} attempts: {last_error}",
            source_name=self.name,
            original_error=last_error,
            transient=False,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Session owned by this source unless one was passed in."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._default_headers(),
            )
            self._owns_session = True
        return self._session

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": USER_AGENT}

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        GET a JSON document.

        Raises:
            RateLimitError: On 429 (honours Retry-After seconds)
            FetchError: On other HTTP errors and connection failures
            NormalizationError: When the body is not JSON
        """
        session = await self._get_session()
        started = time.monotonic()

        try:
            async with session.get(url, params=params, headers=headers) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        source_name=self.name,
                        retry_after_seconds=float(retry_after) if retry_after else None,
                    )
                if response.status >= 400:
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        request_url=url,
                    )
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise NormalizationError("Response is not JSON", self.name, original_error=e) from e

        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            ) from e

        logger.debug(f"[{self.name}] GET {url} in {(time.monotonic() - started) * 1000:.1f}ms")
        return data

    def _on_success(self) -> None:
        if self._health.record_success(_utcnow()):
            logger.info(f"[{self.name}] Status is now HEALTHY")

    def _on_error(self, error: DataSourceError) -> None:
        logger.warning(f"[{self.name}] Fetch failed: {error}")
        if self._health.record_failure(str(error), _utcnow()):
            logger.error(
                f"[{self.name}] Marked {self._health.status.value.upper()} after "
                f"{self._health.consecutive_failures} consecutive failures"
            )

    def get_health(self) -> SourceHealth:
        """Current health record."""
        return self._health

    async def close(self) -> None:
        """Close the HTTP session if this source created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BaseSeriesSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
