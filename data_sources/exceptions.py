"""
Data Source Exceptions.

============================================================
HIERARCHY
============================================================
SourceUnavailableError (composite_risk)
 └── DataSourceError
      ├── FetchError            transport / HTTP failure
      │    └── RateLimitError   HTTP 429, carries Retry-After
      ├── NormalizationError    payload did not parse
      └── SourceTimeoutError    registry per-source timeout

Every error here excludes the factors its source serves.
The error text ends up in the factor's exclusion reason, so
__str__ stays short and single-line.

============================================================
"""

from typing import Optional

from composite_risk.types import SourceUnavailableError


class DataSourceError(SourceUnavailableError):
    """Base exception for all series source errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error

    def __str__(self) -> str:
        text = self.message
        if self.source_name:
            text = f"{text} [source={self.source_name}]"
        if self.original_error is not None and str(self.original_error) not in self.message:
            text = f"{text} (caused by: {self.original_error})"
        return text


class FetchError(DataSourceError):
    """
    Fetch failed at the transport or HTTP level.

    Connection errors (no status) and 5xx responses are retried;
    4xx responses are not. Pass transient=False for failures that
    a retry cannot fix, such as an unreadable local file.
    """

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        transient: Optional[bool] = None,
    ) -> None:
        super().__init__(message, source_name, original_error)
        self.status_code = status_code
        self.request_url = request_url
        self._transient = transient

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        if self._transient is not None:
            return self._transient
        return self.status_code is None or self.status_code >= 500


class RateLimitError(FetchError):
    """Provider answered 429."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(message, source_name, status_code=429)
        self.retry_after_seconds = retry_after_seconds

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return True


class NormalizationError(DataSourceError):
    """Payload could not be converted into factor inputs."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source_name, original_error)
        self.field_name = field_name


class SourceTimeoutError(DataSourceError):
    """Source did not answer within the per-source timeout."""
