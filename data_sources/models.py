"""
Data Source Models - Source health and metadata.

Health moves UNKNOWN -> HEALTHY on the first success and
degrades on consecutive failures:

    failures >= degraded_after     -> DEGRADED
    failures >= unavailable_after  -> UNAVAILABLE

Any success resets the streak and restores HEALTHY.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SourceStatus(str, Enum):
    """Health status of a series source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class SourceHealth:
    """Mutable health record for one source."""

    status: SourceStatus
    last_check: datetime
    degraded_after: int = 3
    unavailable_after: int = 5
    consecutive_failures: int = 0
    attempts: int = 0
    successes: int = 0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def success_rate(self) -> Optional[float]:
        """Share of fetches that succeeded, as a percentage."""
        if self.attempts == 0:
            return None
        return self.successes / self.attempts * 100

    def record_success(self, at: datetime) -> bool:
        """Record a successful fetch. Returns True if the status changed."""
        self.attempts += 1
        self.successes += 1
        self.consecutive_failures = 0
        self.last_success = at
        self.last_check = at
        return self._set(SourceStatus.HEALTHY)

    def record_failure(self, error: str, at: datetime) -> bool:
        """Record a failed fetch. Returns True if the status changed."""
        self.attempts += 1
        self.consecutive_failures += 1
        self.last_error = error
        self.last_check = at

        if self.consecutive_failures >= self.unavailable_after:
            return self._set(SourceStatus.UNAVAILABLE)
        if self.consecutive_failures >= self.degraded_after:
            return self._set(SourceStatus.DEGRADED)
        return False

    def _set(self, status: SourceStatus) -> bool:
        changed = self.status != status
        self.status = status
        return changed

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "consecutive_failures": self.consecutive_failures,
            "success_rate": self.success_rate,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class SourceMetadata:
    """Static description of a source: which factor keys it serves."""

    name: str
    factor_keys: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    def provides(self, key: str) -> bool:
        return key in self.factor_keys
