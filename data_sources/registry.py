"""
Source Registry - Central registry for series sources with fallback logic.

Provides:
- Source registration and discovery
- Concurrent resolution of every factor input
- Fallback to later sources when an earlier one fails
- Health snapshot per source
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from composite_risk.types import FactorInput
from data_sources.base import BaseSeriesSource
from data_sources.exceptions import DataSourceError, SourceTimeoutError
from data_sources.models import SourceHealth, SourceMetadata


logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_TIMEOUT = 60.0


class SourceRegistry:
    """
    Central registry for series sources.

    Sources are consulted in registration order: for every
    factor key the first successful input wins. When every
    source serving a key fails, the first error is kept so the
    factor is excluded with a reason.

    Usage:
        registry = SourceRegistry()
        registry.register(JsonFileSource("inputs.json"))
        inputs = await registry.resolve_all(timeout=30)
    """

    def __init__(self) -> None:
        self._sources: dict[str, BaseSeriesSource] = {}
        self._on_failure_callbacks: list[Callable[[str, str], None]] = []

    def register(self, source: BaseSeriesSource) -> None:
        """
        Register a series source.

        Raises:
            ValueError: If a source with the same name exists
        """
        if source.name in self._sources:
            raise ValueError(f"Source '{source.name}' is already registered")
        self._sources[source.name] = source
        logger.info(f"Registered source: {source.name} (keys={list(source.factor_keys)})")

    def unregister(self, name: str) -> Optional[BaseSeriesSource]:
        source = self._sources.pop(name, None)
        if source:
            logger.info(f"Unregistered source: {name}")
        return source

    def get_source(self, name: str) -> Optional[BaseSeriesSource]:
        return self._sources.get(name)

    def list_sources(self) -> list[str]:
        return list(self._sources)

    def get_all_metadata(self) -> dict[str, SourceMetadata]:
        return {name: s.metadata() for name, s in self._sources.items()}

    def get_all_health(self) -> dict[str, SourceHealth]:
        return {name: s.get_health() for name, s in self._sources.items()}

    def on_failure(self, callback: Callable[[str, str], None]) -> None:
        """Register a callback(source_name, error) for failed fetches."""
        self._on_failure_callbacks.append(callback)

    async def _fetch_one(self, source: BaseSeriesSource, timeout: float) -> dict[str, FactorInput]:
        try:
            return await asyncio.wait_for(source.fetch(), timeout=timeout)
        except asyncio.TimeoutError:
            error = SourceTimeoutError(f"Timed out after {timeout}s", source_name=source.name)
        except DataSourceError as e:
            error = e
        logger.warning(f"[{source.name}] {error}")
        return source.error_inputs(str(error))

    async def resolve_all(self, timeout: float = DEFAULT_RESOLVE_TIMEOUT) -> dict[str, FactorInput]:
        """
        Fetch every source concurrently and merge by factor key.

        Args:
            timeout: Per-source timeout in seconds

        Returns:
            FactorInput per key; failed keys carry ``error``
        """
        sources = list(self._sources.values())
        if not sources:
            logger.warning("No sources registered")
            return {}

        results = await asyncio.gather(*(self._fetch_one(s, timeout) for s in sources))

        resolved: dict[str, FactorInput] = {}
        for source, inputs in zip(sources, results):
            for key, factor_input in inputs.items():
                current = resolved.get(key)
                if current is None or (current.failed and not factor_input.failed):
                    resolved[key] = factor_input
                if factor_input.failed:
                    self._notify_failure(source.name, factor_input.error or "")

        failed = sorted(k for k, v in resolved.items() if v.failed)
        logger.info(
            f"Resolved {len(resolved)} inputs from {len(sources)} sources"
            + (f" (failed: {', '.join(failed)})" if failed else "")
        )
        return resolved

    def _notify_failure(self, source_name: str, error: str) -> None:
        for callback in self._on_failure_callbacks:
            try:
                callback(source_name, error)
            except Exception as e:
                logger.error(f"Failure callback error: {e}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_sources": len(self._sources),
            "checked_at": datetime.now(timezone.utc).isoformat(),
            "sources": {name: h.to_dict() for name, h in self.get_all_health().items()},
        }

    async def close(self) -> None:
        """Close all sources."""
        for source in self._sources.values():
            try:
                await source.close()
            except Exception as e:
                logger.error(f"Error closing {source.name}: {e}")

    async def __aenter__(self) -> "SourceRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
