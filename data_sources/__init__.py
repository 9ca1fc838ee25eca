"""
Data Sources Package - Pluggable factor input layer.

Sources fetch raw series for the composite risk engine and hand
them over as FactorInput objects. The engine never talks to a
provider directly.

Quick Start:
    from data_sources import JsonFileSource, SourceRegistry

    async def load():
        async with SourceRegistry() as registry:
            registry.register(JsonFileSource("inputs.json"))
            return await registry.resolve_all(timeout=30)

Adding New Providers:
    1. Create class extending BaseSeriesSource
    2. Implement: name, factor_keys, fetch_raw(), normalize()
    3. Register with SourceRegistry
"""

from data_sources.base import BaseSeriesSource
from data_sources.exceptions import (
    DataSourceError,
    FetchError,
    NormalizationError,
    RateLimitError,
    SourceTimeoutError,
)
from data_sources.models import SourceHealth, SourceMetadata, SourceStatus
from data_sources.providers import (
    PRICE_KEY,
    HttpJsonSeriesSource,
    JsonFileSource,
    StaticSeriesSource,
    parse_bundle,
)
from data_sources.registry import DEFAULT_RESOLVE_TIMEOUT, SourceRegistry


__all__ = [
    "BaseSeriesSource",
    "DataSourceError",
    "FetchError",
    "NormalizationError",
    "RateLimitError",
    "SourceTimeoutError",
    "SourceHealth",
    "SourceMetadata",
    "SourceStatus",
    "PRICE_KEY",
    "HttpJsonSeriesSource",
    "JsonFileSource",
    "StaticSeriesSource",
    "parse_bundle",
    "DEFAULT_RESOLVE_TIMEOUT",
    "SourceRegistry",
]
