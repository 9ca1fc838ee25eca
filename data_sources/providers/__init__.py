"""
Series source implementations.
"""

from data_sources.providers.bundle import PRICE_KEY, parse_bundle, parse_timestamp
from data_sources.providers.http_json import HttpJsonSeriesSource
from data_sources.providers.json_file import JsonFileSource
from data_sources.providers.static import StaticSeriesSource


__all__ = [
    "PRICE_KEY",
    "parse_bundle",
    "parse_timestamp",
    "HttpJsonSeriesSource",
    "JsonFileSource",
    "StaticSeriesSource",
]
