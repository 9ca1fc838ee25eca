"""
Orchestrator Package.

Wires data sources, the composite risk engine, persistence and
alert delivery into a daily run, and exposes the CLI.
"""

from .core import (
    DailyRiskPipeline,
    JsonLogFormatter,
    PipelineResult,
    extract_daily_flows,
    setup_logging,
)


__all__ = [
    "DailyRiskPipeline",
    "JsonLogFormatter",
    "PipelineResult",
    "extract_daily_flows",
    "setup_logging",
]
