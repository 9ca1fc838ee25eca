"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the composite risk engine.

- run:              Score one UTC day, persist, detect and send alerts
- validate-config:  Load and validate the effective configuration
- show-latest:      Print the most recent stored snapshot

============================================================
USAGE
============================================================
python -m orchestrator.cli run --inputs inputs.json
python -m orchestrator.cli run --inputs inputs.json --as-of 2024-05-01 --dry-run
python -m orchestrator.cli validate-config --config overrides.json
python -m orchestrator.cli show-latest --database-url sqlite:///composite_risk.db

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from composite_risk.alerting import create_dispatcher
from composite_risk.bands import BandClassifier
from composite_risk.config import CompositeRiskConfig, load_config
from composite_risk.engine import CompositeRiskEngine, format_snapshot_summary
from composite_risk.repository import CompositeRiskRepository
from composite_risk.types import ConfigInvariantViolation
from data_sources import HttpJsonSeriesSource, JsonFileSource, SourceRegistry
from database import (
    DatabasePersistenceError,
    get_session_factory,
    initialize_database,
    transaction_scope,
)

from .core import DailyRiskPipeline, setup_logging


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    common = argparse.ArgumentParser(add_help=False)

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = common.add_argument_group("Logging Options")
    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="json",
        help="Logging format (default: json)",
    )
    common.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="JSON configuration override file (default: $COMPOSITE_RISK_CONFIG)",
    )

    parser = argparse.ArgumentParser(
        prog="composite-risk",
        description="Daily composite market risk score",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --inputs inputs.json
  %(prog)s run --inputs inputs.json --as-of 2024-05-01 --dry-run
  %(prog)s validate-config
  %(prog)s show-latest --json
        """,
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --------------------------------------------------------
    # run
    # --------------------------------------------------------
    run_parser = subparsers.add_parser("run", parents=[common], help="Score one day")
    run_parser.add_argument(
        "--inputs",
        action="append",
        default=[],
        metavar="PATH",
        help="Input bundle file (repeatable; earlier files win per factor)",
    )
    run_parser.add_argument(
        "--inputs-url",
        action="append",
        default=[],
        metavar="URL",
        help="HTTP endpoint serving an input bundle (repeatable)",
    )
    run_parser.add_argument(
        "--as-of",
        type=str,
        metavar="YYYY-MM-DD",
        help="Run date or ISO timestamp, UTC (default: now)",
    )
    run_parser.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy database URL (default: $DATABASE_URL)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and detect but roll back and send nothing",
    )
    run_parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Run without a database",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Per-source timeout (default: from configuration)",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON",
    )

    # --------------------------------------------------------
    # validate-config
    # --------------------------------------------------------
    subparsers.add_parser(
        "validate-config",
        parents=[common],
        help="Validate the effective configuration",
    )

    # --------------------------------------------------------
    # show-latest
    # --------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show-latest",
        parents=[common],
        help="Print the latest stored snapshot",
    )
    show_parser.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy database URL (default: $DATABASE_URL)",
    )
    show_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the snapshot as JSON",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================


def parse_as_of(value: str) -> datetime:
    """
    Parse --as-of.

    A bare date means 00:00 UTC of that date; naive timestamps
    are taken as UTC.
    """
    if len(value) == 10:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if args.config and not Path(args.config).is_file():
        errors.append(f"--config file not found: {args.config}")

    if args.command == "run":
        if not args.inputs and not args.inputs_url:
            errors.append("run requires at least one --inputs or --inputs-url")
        for path in args.inputs:
            if not Path(path).is_file():
                errors.append(f"--inputs file not found: {path}")
        if args.as_of:
            try:
                parse_as_of(args.as_of)
            except ValueError as e:
                errors.append(f"Invalid --as-of: {e}")
        if args.timeout is not None and args.timeout <= 0:
            errors.append("--timeout must be positive")

    return errors


# ============================================================
# COMMANDS
# ============================================================


def build_registry(args: argparse.Namespace, config: CompositeRiskConfig) -> SourceRegistry:
    """Register one source per --inputs / --inputs-url, in order."""
    registry = SourceRegistry()
    for path in args.inputs:
        registry.register(JsonFileSource(path, name=f"file:{path}"))
    for url in args.inputs_url:
        registry.register(
            HttpJsonSeriesSource(
                url,
                timeout=config.sources.timeout_seconds,
                max_retries=config.sources.max_retries,
                retry_backoff_base=config.sources.retry_backoff_base,
            )
        )
    return registry


async def run_command(args: argparse.Namespace, config: CompositeRiskConfig) -> int:
    """Execute the daily pipeline once."""
    engine = CompositeRiskEngine(config)

    session_factory = None
    if not args.no_persist:
        initialize_database(args.database_url)
        session_factory = get_session_factory()

    as_of = parse_as_of(args.as_of) if args.as_of else None

    async with build_registry(args, config) as registry:
        pipeline = DailyRiskPipeline(
            engine=engine,
            registry=registry,
            session_factory=session_factory,
            dispatcher=create_dispatcher(config.alerting),
            dry_run=args.dry_run,
            source_timeout=args.timeout,
        )
        result = await pipeline.run(as_of)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(format_snapshot_summary(result.snapshot))
        for alert in result.alerts:
            print(f"ALERT {alert.type.value}: {alert.details}")
    return EXIT_OK


def validate_config_command(config: CompositeRiskConfig) -> int:
    print(f"Configuration OK (engine {config.engine_version}, digest {config.digest()})")
    for pillar in config.pillars:
        factors = ", ".join(f"{f.key}={f.weight_pct:g}" for f in config.factors_for_pillar(pillar.key))
        print(f"  {pillar.key:<10} {pillar.weight_pct:>5g}  [{factors}]")
    return EXIT_OK


def show_latest_command(args: argparse.Namespace, config: CompositeRiskConfig) -> int:
    initialize_database(args.database_url)
    with transaction_scope() as session:
        repo = CompositeRiskRepository(session, BandClassifier(config.bands))
        snapshot = repo.get_latest_snapshot()

    if args.json:
        print(json.dumps(snapshot.to_dict() if snapshot else None, indent=2, default=str))
    else:
        print(format_snapshot_summary(snapshot))
    return EXIT_OK


# ============================================================
# MAIN ENTRY POINT
# ============================================================


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(args.log_level, args.log_format)

    try:
        config = load_config(args.config)
    except ConfigInvariantViolation as e:
        for error in e.errors:
            print(f"Config error: {error}", file=sys.stderr)
        return EXIT_CONFIG
    except (OSError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        if args.command == "validate-config":
            return validate_config_command(config)
        if args.command == "show-latest":
            return show_latest_command(args, config)
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130
    except DatabasePersistenceError as e:
        logging.error(f"Database error: {e}")
        return EXIT_ERROR


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
