#!/usr/bin/env python
"""
Composite Risk Read API - Server Runner.

Usage:
    python run_dashboard.py
    python run_dashboard.py --port 9000 --database-url sqlite:///composite_risk.db

Environment (flags win):
    DASHBOARD_HOST, DASHBOARD_PORT (or PORT), DATABASE_URL, ENVIRONMENT
"""

import argparse
import os
import sys
from typing import List, Optional

import uvicorn

from database import DatabasePersistenceError, initialize_database
from orchestrator.core import setup_logging


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_dashboard",
        description="Serve the composite risk read API",
    )
    parser.add_argument("--host", default=os.getenv("DASHBOARD_HOST", "0.0.0.0"))
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("DASHBOARD_PORT", os.getenv("PORT", "8000"))),
    )
    parser.add_argument("--database-url", metavar="URL", help="SQLAlchemy URL (default: $DATABASE_URL)")
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("ENVIRONMENT", "production") == "development",
        help="Reload on code changes (default in development)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Initialize the database, then hand over to uvicorn."""
    args = create_parser().parse_args(argv)
    logger = setup_logging(args.log_level, log_format="text")

    try:
        initialize_database(args.database_url)
    except DatabasePersistenceError as e:
        logger.error(f"Database unavailable: {e}")
        return 1

    logger.info(f"Starting composite risk API on {args.host}:{args.port}")
    uvicorn.run(
        "dashboard.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
        access_log=True,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
