"""
Database Package.

SQLAlchemy engine, sessions and table bootstrap for the
composite risk store. The ORM models live in
composite_risk.models and register on ``Base``.

Usage:
    from database import initialize_database, transaction_scope

    initialize_database("sqlite:///composite_risk.db")
    with transaction_scope() as session:
        ...
"""

from .engine import (
    Base,
    DEFAULT_DATABASE_URL,
    REQUIRED_TABLES,
    DatabaseConnectionError,
    DatabaseInitializationError,
    DatabasePersistenceError,
    configure_database,
    create_all_tables,
    create_database_engine,
    get_engine,
    get_session,
    get_session_factory,
    initialize_database,
    transaction_scope,
    verify_database_connection,
    verify_required_tables,
)


__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "REQUIRED_TABLES",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
    "DatabasePersistenceError",
    "configure_database",
    "create_all_tables",
    "create_database_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "initialize_database",
    "transaction_scope",
    "verify_database_connection",
    "verify_required_tables",
]
