"""
Composite Risk Store - Engine and Sessions.

============================================================
PURPOSE
============================================================
Engine and session management for the composite risk store.

- Any SQLAlchemy URL, SQLite file by default
- One transaction per pipeline run (transaction_scope)
- SQLAlchemy errors surface as DatabasePersistenceError

============================================================
CONFIGURATION
============================================================
DATABASE_URL   SQLAlchemy URL (default: sqlite:///composite_risk.db)
DATABASE_ECHO  Log SQL statements when "true"

============================================================
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# =============================================================
# DECLARATIVE BASE
# =============================================================

Base = declarative_base()

# =============================================================
# DATABASE ENGINE
# =============================================================

DEFAULT_DATABASE_URL = "sqlite:///composite_risk.db"

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def get_database_url() -> str:
    """DATABASE_URL, or the local SQLite file."""
    url = os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.info(f"DATABASE_URL not set, using default: {url}")
    return url


def create_database_engine(
    url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
    echo: Optional[bool] = None,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    Pool settings apply to server databases only. In-memory
    SQLite uses a single shared connection so every session
    sees the same data.

    Args:
        url: SQLAlchemy URL (defaults to get_database_url())
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements (defaults to DATABASE_ECHO)

    Returns:
        SQLAlchemy Engine
    """
    url = url or get_database_url()
    if echo is None:
        echo = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    logger.info(f"Creating database engine for: {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        if url.startswith("sqlite"):
            # Factor rows cascade with their snapshot.
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        logger.debug("Opened database connection")

    return engine


def configure_database(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Replace the process-wide engine and session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = create_database_engine(url, echo=echo)
    _SessionFactory = None
    return _engine


def get_engine() -> Engine:
    """Process-wide engine (lazily created from DATABASE_URL)."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the process-wide engine."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    return _SessionFactory


# =============================================================
# SESSION MANAGEMENT
# =============================================================


def get_session() -> Session:
    """Unmanaged session; the caller commits and closes it."""
    return get_session_factory()()


@contextmanager
def transaction_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on clean exit, roll back otherwise.

    SQLAlchemy errors are re-raised as DatabasePersistenceError.
    The daily pipeline manages its own session so it can roll
    back dry runs; read paths use this scope.
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("Committed")
    except SQLAlchemyError as e:
        logger.error(f"Rolling back: {e}")
        session.rollback()
        raise DatabasePersistenceError(f"Write failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


def verify_database_connection(engine: Optional[Engine] = None) -> bool:
    """
    Round-trip a SELECT 1.

    Raises:
        DatabaseConnectionError: When the database cannot be reached
    """
    engine = engine or get_engine()

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            logger.debug("Database reachable")
            return True
    except OperationalError as e:
        logger.error(f"Database unreachable: {e}")
        raise DatabaseConnectionError(f"Database unreachable: {e}") from e


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create the composite risk tables that do not exist yet.

    Raises:
        DatabaseInitializationError: When DDL fails
    """
    # Registers the models with Base.metadata.
    import composite_risk.models  # noqa: F401

    engine = engine or get_engine()

    try:
        Base.metadata.create_all(bind=engine)
        logger.debug(f"Ensured {len(Base.metadata.tables)} tables")
    except SQLAlchemyError as e:
        logger.error(f"Schema creation failed: {e}")
        raise DatabaseInitializationError(f"Schema creation failed: {e}") from e


REQUIRED_TABLES = (
    "composite_snapshots",
    "composite_factor_scores",
    "composite_alert_log",
    "composite_flow_history",
)


def verify_required_tables(engine: Optional[Engine] = None) -> None:
    """
    Check that every composite risk table exists.

    Raises:
        DatabaseInitializationError listing the missing tables
    """
    engine = engine or get_engine()
    existing = set(inspect(engine).get_table_names())
    missing = [t for t in REQUIRED_TABLES if t not in existing]
    for table in REQUIRED_TABLES:
        logger.debug(f"  [{'!!' if table in missing else 'OK'}] {table}")
    if missing:
        raise DatabaseInitializationError(f"Missing tables: {', '.join(missing)}")


def initialize_database(url: Optional[str] = None) -> Engine:
    """
    Connect, create missing tables and verify the schema.

    With a URL the process-wide engine is replaced; without one
    the DATABASE_URL engine is used.
    """
    engine = configure_database(url) if url else get_engine()
    verify_database_connection(engine)
    create_all_tables(engine)
    verify_required_tables(engine)
    logger.info(f"Database ready ({engine.url.render_as_string(hide_password=True)})")
    return engine


# =============================================================
# ERRORS
# =============================================================


class DatabasePersistenceError(Exception):
    """Any failure reading or writing the risk store."""


class DatabaseConnectionError(DatabasePersistenceError):
    """The database could not be reached."""


class DatabaseInitializationError(DatabasePersistenceError):
    """Schema creation or verification failed."""


# =============================================================
# EXPORTS
# =============================================================

__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "create_database_engine",
    "configure_database",
    "get_engine",
    "get_session",
    "get_session_factory",
    "transaction_scope",
    "initialize_database",
    "verify_database_connection",
    "create_all_tables",
    "verify_required_tables",
    "REQUIRED_TABLES",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
