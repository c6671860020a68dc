"""
Database Persistence Layer - Core Engine.

============================================================
LEDGER DATABASE PERSISTENCE
============================================================

This module provides the transactional persistence used by
every mutating ledger operation.

Requirements:
- SQLAlchemy ORM (PostgreSQL in production, SQLite for dev/tests)
- Explicit transaction management
- Serializable isolation for mutations
- Hard failures on persistence errors

============================================================
"""

import os
import logging
from typing import Any, Callable, Dict, Generator, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase
from sqlalchemy.exc import SQLAlchemyError, OperationalError, DBAPIError
from sqlalchemy.pool import QueuePool, StaticPool

from dotenv import load_dotenv

from core.exceptions import (
    EngineException,
    TransactionConflictError,
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


# =============================================================
# DECLARATIVE BASE
# =============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# =============================================================
# DATABASE ENGINE
# =============================================================

DEFAULT_DATABASE_URL = "sqlite:///ledger.db"

# SQLSTATEs for serialization failure and deadlock
CONFLICT_SQLSTATES = {"40001", "40P01"}

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgresql+asyncpg"):
        # Convert async URL to sync
        url = url.replace("postgresql+asyncpg", "postgresql")

    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")

    return url


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in url


def create_database_engine(
    url: Optional[str] = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
    isolation_level: Optional[str] = "SERIALIZABLE",
    statement_timeout_ms: Optional[int] = None,
) -> Engine:
    """
    Create SQLAlchemy engine.

    Args:
        url: Database URL (defaults to DATABASE_URL / local SQLite)
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_timeout: Seconds to wait for available connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements
        isolation_level: Transaction isolation (ignored on SQLite)
        statement_timeout_ms: PostgreSQL statement_timeout

    Returns:
        SQLAlchemy Engine
    """
    database_url = url or get_database_url()
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}

    if _is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(database_url):
            # One shared connection so every session sees the same database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
        )
        if isolation_level:
            kwargs["isolation_level"] = isolation_level
        if statement_timeout_ms and database_url.startswith("postgresql"):
            kwargs["connect_args"] = {"options": f"-c statement_timeout={int(statement_timeout_ms)}"}

    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    if _is_sqlite(database_url):
        @event.listens_for(engine, "connect")
        def enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Get the database engine, creating if necessary."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
    return _engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker:
    """Get the default session factory, creating if necessary."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = create_session_factory(get_engine())

    return _SessionFactory


# =============================================================
# SESSION MANAGEMENT
# =============================================================

@contextmanager
def read_scope(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Session for lock-free reads.

    Nothing is committed. Closing releases the connection without
    expiring loaded objects, so results stay readable after the scope.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
    finally:
        session.close()


def is_conflict_error(error: SQLAlchemyError) -> bool:
    """Check if a database error is a serialization failure or lock conflict."""
    if not isinstance(error, DBAPIError):
        return False
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    return isinstance(error, OperationalError) and "database is locked" in str(orig)


@contextmanager
def transaction_scope(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception.

    Engine exceptions propagate unchanged. Database errors are
    wrapped as TransactionConflictError (retryable) or
    DatabasePersistenceError.

    Usage:
        with transaction_scope(factory) as session:
            review_deposit(session, ...)
            # Commits automatically at end
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("Database transaction committed successfully")
    except EngineException:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        if is_conflict_error(e):
            logger.warning(f"Transaction conflict, rolled back: {e}")
            raise TransactionConflictError(f"Transaction conflict: {e}", cause=e) from e
        logger.error(f"Database transaction failed, rolling back: {e}", exc_info=True)
        raise DatabasePersistenceError(f"Transaction failed: {e}", cause=e) from e
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
    Verify database connection is working.

    Raises:
        DatabaseConnectionError if connection fails
    """
    engine = engine or get_engine()

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseConnectionError(f"Cannot connect to database: {e}", cause=e) from e


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        DatabaseInitializationError if table creation fails
    """
    engine = engine or get_engine()

    # Register models with Base
    from . import models  # noqa: F401

    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}", cause=e) from e


def initialize_database(engine: Optional[Engine] = None) -> None:
    """
    Full database initialization sequence.

    1. Verify connection
    2. Create tables if not exist
    3. Abort on any failure
    """
    logger.info("=" * 60)
    logger.info("INITIALIZING LEDGER DATABASE")
    logger.info("=" * 60)

    try:
        verify_database_connection(engine)
        create_all_tables(engine)
        logger.info("DATABASE INITIALIZATION COMPLETE")
    except Exception as e:
        logger.critical(f"DATABASE INITIALIZATION FAILED: {e}")
        raise


# =============================================================
# EXPORTS
# =============================================================

__all__ = [
    # Base
    "Base",
    # Engine & Session
    "get_database_url",
    "create_database_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "read_scope",
    "transaction_scope",
    "is_conflict_error",
    # Initialization
    "initialize_database",
    "verify_database_connection",
    "create_all_tables",
    # Exceptions
    "TransactionConflictError",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
