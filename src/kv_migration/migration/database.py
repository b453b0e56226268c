"""
Database connection management for resume state.

This module provides helpers for creating the SQLAlchemy engine that backs
the resume store and for running sessions with commit/rollback handling.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, pool
from sqlalchemy.orm import Session, sessionmaker

from kv_migration.client.exceptions import ConfigurationError, StateError
from kv_migration.migration.models import Base
from kv_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _sqlite_path(database_url: str) -> Path | None:
    if not database_url.startswith("sqlite:///"):
        return None
    path = database_url[len("sqlite:///") :]
    if not path or path == ":memory:":
        return None
    return Path(path)


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        if database_url.startswith("sqlite"):
            sqlite_path = _sqlite_path(database_url)
            if sqlite_path is not None:
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)

            # NullPool avoids sharing SQLite connections between worker threads
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        logger.debug("database_engine_created", database_url=database_url)
        return engine

    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def init_database(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine and all resume tables.

    Idempotent: existing tables are left untouched.

    Raises:
        ConfigurationError: If database initialization fails
    """
    engine = create_database_engine(database_url, echo=echo)
    try:
        Base.metadata.create_all(engine)
    except Exception as e:
        engine.dispose()
        logger.error("database_init_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to initialize database: {e}") from e
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def get_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success and rolls back on exception. Always closes the
    session when done.

    Yields:
        SQLAlchemy Session instance

    Raises:
        StateError: If database operation fails
    """
    session = session_factory()

    try:
        yield session
        session.commit()

    except Exception as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e

    finally:
        session.close()
