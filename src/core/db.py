"""Database connection and session management."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, List

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
from .logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Tables the aggregator reads and writes
REQUIRED_TABLES = ["property_cache", "pin_bids", "import_jobs", "import_pins"]


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def build_engine(database_url: str) -> Engine:
    """
    Create an engine with settings appropriate to the backend.

    File-backed SQLite uses NullPool with WAL enabled; in-memory SQLite uses a
    single shared connection; other backends get a pre-pinged pool.
    """
    if _is_sqlite(database_url):
        if _is_memory(database_url):
            new_engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            new_engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,
            )

            @event.listens_for(new_engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                cursor.close()

        @event.listens_for(new_engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return new_engine

    return create_engine(
        database_url,
        pool_size=SETTINGS.db_pool_size,
        max_overflow=SETTINGS.db_max_overflow,
        pool_timeout=SETTINGS.db_pool_timeout,
        pool_pre_ping=True,
    )


engine = build_engine(SETTINGS.database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_readonly_session() -> Generator[Session, None, None]:
    """
    Context manager for read-only database sessions.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_session_factory():
    """
    Return a session factory for background tasks and caches.

    Import jobs and the persistent cache run outside the FastAPI request
    lifecycle and open their own sessions.

    Usage:
        session_factory = get_session_factory()
        with session_factory() as session:
            ...  # committed on success
    """
    return get_session


def _missing_tables(bind: Engine) -> List[str]:
    existing_tables = set(inspect(bind).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing_tables]


def init_db(bind: Engine | None = None) -> dict[str, Any]:
    """
    Create any missing tables.

    Args:
        bind: Engine to initialize; defaults to the configured engine.

    Returns:
        Dict with initialization results.
    """
    from . import models  # noqa: F401

    target = bind or engine
    result: dict[str, Any] = {
        "status": "success",
        "tables_created": [],
        "tables_existing": [],
        "warnings": [],
    }

    try:
        existing_tables = set(inspect(target).get_table_names())
        Base.metadata.create_all(bind=target)
        final_tables = set(inspect(target).get_table_names())
        result["tables_created"] = sorted(final_tables - existing_tables)
        result["tables_existing"] = sorted(existing_tables)

        missing_required = _missing_tables(target)
        if missing_required:
            result["warnings"].append(f"Missing required tables: {missing_required}")
            result["status"] = "warning"
        if result["tables_created"]:
            LOGGER.info(f"Created tables: {result['tables_created']}")
    except SQLAlchemyError as e:
        result["status"] = "error"
        result["error"] = str(e)
        LOGGER.error(f"init_db failed: {e}")

    return result


def validate_database(bind: Engine | None = None) -> dict[str, Any]:
    """
    Validate database connection and required tables.

    Returns:
        Dict with validation results.
    """
    target = bind or engine
    result: dict[str, Any] = {
        "status": "ok",
        "database_url": target.url.render_as_string(hide_password=True),
        "tables_found": [],
        "tables_missing": [],
        "errors": [],
    }

    try:
        with target.connect() as conn:
            conn.execute(text("SELECT 1"))

        result["tables_found"] = inspect(target).get_table_names()
        missing = _missing_tables(target)
        result["tables_missing"] = missing

        if missing:
            result["status"] = "missing_tables"
            result["errors"].append(f"Missing required tables: {missing}")

    except SQLAlchemyError as e:
        result["status"] = "error"
        result["errors"].append(str(e))

    return result


__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "build_engine",
    "get_session",
    "get_readonly_session",
    "get_session_factory",
    "init_db",
    "validate_database",
    "REQUIRED_TABLES",
]
