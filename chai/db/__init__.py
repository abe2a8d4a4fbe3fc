"""Database engine and session management."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import structlog
from sqlalchemy import Engine, event, text
from sqlmodel import Session as DBSession
from sqlmodel import SQLModel, create_engine

from chai.settings import settings

logger = structlog.get_logger(__name__)

INITIAL_REVISION = "3f1c2a9d7b10"

# SQLite allows one writer at a time; all writes in the process go through
# this lock so sequence allocation never races.
write_lock = threading.Lock()

# Lazy-initialized engine
_engine: Engine | None = None


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        db_path = settings.db_path()
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        _engine = create_engine(
            get_db_url(),
            echo=False,
            connect_args={"check_same_thread": False},
        )
        event.listen(_engine, "connect", _configure_sqlite)
    return _engine


def reset_engine() -> None:
    """Reset the engine so it will be recreated with current settings.

    Used by tests to point at a fresh database after changing CHAI_DB.
    """
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def get_db_url() -> str:
    """Return the database URL for Alembic."""
    return f"sqlite:///{settings.db_path()}"


def get_session() -> DBSession:
    """Get a new database session."""
    return DBSession(_get_engine())


def ping() -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    with _get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))


def _run_migrations() -> None:
    """Run Alembic migrations to bring schema up to date.

    Handles three cases:
    1. Brand-new DB (no tables): runs all migrations from initial schema.
    2. Existing DB without alembic_version (created before stream tracking
       existed): stamps initial, then runs remaining migrations.
    3. Existing DB with alembic_version: runs only pending migrations.
    """
    from alembic import command
    from alembic.config import Config
    from sqlalchemy import inspect

    engine = _get_engine()
    inspector = inspect(engine)
    tables = inspector.get_table_names()

    alembic_dir = Path(__file__).resolve().parent.parent.parent / "alembic"
    ini_path = alembic_dir.parent / "alembic.ini"

    if not ini_path.exists():
        # Running from installed package without alembic dir, fall back
        logger.debug("Alembic config not found, using create_all()")
        SQLModel.metadata.create_all(bind=engine)
        return

    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(alembic_dir))
    cfg.set_main_option("sqlalchemy.url", get_db_url())

    has_tables = "sessions" in tables
    has_alembic = "alembic_version" in tables

    if not has_tables:
        logger.info("New database, running all migrations")
        command.upgrade(cfg, "head")
    elif not has_alembic:
        logger.info("Existing database without migration tracking, stamping initial revision")
        command.stamp(cfg, INITIAL_REVISION)
        command.upgrade(cfg, "head")
    else:
        command.upgrade(cfg, "head")


def init_db() -> None:
    """Initialize the database schema, running any pending migrations."""
    import chai.models  # noqa: F401  (registers tables on SQLModel.metadata)

    try:
        _run_migrations()
    except Exception:
        logger.warning("Alembic migration failed, falling back to create_all()", exc_info=True)
        SQLModel.metadata.create_all(bind=_get_engine())


__all__ = [
    "get_session",
    "get_db_url",
    "init_db",
    "ping",
    "reset_engine",
    "write_lock",
    "DBSession",
]
