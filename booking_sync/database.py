"""
Engine and session setup for the sync worker.

The module-level engine and ``SessionLocal`` are built from settings at
import time. Services never import them directly; they receive a session
factory, so tests can bind their own engine.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_sync.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_db_engine(settings: Settings) -> Engine:
    """
    Create an engine for ``settings.database_url``.

    SQLite connections may be shared across sync worker threads; other
    databases get a pool sized for the worker pool plus the scheduler.
    """
    echo = settings.log_level == "DEBUG"
    if "sqlite" in settings.database_url.lower():
        return create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )

    return create_engine(
        settings.database_url,
        pool_size=settings.sync_max_workers + 2,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=echo,
    )


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    # SQLite leaves foreign keys off unless asked per connection
    if type(dbapi_conn).__module__.startswith("sqlite3"):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


settings = get_settings()

if settings.is_production:
    settings.validate_production_config()

engine = create_db_engine(settings)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """
    Create any missing tables.

    Only for local SQLite databases; deployed databases are migrated with
    Alembic.
    """
    from booking_sync.models import Base

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ready at {engine.url.render_as_string(hide_password=True)}")


def check_connection() -> bool:
    """Run a trivial query to confirm the database is reachable."""
    try:
        with get_db_context() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Cannot reach the database: {e}")
        return False
    return True
