"""
Database connection management for cronpost.

A lazily created SQLAlchemy engine and session factory shared by the CLI
and the daemon. SQLite is the default backend.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from cronpost.config import get_config, CronpostConfig

logger = logging.getLogger(__name__)

# Global engine and session factory (lazy-loaded)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[CronpostConfig] = None) -> Optional[Path]:
    """
    Get the database file path.

    Args:
        config: cronpost configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for non-file databases
    """
    if config is None:
        config = get_config()

    # Extract path from database_url (sqlite:///path)
    db_url = config.database_url
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        return Path(db_url[10:])
    return None


def init_engine(config: Optional[CronpostConfig] = None) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    Args:
        config: cronpost configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    connect_args = {}
    if config.database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,  # log sink writes from worker threads
            "timeout": 30,
        }

    _engine = create_engine(
        config.database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
    )

    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def get_session_maker(config: Optional[CronpostConfig] = None) -> sessionmaker:
    """
    Get or create the session maker.

    Args:
        config: cronpost configuration (uses global if not provided)

    Returns:
        Configured session maker
    """
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    engine = init_engine(config)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )

    return _SessionLocal


@contextmanager
def get_db_session(config: Optional[CronpostConfig] = None) -> Generator[Session, None, None]:
    """
    Get a database session context manager.

    Usage:
        with get_db_session() as session:
            job = session.get(CronJob, "nightly-report")

    Args:
        config: cronpost configuration (uses global if not provided)

    Yields:
        SQLAlchemy Session
    """
    SessionLocal = get_session_maker(config)
    session = SessionLocal()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(config: Optional[CronpostConfig] = None) -> None:
    """
    Create all database tables that do not exist yet.

    Args:
        config: cronpost configuration (uses global if not provided)
    """
    from cronpost.database.models import Base

    engine = init_engine(config)
    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")


def drop_tables(config: Optional[CronpostConfig] = None) -> None:
    """
    Drop all database tables.

    WARNING: This will delete all data!
    """
    from cronpost.database.models import Base

    engine = init_engine(config)
    Base.metadata.drop_all(bind=engine)
    logger.warning("Database tables dropped")


def reset_database(config: Optional[CronpostConfig] = None) -> None:
    """
    Reset database by dropping and recreating all tables.

    WARNING: This will delete all data!
    """
    drop_tables(config)
    create_tables(config)
    logger.warning("Database reset complete")


def close_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _SessionLocal = None
