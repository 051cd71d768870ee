"""
Engine and session factory for the access-control tables.

The SQL session store, the database entitlement source and the reaper all
build their sessions from get_session_factory(); tests inject their own
factory instead.

Configuration:
- DATABASE_URL: SQLAlchemy URL; postgres:// is accepted and rewritten
"""

import os
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None


def _get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


def get_engine() -> Engine:
    """
    Process-wide engine. Raises ValueError when DATABASE_URL is unset.

    Session registration holds row and advisory locks briefly, so the pool
    recycles and pre-pings rather than growing large.
    """
    global _engine
    if _engine is None:
        database_url = _get_database_url()
        options = {"pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            options.update(pool_size=5, max_overflow=10, pool_recycle=1800)
        _engine = create_engine(database_url, **options)
        logger.info(
            "Database engine created",
            extra={"dialect": _engine.dialect.name},
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Process-wide sessionmaker bound to get_engine()."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def reset_engine() -> None:
    """Dispose the engine and forget the factory (tests, worker shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
