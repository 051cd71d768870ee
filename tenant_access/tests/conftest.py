"""
Root test configuration and fixtures.

Provides database fixtures that can be used by all tests:
- db_engine / db_session: shared in-memory schema, rolled back per test
- session_factory: a fresh committed-data database per test, for stores
  and sources that open their own sessions
- seeded_factory: session_factory with the plan catalog loaded
- clock: controllable UTC clock
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
import yaml
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from tenant_access.config.settings import AccessControlSettings, reset_settings

# Set test environment
os.environ.setdefault("ENV", "test")

REPO_ROOT = Path(__file__).resolve().parents[2]


def _get_test_database_url() -> str:
    """Get database URL for tests."""
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url
    return "sqlite:///:memory:"


def _create_engine():
    database_url = _get_test_database_url()
    if database_url.startswith("postgresql"):
        try:
            engine = create_engine(database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            pytest.skip(f"PostgreSQL not available. Error: {e}")
    else:
        # SQLite in-memory for fast unit tests
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # Import and create all tables
    from tenant_access.db_base import Base
    from tenant_access.models import account, tenant_user_roles, plan, subscription  # noqa: F401
    from tenant_access.entitlements import models as entitlement_models  # noqa: F401
    from tenant_access.sessions import models as session_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="session")
def db_engine():
    """Create database engine for tests."""
    engine = _create_engine()
    yield engine
    from tenant_access.db_base import Base
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Each test gets a fresh session that rolls back after the test completes.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory over a throwaway database.

    For code under test that opens, commits and closes its own sessions.
    """
    engine = _create_engine()
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    from tenant_access.db_base import Base
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def plan_catalog():
    from tenant_access.entitlements.catalog import load_plan_catalog
    return load_plan_catalog(REPO_ROOT / "config" / "plans.yml")


@pytest.fixture
def seeded_factory(session_factory, plan_catalog):
    """session_factory with plans and features seeded."""
    from tenant_access.entitlements.catalog import seed_plan_catalog

    db = session_factory()
    try:
        seed_plan_catalog(db, plan_catalog)
    finally:
        db.close()
    return session_factory


class FakeClock:
    """Deterministic UTC clock; call it to read, advance() to move."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def access_settings():
    return AccessControlSettings(
        max_sessions=3,
        heartbeat_interval_seconds=60,
        stale_after_seconds=300,
    )


@pytest.fixture(autouse=True)
def _reset_settings_singleton():
    reset_settings()
    yield
    reset_settings()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Shared Config Fixtures
# =============================================================================


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("plans.yml", {"plans": [...]})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
