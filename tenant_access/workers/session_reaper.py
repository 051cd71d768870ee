"""
Session Reaper Worker.

Background job that keeps shared access state tidy:
1. Deletes sessions whose last heartbeat is older than SESSION_STALE_AFTER
   (crashed tabs, lost connectivity, failed removals)
2. Deletes expired feature overrides and invalidates the affected
   entitlement keys across instances

Run as: python -m tenant_access.workers.session_reaper

Configuration:
- SESSION_REAPER_INTERVAL: Seconds between cycles (default: 60)
- SESSION_STALE_AFTER: Seconds without heartbeat before a session is reaped (default: 300)
- DATABASE_URL / REDIS_URL: as for the application
"""

import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from tenant_access.config.settings import AccessControlSettings, get_settings
from tenant_access.entitlements.cache import InvalidationPublisher
from tenant_access.services.access_factory import build_invalidation_publisher

logger = logging.getLogger(__name__)

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


@dataclass
class ReaperStats:
    """Track reaper run statistics."""

    sessions_reaped: int = 0
    overrides_expired: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "sessions_reaped": self.sessions_reaped,
            "overrides_expired": self.overrides_expired,
            "errors": self.errors,
            "duration_seconds": round(duration, 2),
        }


def _reap_sessions(
    session_factory: Callable[[], Session],
    cutoff: datetime,
    stats: ReaperStats,
) -> None:
    """Phase 1: drop sessions that stopped heartbeating."""
    from tenant_access.sessions.errors import SessionStoreError
    from tenant_access.sessions.store import SqlSessionStore

    try:
        stats.sessions_reaped = SqlSessionStore(session_factory).reap_stale(cutoff)
    except SessionStoreError:
        logger.error("Failed to reap stale sessions", exc_info=True)
        stats.errors += 1


def _cleanup_expired_overrides(
    session_factory: Callable[[], Session],
    now: datetime,
    stats: ReaperStats,
    publisher: Optional[InvalidationPublisher] = None,
) -> None:
    """Phase 2: delete expired overrides and fan out invalidations."""
    from sqlalchemy.exc import SQLAlchemyError

    from tenant_access.entitlements.admin import SubscriptionManager

    db = session_factory()
    try:
        manager = SubscriptionManager(db, publisher=publisher)
        stats.overrides_expired = manager.cleanup_expired_overrides(now)
    except SQLAlchemyError:
        logger.error("Failed to clean up expired overrides", exc_info=True)
        stats.errors += 1
    finally:
        db.close()


def run_cycle(
    session_factory: Optional[Callable[[], Session]] = None,
    settings: Optional[AccessControlSettings] = None,
    now: Optional[datetime] = None,
    publisher: Optional[InvalidationPublisher] = None,
) -> ReaperStats:
    """
    Run one full reaper cycle.

    Long-running callers pass the publisher they built once; a one-off
    cycle builds its own from settings.
    """
    stats = ReaperStats()
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    if publisher is None:
        publisher = build_invalidation_publisher(settings)

    if session_factory is None:
        from tenant_access.database.session import get_session_factory
        try:
            session_factory = get_session_factory()
        except ValueError:
            logger.error("Database not configured; skipping reaper cycle", exc_info=True)
            stats.errors += 1
            return stats

    cutoff = now - timedelta(seconds=settings.stale_after_seconds)
    _reap_sessions(session_factory, cutoff, stats)
    _cleanup_expired_overrides(session_factory, now, stats, publisher=publisher)

    result = stats.to_dict()
    if any(v > 0 for k, v in result.items() if k != "duration_seconds"):
        logger.info("Reaper cycle complete", extra=result)
    return stats


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    settings = get_settings()
    interval = settings.reaper_interval_seconds
    publisher = build_invalidation_publisher(settings)
    logger.info(
        "Session reaper worker started",
        extra={"poll_interval": interval, "stale_after": settings.stale_after_seconds},
    )

    while not _shutdown:
        run_cycle(settings=settings, publisher=publisher)
        # Sleep in 1-second increments for responsive shutdown
        for _ in range(interval):
            if _shutdown:
                break
            time.sleep(1)

    logger.info("Session reaper worker stopped")


if __name__ == "__main__":
    main()
