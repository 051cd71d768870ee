"""
Session Registry - per-account concurrency bound over a SessionStore.

Provides:
- register(): insert/refresh a session, evicting the least recently active
  sessions beyond max_sessions. Raises RegistrationError on store failure.
- heartbeat(): best-effort refresh; unknown sessions are a silent no-op
- remove(): best-effort, idempotent removal
- list_sessions() / state_of(): inspection

Eviction is silent: an evicted tab keeps running until its next action
that consults the registry.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from tenant_access.config.settings import AccessControlSettings, get_settings
from tenant_access.models.base import utc_now
from tenant_access.sessions.errors import RegistrationError, SessionStoreError
from tenant_access.sessions.models import SessionRecord, SessionState, classify_session
from tenant_access.sessions.store import SessionStore

logger = logging.getLogger(__name__)


def _require(value: str, name: str) -> None:
    if not value:
        raise ValueError(f"{name} is required")


class SessionRegistry:
    """
    Enforces MAX_SESSIONS per account.

    Usage:
        registry = SessionRegistry(SqlSessionStore())
        evicted = await registry.register(account_id, tenant_id, session_id)
        await registry.heartbeat(account_id, session_id)
        await registry.remove(account_id, session_id)
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Optional[AccessControlSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings()
        self.store = store
        self.max_sessions = settings.max_sessions
        self.heartbeat_interval_seconds = settings.heartbeat_interval_seconds
        self.stale_after = timedelta(seconds=settings.stale_after_seconds)
        self._clock = clock

    async def register(self, account_id: str, tenant_id: str, session_id: str) -> List[str]:
        """
        Register (or refresh) a session and return the ids it evicted.

        Re-registering a live session only refreshes it. Never returns a
        "rejected" outcome: the new session always wins.
        """
        _require(account_id, "account_id")
        _require(tenant_id, "tenant_id")
        _require(session_id, "session_id")

        try:
            evicted = await self.store.register_session(
                account_id, tenant_id, session_id, self.max_sessions
            )
        except SessionStoreError as e:
            logger.error(
                "Session registration failed",
                extra={
                    "account_id": account_id,
                    "tenant_id": tenant_id,
                    "session_id": session_id,
                    "error": str(e),
                },
            )
            raise RegistrationError(account_id, session_id, cause=e) from e

        logger.info(
            "Session registered",
            extra={
                "account_id": account_id,
                "tenant_id": tenant_id,
                "session_id": session_id,
                "evicted_count": len(evicted),
            },
        )
        for victim in evicted:
            logger.info(
                "Session evicted",
                extra={"account_id": account_id, "session_id": victim, "by_session_id": session_id},
            )
        return evicted

    async def heartbeat(self, account_id: str, session_id: str) -> bool:
        """Refresh a session. Returns True only when a live row was updated."""
        if not account_id or not session_id:
            return False
        try:
            refreshed = await self.store.update_session_heartbeat(account_id, session_id)
        except SessionStoreError as e:
            logger.warning(
                "Session heartbeat failed",
                extra={"account_id": account_id, "session_id": session_id, "error": str(e)},
            )
            return False

        if not refreshed:
            logger.debug(
                "Heartbeat for unknown session ignored",
                extra={"account_id": account_id, "session_id": session_id},
            )
        return refreshed

    async def remove(self, account_id: str, session_id: str) -> bool:
        """Remove a session. Returns True if a row was deleted."""
        if not account_id or not session_id:
            return False
        try:
            removed = await self.store.remove_session(account_id, session_id)
        except SessionStoreError as e:
            logger.warning(
                "Session removal failed; the reaper will collect it",
                extra={"account_id": account_id, "session_id": session_id, "error": str(e)},
            )
            return False

        if removed:
            logger.info(
                "Session removed",
                extra={"account_id": account_id, "session_id": session_id},
            )
        return removed

    async def list_sessions(self, account_id: str) -> List[SessionRecord]:
        """Sessions of an account, next eviction victim first."""
        return await self.store.list_sessions(account_id)

    async def state_of(self, account_id: str, session_id: str) -> SessionState:
        record = await self.store.get_session(account_id, session_id)
        return classify_session(record, self._clock(), self.stale_after)
