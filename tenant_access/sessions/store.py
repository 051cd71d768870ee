"""
Session stores: shared, durable state behind the session registry.

Provides:
- SessionStore: async contract used by SessionRegistry
- SqlSessionStore: SQLAlchemy implementation (Postgres in production,
  SQLite in tests)

register_session is the concurrency-critical procedure. For one account it
runs as a single transaction: lock the account, refresh or insert the
session, then delete the least recently heartbeated sessions until at most
max_sessions remain. Two registrations for the same account can never both
observe "room available" and overshoot the bound.

Locking:
- postgresql: pg_advisory_xact_lock(hashtext(account_id)) plus
  SELECT ... FOR UPDATE on the account's rows
- sqlite: a process-wide lock serialises writers
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Callable, List, Optional

from sqlalchemy import delete, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_access.models.base import utc_now
from tenant_access.sessions.errors import SessionStoreError
from tenant_access.sessions.models import ActiveSession, SessionRecord

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Shared session state. Every operation is atomic on its own."""

    @abstractmethod
    async def register_session(
        self,
        account_id: str,
        tenant_id: str,
        session_id: str,
        max_sessions: int,
    ) -> List[str]:
        """
        Insert or refresh a session and enforce the per-account bound.

        Returns the session ids evicted to make room, oldest first.
        """

    @abstractmethod
    async def update_session_heartbeat(self, account_id: str, session_id: str) -> bool:
        """Refresh last_heartbeat_at. Returns False if the session is unknown."""

    @abstractmethod
    async def remove_session(self, account_id: str, session_id: str) -> bool:
        """Delete a session. Returns False if it was already gone."""

    @abstractmethod
    async def list_sessions(self, account_id: str) -> List[SessionRecord]:
        """Sessions of an account in eviction order (next victim first)."""

    async def get_session(self, account_id: str, session_id: str) -> Optional[SessionRecord]:
        for record in await self.list_sessions(account_id):
            if record.session_id == session_id:
                return record
        return None


class SqlSessionStore(SessionStore):
    """
    Session store on the active_sessions table.

    Blocking database work runs in a worker thread via asyncio.to_thread.
    """

    _sqlite_lock = Lock()

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def _factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from tenant_access.database.session import get_session_factory
            self._session_factory = get_session_factory()
        return self._session_factory

    @contextmanager
    def _transaction(self, operation: str):
        """Yield a session; commit on success, rollback and wrap on failure."""
        try:
            db = self._factory()()
        except (ValueError, SQLAlchemyError) as e:
            raise SessionStoreError(operation, "database not configured", cause=e) from e

        serialise = db.get_bind().dialect.name == "sqlite"
        if serialise:
            self._sqlite_lock.acquire()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SessionStoreError(operation, f"{type(e).__name__}", cause=e) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
            if serialise:
                self._sqlite_lock.release()

    @staticmethod
    def _lock_account(db: Session, account_id: str) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:account_id))"),
                {"account_id": account_id},
            )

    @staticmethod
    def _account_rows(db: Session, account_id: str, for_update: bool = False) -> List[ActiveSession]:
        query = (
            db.query(ActiveSession)
            .filter(ActiveSession.account_id == account_id)
            .order_by(ActiveSession.last_heartbeat_at.asc(), ActiveSession.id.asc())
        )
        if for_update:
            query = query.with_for_update()
        return query.all()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _register_sync(
        self,
        account_id: str,
        tenant_id: str,
        session_id: str,
        max_sessions: int,
    ) -> List[str]:
        with self._transaction("register_session") as db:
            self._lock_account(db, account_id)
            now = self._clock()
            rows = self._account_rows(db, account_id, for_update=True)

            current = next((r for r in rows if r.session_id == session_id), None)
            if current is not None:
                current.tenant_id = tenant_id
                current.last_heartbeat_at = now
                others = [r for r in rows if r is not current]
            else:
                current = ActiveSession(
                    account_id=account_id,
                    tenant_id=tenant_id,
                    session_id=session_id,
                    created_at=now,
                    last_heartbeat_at=now,
                )
                db.add(current)
                others = rows

            # rows are already in eviction order; the registering session is never a victim
            overflow = len(others) + 1 - max_sessions
            victims = others[:overflow] if overflow > 0 else []
            for victim in victims:
                db.delete(victim)

            evicted = [v.session_id for v in victims]

        if evicted:
            logger.info(
                "Evicted sessions over the concurrency bound",
                extra={
                    "account_id": account_id,
                    "session_id": session_id,
                    "evicted": evicted,
                    "max_sessions": max_sessions,
                },
            )
        return evicted

    async def register_session(
        self,
        account_id: str,
        tenant_id: str,
        session_id: str,
        max_sessions: int,
    ) -> List[str]:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        return await asyncio.to_thread(
            self._register_sync, account_id, tenant_id, session_id, max_sessions
        )

    # ------------------------------------------------------------------
    # Heartbeat / removal
    # ------------------------------------------------------------------

    def _heartbeat_sync(self, account_id: str, session_id: str) -> bool:
        with self._transaction("update_session_heartbeat") as db:
            result = db.execute(
                update(ActiveSession)
                .where(
                    ActiveSession.account_id == account_id,
                    ActiveSession.session_id == session_id,
                )
                .values(last_heartbeat_at=self._clock())
            )
            return result.rowcount > 0

    async def update_session_heartbeat(self, account_id: str, session_id: str) -> bool:
        return await asyncio.to_thread(self._heartbeat_sync, account_id, session_id)

    def _remove_sync(self, account_id: str, session_id: str) -> bool:
        with self._transaction("remove_session") as db:
            result = db.execute(
                delete(ActiveSession).where(
                    ActiveSession.account_id == account_id,
                    ActiveSession.session_id == session_id,
                )
            )
            return result.rowcount > 0

    async def remove_session(self, account_id: str, session_id: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, account_id, session_id)

    # ------------------------------------------------------------------
    # Inspection / maintenance
    # ------------------------------------------------------------------

    def _list_sync(self, account_id: str) -> List[SessionRecord]:
        with self._transaction("list_sessions") as db:
            return [row.to_record() for row in self._account_rows(db, account_id)]

    async def list_sessions(self, account_id: str) -> List[SessionRecord]:
        return await asyncio.to_thread(self._list_sync, account_id)

    def reap_stale(self, cutoff: datetime) -> int:
        """
        Delete every session whose last heartbeat is older than cutoff.

        Synchronous; called from the reaper worker. Returns rows deleted.
        """
        with self._transaction("reap_stale") as db:
            result = db.execute(
                delete(ActiveSession).where(ActiveSession.last_heartbeat_at < cutoff)
            )
            return result.rowcount
