"""
Session models.

Provides:
- ActiveSession: SQLAlchemy model, one row per live browser tab/device
- SessionState: ACTIVE / STALE / REMOVED
- SessionRecord: detached snapshot returned by stores
- classify_session(): staleness as a pure function of time

The integer primary key records creation order and breaks ties between
sessions with identical heartbeat timestamps (oldest created goes first).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Index, UniqueConstraint

from tenant_access.db_base import Base
from tenant_access.models.base import as_utc


class SessionState(str, Enum):
    ACTIVE = "active"
    STALE = "stale"
    REMOVED = "removed"


class ActiveSession(Base):
    """A live session of an account. Rows are deleted on removal."""

    __tablename__ = "active_sessions"

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Creation order; eviction tie-break"
    )
    account_id = Column(
        String(36),
        nullable=False,
    )
    tenant_id = Column(
        String(255),
        nullable=False,
        index=True,
    )
    session_id = Column(
        String(100),
        nullable=False,
        comment="Opaque client-generated id, stable for one tab"
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
    )
    last_heartbeat_at = Column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("account_id", "session_id", name="uq_active_sessions_account_session"),
        Index("ix_active_sessions_account_heartbeat", "account_id", "last_heartbeat_at"),
        Index("ix_active_sessions_heartbeat", "last_heartbeat_at"),
    )

    def to_record(self) -> "SessionRecord":
        return SessionRecord(
            session_id=self.session_id,
            account_id=self.account_id,
            tenant_id=self.tenant_id,
            created_at=as_utc(self.created_at),
            last_heartbeat_at=as_utc(self.last_heartbeat_at),
            sequence=self.id,
        )

    def __repr__(self) -> str:
        return f"<ActiveSession(account_id={self.account_id}, session_id={self.session_id})>"


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of one stored session."""

    session_id: str
    account_id: str
    tenant_id: str
    created_at: datetime
    last_heartbeat_at: datetime
    sequence: Optional[int] = None

    def eviction_key(self):
        """Sort key: least recently heartbeated first, then oldest created."""
        return (self.last_heartbeat_at, self.sequence if self.sequence is not None else 0)


def classify_session(
    record: Optional[SessionRecord],
    now: datetime,
    stale_after: timedelta,
) -> SessionState:
    """ACTIVE within the threshold, STALE past it, REMOVED when absent."""
    if record is None:
        return SessionState.REMOVED
    if now - record.last_heartbeat_at > stale_after:
        return SessionState.STALE
    return SessionState.ACTIVE
