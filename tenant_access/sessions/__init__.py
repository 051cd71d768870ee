"""Per-account session concurrency bound."""

from tenant_access.sessions.errors import (
    RegistrationError,
    SessionError,
    SessionStoreError,
)
from tenant_access.sessions.heartbeat import (
    SessionHandle,
    generate_session_id,
    install_shutdown_hook,
)
from tenant_access.sessions.models import (
    ActiveSession,
    SessionRecord,
    SessionState,
    classify_session,
)
from tenant_access.sessions.registry import SessionRegistry
from tenant_access.sessions.rpc_store import HttpSessionStore
from tenant_access.sessions.store import SessionStore, SqlSessionStore

__all__ = [
    "ActiveSession",
    "HttpSessionStore",
    "RegistrationError",
    "SessionError",
    "SessionHandle",
    "SessionRecord",
    "SessionRegistry",
    "SessionState",
    "SessionStore",
    "SessionStoreError",
    "SqlSessionStore",
    "classify_session",
    "generate_session_id",
    "install_shutdown_hook",
]
