"""
Session registry error types.

Only RegistrationError leaves the registry; heartbeat and remove failures
are logged and absorbed.
"""

from typing import Optional

from tenant_access.errors import AccessControlError


class SessionError(AccessControlError):
    """Base exception for session registry errors."""

    error_code = "SESSION_ERROR"


class SessionStoreError(SessionError):
    """The backing session store is unreachable or the operation failed."""

    error_code = "SESSION_STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.detail = detail
        self.cause = cause
        super().__init__(
            f"Session store {operation} failed: {detail}",
            details={"operation": operation},
        )


class RegistrationError(SessionError):
    """A session could not be registered because the store failed."""

    error_code = "SESSION_REGISTRATION_FAILED"

    def __init__(self, account_id: str, session_id: str, cause: Optional[Exception] = None):
        self.account_id = account_id
        self.session_id = session_id
        self.cause = cause
        super().__init__(
            "Could not register session",
            details={"account_id": account_id, "session_id": session_id},
        )
