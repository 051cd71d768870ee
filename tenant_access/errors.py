"""
Root exception types shared across the access-control packages.

Entitlement and session errors extend AccessControlError from their own
packages (entitlements.errors, sessions.errors).
"""

from typing import Any, Dict, Optional


class AccessControlError(Exception):
    """Base exception for the access-control core."""

    error_code = "ACCESS_CONTROL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class ConfigurationError(AccessControlError):
    """Operator configuration is invalid (bad env value, impossible bound)."""

    error_code = "INVALID_CONFIGURATION"


class ImpersonationNotAllowedError(AccessControlError):
    """A principal without super-admin rank tried to act for another tenant."""

    error_code = "IMPERSONATION_NOT_ALLOWED"

    def __init__(self, account_id: str, target_tenant_id: str):
        self.account_id = account_id
        self.target_tenant_id = target_tenant_id
        super().__init__(
            "Only super admins may act on behalf of another tenant",
            details={"account_id": account_id, "tenant_id": target_tenant_id},
        )
