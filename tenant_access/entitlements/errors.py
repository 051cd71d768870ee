"""
Structured error classes for entitlement resolution and administration.

EntitlementSourceError and MalformedEntitlementResponse never escape the
resolver: they are absorbed into a fail-closed False. Administrative errors
(unknown plan/feature) propagate to the caller.
"""

from typing import Optional

from tenant_access.errors import AccessControlError


class EntitlementError(AccessControlError):
    """Base exception for entitlement errors."""

    error_code = "ENTITLEMENT_ERROR"


class EntitlementSourceError(EntitlementError):
    """The capability source could not be reached or answered with an error."""

    error_code = "ENTITLEMENT_SOURCE_UNAVAILABLE"

    def __init__(self, tenant_id: str, detail: str, cause: Optional[Exception] = None):
        self.tenant_id = tenant_id
        self.detail = detail
        self.cause = cause
        super().__init__(
            f"Entitlement source failed for {tenant_id}: {detail}",
            details={"tenant_id": tenant_id},
        )


class MalformedEntitlementResponse(EntitlementError):
    """The capability source answered, but not in the expected shape."""

    error_code = "ENTITLEMENT_RESPONSE_MALFORMED"

    def __init__(self, tenant_id: str, detail: str):
        self.tenant_id = tenant_id
        self.detail = detail
        super().__init__(
            f"Malformed entitlement response for {tenant_id}: {detail}",
            details={"tenant_id": tenant_id},
        )


class UnknownPlanError(EntitlementError):
    """An administrative action referenced a plan that does not exist."""

    error_code = "UNKNOWN_PLAN"

    def __init__(self, plan_name: str):
        self.plan_name = plan_name
        super().__init__(f"Unknown plan '{plan_name}'", details={"plan": plan_name})


class UnknownFeatureError(EntitlementError):
    """An administrative action referenced a feature flag missing from the catalog."""

    error_code = "UNKNOWN_FEATURE"

    def __init__(self, flag: str):
        self.flag = flag
        super().__init__(f"Unknown feature '{flag}'", details={"flag": flag})


class SubscriptionNotFoundError(EntitlementError):
    """The tenant has no subscription row to update."""

    error_code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No subscription for tenant '{tenant_id}'", details={"tenant_id": tenant_id})
