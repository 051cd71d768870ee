"""
Database models for accounts, staff roles, plans and subscriptions.

Entitlement overrides live in tenant_access.entitlements.models and
sessions in tenant_access.sessions.models.
"""

from tenant_access.models.base import TimestampMixin, TenantScopedMixin
from tenant_access.models.account import Account
from tenant_access.models.tenant_user_roles import TenantUserRole
from tenant_access.models.plan import SubscriptionPlan, Feature, PlanFeature
from tenant_access.models.subscription import TenantSubscription, SubscriptionStatus

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "Account",
    "TenantUserRole",
    "SubscriptionPlan",
    "Feature",
    "PlanFeature",
    "TenantSubscription",
    "SubscriptionStatus",
]
