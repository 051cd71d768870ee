"""
Plan-based feature entitlements for restaurants.

This package provides:
- EntitlementResolver: cached, single-flight, fail-closed feature checks
- EntitlementCache: per-instance (tenant, flag) cache with explicit invalidation
- EntitlementSource / DatabaseEntitlementSource / HttpEntitlementSource
- SubscriptionManager: plan, plan-feature and override administration
- Plan catalog loading and seeding

Resolution order: override -> plan -> deny
"""

from tenant_access.entitlements.models import (
    FeatureGrant,
    FeatureSource,
    OverrideState,
    TenantFeatureOverride,
    resolve_feature,
)
from tenant_access.entitlements.errors import (
    EntitlementError,
    EntitlementSourceError,
    MalformedEntitlementResponse,
    SubscriptionNotFoundError,
    UnknownFeatureError,
    UnknownPlanError,
)
from tenant_access.entitlements.cache import (
    EntitlementCache,
    InvalidationPublisher,
    InvalidationSubscriber,
    INVALIDATION_CHANNEL,
)
from tenant_access.entitlements.source import (
    EntitlementSource,
    DatabaseEntitlementSource,
    HttpEntitlementSource,
    compute_feature_grants,
)
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.entitlements.admin import SubscriptionManager
from tenant_access.entitlements.catalog import (
    PlanCatalog,
    load_plan_catalog,
    seed_plan_catalog,
)

__all__ = [
    "FeatureGrant",
    "FeatureSource",
    "OverrideState",
    "TenantFeatureOverride",
    "resolve_feature",
    "EntitlementError",
    "EntitlementSourceError",
    "MalformedEntitlementResponse",
    "SubscriptionNotFoundError",
    "UnknownFeatureError",
    "UnknownPlanError",
    "EntitlementCache",
    "InvalidationPublisher",
    "InvalidationSubscriber",
    "INVALIDATION_CHANNEL",
    "EntitlementSource",
    "DatabaseEntitlementSource",
    "HttpEntitlementSource",
    "compute_feature_grants",
    "EntitlementResolver",
    "SubscriptionManager",
    "PlanCatalog",
    "load_plan_catalog",
    "seed_plan_catalog",
]
