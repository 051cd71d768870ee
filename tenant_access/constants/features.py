"""
Known feature flags and subscription plan tiers.

Flags are plain strings in the database catalog; this enum lists the ones
the admin surface gates on so dashboards can batch-resolve them in one call.
Keep in sync with config/plans.yml.
"""

from enum import Enum
from typing import List


class FeatureFlag(str, Enum):
    """Feature flags gated by subscription plan."""
    BCG_MATRIX = "feature_bcg_matrix"
    VIRTUAL_COMANDA = "feature_virtual_comanda"
    TABLES = "feature_tables"
    DELIVERY_ZONES = "feature_delivery_zones"
    COURIERS = "feature_couriers"
    BUFFET_MODULE = "feature_buffet_module"
    RETENTION_ANALYTICS = "feature_retention_analytics"
    INVENTORY_COST = "feature_inventory_cost"
    CHURN_RECOVERY = "feature_churn_recovery"
    ADVANCED_REPORTS = "advanced_reports"


class PlanTier(str, Enum):
    """Subscription plans, cheapest first."""
    CORE = "core"
    STANDARD = "standard"
    ENTERPRISE = "enterprise"

    @property
    def sort_order(self) -> int:
        return list(PlanTier).index(self)


def dashboard_flags() -> List[str]:
    """All known flags, in declaration order, for batch resolution."""
    return [flag.value for flag in FeatureFlag]
