"""
Principal and access-evaluation primitives.

Usage:
    from tenant_access.platform import Principal, can_access
    from tenant_access.constants.roles import ROLES_MANAGER_UP

    if can_access(principal, ROLES_MANAGER_UP):
        ...
"""

from tenant_access.platform.principal import (
    Principal,
    PrincipalState,
    resolve_effective_role,
)
from tenant_access.platform.rbac import can_access, is_denial_authoritative
from tenant_access.platform.guards import (
    GuardOutcome,
    evaluate_role_guard,
    evaluate_feature_guard,
    require_role,
    require_feature,
)

__all__ = [
    "Principal",
    "PrincipalState",
    "resolve_effective_role",
    "can_access",
    "is_denial_authoritative",
    "GuardOutcome",
    "evaluate_role_guard",
    "evaluate_feature_guard",
    "require_role",
    "require_feature",
]
