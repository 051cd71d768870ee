"""
Role-based access evaluation for restaurant staff.

can_access() is synchronous, pure and total: it returns False instead of
raising for a missing principal, a principal without a recognised role,
or a requirement set with no recognised roles.

Usage:
    from tenant_access.platform.rbac import can_access
    from tenant_access.constants.roles import ROLES_CANCEL_ORDER

    if can_access(principal, ROLES_CANCEL_ORDER):
        cancel_order(...)
"""

import logging
from typing import Iterable, Optional, Union

from tenant_access.constants.roles import Role, satisfies
from tenant_access.platform.principal import Principal, PrincipalState

logger = logging.getLogger(__name__)


def can_access(
    principal: Optional[Principal],
    required_roles: Iterable[Union[Role, str]],
) -> bool:
    """
    Check whether a principal meets the lowest role in required_roles.

    Higher roles inherit the capabilities of lower ones, so a manager passes
    a requirement of {waiter}. Never raises.
    """
    if principal is None:
        return False

    role = principal.role
    if not isinstance(role, Role):
        # Principals built directly with a raw string end up here
        role = Role.parse(role)
        if role is None:
            logger.warning(
                "Access check with unrecognised role",
                extra={
                    "account_id": principal.account_id,
                    "tenant_id": principal.tenant_id,
                    "role": repr(principal.role),
                },
            )
            return False

    if isinstance(required_roles, str):
        required_roles = (required_roles,)
    allowed = satisfies(role, list(required_roles))
    logger.debug(
        "Role check evaluated",
        extra={
            "account_id": principal.account_id,
            "tenant_id": principal.tenant_id,
            "role": role.value,
            "allowed": allowed,
        },
    )
    return allowed


def is_denial_authoritative(state: PrincipalState) -> bool:
    """A False from can_access can be acted on only once the role has loaded."""
    return not state.loading
