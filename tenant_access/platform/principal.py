"""
Principal: the authenticated account acting inside one restaurant.

A Principal is built once per request/session from the account's global
role and its tenant-scoped role, and is read-only afterwards.

Effective role (highest priority first):
    1. super_admin when the account's global role is super admin
    2. the active tenant-scoped role (restaurant_user_roles)
    3. the account's global role
    4. none
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

from tenant_access.constants.roles import Role
from tenant_access.errors import ImpersonationNotAllowedError

logger = logging.getLogger(__name__)


def resolve_effective_role(
    global_role: Union[Role, str, None],
    tenant_role: Union[Role, str, None] = None,
) -> Optional[Role]:
    """
    Combine an account's global role and tenant-scoped role.

    Unrecognised values are skipped (logged) rather than raised.
    """
    parsed_global = Role.parse(global_role)
    if global_role is not None and parsed_global is None:
        logger.warning("Unrecognised global role", extra={"role": repr(global_role)})

    if parsed_global is Role.SUPER_ADMIN:
        return Role.SUPER_ADMIN

    parsed_tenant = Role.parse(tenant_role)
    if tenant_role is not None and parsed_tenant is None:
        logger.warning("Unrecognised tenant role", extra={"role": repr(tenant_role)})

    if parsed_tenant is not None:
        return parsed_tenant
    return parsed_global


@dataclass(frozen=True)
class Principal:
    """
    Authenticated actor evaluated for access decisions.

    role is None when the account has no recognised role in the tenant.
    is_super_admin_override marks a super admin acting for another tenant;
    it changes tenant_id scope, never the role.
    """

    account_id: str
    tenant_id: str
    role: Optional[Role]
    is_super_admin_override: bool = False

    @classmethod
    def from_raw(
        cls,
        account_id: str,
        tenant_id: str,
        role: Union[Role, str, None],
    ) -> "Principal":
        """Build a principal from untrusted role input (token claim, DB column)."""
        parsed = Role.parse(role)
        if role is not None and parsed is None:
            logger.warning(
                "Principal built with unrecognised role",
                extra={"account_id": account_id, "tenant_id": tenant_id, "role": repr(role)},
            )
        return cls(account_id=account_id, tenant_id=tenant_id, role=parsed)

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN

    def acting_for(self, tenant_id: str) -> "Principal":
        """Scope a super admin to another restaurant."""
        if not self.is_super_admin:
            raise ImpersonationNotAllowedError(self.account_id, tenant_id)
        if tenant_id == self.tenant_id:
            return self
        logger.info(
            "Super admin acting on behalf of tenant",
            extra={
                "account_id": self.account_id,
                "home_tenant_id": self.tenant_id,
                "tenant_id": tenant_id,
            },
        )
        return replace(self, tenant_id=tenant_id, is_super_admin_override=True)


@dataclass(frozen=True)
class PrincipalState:
    """
    What the principal source knows right now.

    While loading is True a denial from can_access is not authoritative:
    callers show a placeholder instead of hiding content or redirecting.
    """

    principal: Optional[Principal] = None
    loading: bool = False

    @classmethod
    def pending(cls) -> "PrincipalState":
        return cls(principal=None, loading=True)

    @property
    def role(self) -> Optional[str]:
        if self.principal is None or self.principal.role is None:
            return None
        return self.principal.role.value
