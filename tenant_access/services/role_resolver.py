"""
Loads the Principal for an account acting inside a restaurant.

Combines the account's global role with its active tenant-scoped role
(see tenant_access.platform.principal.resolve_effective_role).
Called once per request or session; the result is immutable.

Default deny: an unknown or inactive account yields None, and an account
with no recognised role yields a Principal whose role is None.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from tenant_access.models.account import Account
from tenant_access.models.tenant_user_roles import TenantUserRole
from tenant_access.platform.principal import Principal, resolve_effective_role

logger = logging.getLogger(__name__)


def tenant_role_for(db: Session, account_id: str, tenant_id: str) -> Optional[str]:
    """Active tenant-scoped role string, if any."""
    row = (
        db.query(TenantUserRole)
        .filter(
            TenantUserRole.account_id == account_id,
            TenantUserRole.tenant_id == tenant_id,
            TenantUserRole.is_active == True,  # noqa: E712
        )
        .one_or_none()
    )
    return row.role if row else None


def load_principal(db: Session, account_id: str, tenant_id: str) -> Optional[Principal]:
    """
    Build the principal for (account, tenant).

    Args:
        db: SQLAlchemy session
        account_id: accounts.id
        tenant_id: restaurant the account is acting in

    Returns:
        Principal, or None when the account does not exist or is inactive.
    """
    account = db.query(Account).filter(Account.id == account_id).one_or_none()
    if account is None or not account.is_active:
        logger.info(
            "No principal for unknown or inactive account",
            extra={"account_id": account_id, "tenant_id": tenant_id},
        )
        return None

    role = resolve_effective_role(account.role, tenant_role_for(db, account_id, tenant_id))
    principal = Principal(account_id=account_id, tenant_id=tenant_id, role=role)

    logger.debug(
        "Principal resolved",
        extra={
            "account_id": account_id,
            "tenant_id": tenant_id,
            "role": role.value if role else None,
        },
    )
    return principal
