"""
TenantUserRole: the role an account holds inside one restaurant.

is_active allows revoking staff access without losing history.
One row per (tenant, account).
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, UniqueConstraint, Index

from tenant_access.db_base import Base
from tenant_access.models.base import TimestampMixin, TenantScopedMixin, generate_uuid


class TenantUserRole(Base, TimestampMixin, TenantScopedMixin):
    """Granular staff role (kitchen, waiter, cashier, manager, ...)."""

    __tablename__ = "tenant_user_roles"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(
        String(50),
        nullable=False,
        comment="Value from tenant_access.constants.roles.Role"
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_id", name="uq_tenant_user_roles_tenant_account"),
        Index("ix_tenant_user_roles_account_active", "account_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantUserRole(tenant_id={self.tenant_id}, "
            f"account_id={self.account_id}, role={self.role})>"
        )
