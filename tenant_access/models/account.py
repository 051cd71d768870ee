"""
Account model: a login that can act inside one or more restaurants.

role holds the account's global role. Tenant-scoped roles live in
tenant_user_roles and take priority, except for super admins.
"""

from sqlalchemy import Column, String, Boolean

from tenant_access.db_base import Base
from tenant_access.models.base import TimestampMixin, generate_uuid


class Account(Base, TimestampMixin):
    """Authenticated account. Credentials are managed elsewhere."""

    __tablename__ = "accounts"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    email = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    role = Column(
        String(50),
        nullable=True,
        comment="Global role (super_admin, restaurant_admin, ...)"
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, role={self.role})>"
