"""
Entitlement models.

Provides:
- TenantFeatureOverride: SQLAlchemy model for manual per-tenant overrides
- FeatureSource: where a resolution came from
- FeatureGrant: a single resolved flag with provenance
- resolve_feature(): deterministic override -> plan -> deny resolution

Resolution order (deterministic):
    1. Per-tenant override, if present and not expired -> granted or revoked
    2. Plan inclusion (only for active/trial subscriptions) -> granted
    3. Deny
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tenant_access.db_base import Base
from tenant_access.models.base import TimestampMixin, TenantScopedMixin, generate_uuid, as_utc


class FeatureSource(str, Enum):
    """Where a feature resolution originated."""
    OVERRIDE = "override"
    PLAN = "plan"
    DENY = "deny"


@dataclass(frozen=True)
class FeatureGrant:
    """
    A single resolved feature entitlement with provenance.

    Immutable; safe to share.
    """
    flag: str
    granted: bool
    source: str  # FeatureSource value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OverrideState:
    """Plain snapshot of an override row, detached from the session."""
    flag: str
    is_enabled: bool
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) <= now


def resolve_feature(
    flag: str,
    plan_flags: Iterable[str],
    override: Optional[OverrideState] = None,
    now: Optional[datetime] = None,
) -> FeatureGrant:
    """
    Resolve one flag from the tenant's plan flags and its override.

    plan_flags must already be empty for subscriptions that do not grant
    plan features.
    """
    if override is not None and not override.is_expired(now):
        return FeatureGrant(
            flag=flag,
            granted=override.is_enabled,
            source=FeatureSource.OVERRIDE.value,
        )
    if flag in set(plan_flags):
        return FeatureGrant(flag=flag, granted=True, source=FeatureSource.PLAN.value)
    return FeatureGrant(flag=flag, granted=False, source=FeatureSource.DENY.value)


class TenantFeatureOverride(Base, TimestampMixin, TenantScopedMixin):
    """
    Manual override set by a platform operator.

    is_enabled=True grants a feature the plan lacks; False revokes one it has.
    expires_at is optional; expired rows are ignored and later cleaned up.
    """

    __tablename__ = "tenant_feature_overrides"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    feature_id = Column(
        String(36),
        ForeignKey("features.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_enabled = Column(
        Boolean,
        nullable=False,
    )
    reason = Column(
        Text,
        nullable=True,
    )
    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_by = Column(
        String(36),
        nullable=True,
        comment="Operator account that set the override"
    )

    feature = relationship("Feature", lazy="joined")

    __table_args__ = (
        UniqueConstraint("tenant_id", "feature_id", name="uq_tenant_feature_overrides_tenant_feature"),
    )

    def to_state(self) -> OverrideState:
        return OverrideState(
            flag=self.feature.flag,
            is_enabled=bool(self.is_enabled),
            expires_at=as_utc(self.expires_at),
        )

    def __repr__(self) -> str:
        return (
            f"<TenantFeatureOverride(tenant_id={self.tenant_id}, "
            f"feature_id={self.feature_id}, is_enabled={self.is_enabled})>"
        )
