"""
TenantSubscription: the plan a restaurant is currently on.

One row per tenant. Only active and trial subscriptions grant plan features.
"""

import enum

from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from tenant_access.db_base import Base
from tenant_access.models.base import TimestampMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"

    @property
    def grants_plan_features(self) -> bool:
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class TenantSubscription(Base, TimestampMixin):
    """Current subscription of a restaurant."""

    __tablename__ = "tenant_subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    tenant_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    plan_id = Column(
        String(36),
        ForeignKey("subscription_plans.id"),
        nullable=False,
    )
    status = Column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
    )
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    plan = relationship("SubscriptionPlan", lazy="joined")

    def __repr__(self) -> str:
        return f"<TenantSubscription(tenant_id={self.tenant_id}, status={self.status})>"
