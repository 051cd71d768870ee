"""
SubscriptionPlan, Feature and PlanFeature models.

Plans and features are GLOBAL (not tenant-scoped): they define the product
offering. plan_features says which features each plan includes.
"""

from sqlalchemy import (
    Column, String, Text, Integer, Boolean,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tenant_access.db_base import Base
from tenant_access.models.base import TimestampMixin, generate_uuid


class SubscriptionPlan(Base, TimestampMixin):
    """A pricing tier (core, standard, enterprise)."""

    __tablename__ = "subscription_plans"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    name = Column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Stable identifier (core, standard, enterprise)"
    )
    label = Column(
        String(100),
        nullable=False,
        comment="Display name"
    )
    description = Column(
        Text,
        nullable=True,
    )
    price_cents = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Monthly price in cents"
    )
    sort_order = Column(
        Integer,
        nullable=False,
        default=0,
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    features = relationship(
        "PlanFeature",
        back_populates="plan",
        lazy="selectin",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(name={self.name})>"


class Feature(Base, TimestampMixin):
    """Catalog entry for a feature flag."""

    __tablename__ = "features"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    flag = Column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
        comment="Flag identifier checked by the resolver (feature_bcg_matrix)"
    )
    label = Column(
        String(150),
        nullable=False,
    )
    description = Column(
        Text,
        nullable=True,
    )
    module = Column(
        String(50),
        nullable=True,
    )
    category = Column(
        String(50),
        nullable=True,
    )
    min_plan = Column(
        String(50),
        nullable=True,
        comment="Cheapest plan that includes the feature, for display"
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Feature(flag={self.flag})>"


class PlanFeature(Base):
    """Inclusion of one feature in one plan."""

    __tablename__ = "plan_features"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    plan_id = Column(
        String(36),
        ForeignKey("subscription_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_id = Column(
        String(36),
        ForeignKey("features.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    plan = relationship("SubscriptionPlan", back_populates="features")
    feature = relationship("Feature", lazy="joined")

    __table_args__ = (
        UniqueConstraint("plan_id", "feature_id", name="uq_plan_features_plan_feature"),
    )
