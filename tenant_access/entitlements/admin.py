"""
Subscription administration for platform operators.

Every mutation commits first and then invalidates exactly the cache keys
it can affect:
- plan change / status change  -> every flag of that tenant
- plan feature toggled          -> that flag for every tenant
- override set / cleared        -> that (tenant, flag)

Usage:
    manager = SubscriptionManager(db, resolver=resolver)
    manager.change_plan("tenant-1", "standard")
    manager.set_override("tenant-1", "advanced_reports", enabled=True, reason="pilot")
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_access.entitlements.cache import InvalidationPublisher
from tenant_access.entitlements.errors import (
    SubscriptionNotFoundError,
    UnknownFeatureError,
    UnknownPlanError,
)
from tenant_access.entitlements.models import TenantFeatureOverride
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.models.base import as_utc
from tenant_access.models.plan import Feature, PlanFeature, SubscriptionPlan
from tenant_access.models.subscription import SubscriptionStatus, TenantSubscription

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """
    Plan, plan-feature and override mutations with cache invalidation.

    One instance per request / job. Pass the in-process resolver when there
    is one; otherwise pass a publisher so other instances still hear about
    the change.
    """

    def __init__(
        self,
        db_session: Session,
        resolver: Optional[EntitlementResolver] = None,
        publisher: Optional[InvalidationPublisher] = None,
    ):
        self.db = db_session
        self._resolver = resolver
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_plan(self, plan_name: str) -> SubscriptionPlan:
        plan = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.name == plan_name)
            .one_or_none()
        )
        if plan is None:
            raise UnknownPlanError(plan_name)
        return plan

    def _get_feature(self, flag: str) -> Feature:
        feature = self.db.query(Feature).filter(Feature.flag == flag).one_or_none()
        if feature is None:
            raise UnknownFeatureError(flag)
        return feature

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _invalidate_tenant(self, tenant_id: str, flag: Optional[str], reason: str) -> None:
        if self._resolver is not None:
            self._resolver.invalidate(tenant_id, flag, reason=reason)
        elif self._publisher is not None:
            self._publisher.publish(tenant_id, flag, reason)

    def _invalidate_flag(self, flag: str, reason: str) -> None:
        if self._resolver is not None:
            self._resolver.invalidate_flag(flag, reason=reason)
        elif self._publisher is not None:
            self._publisher.publish(None, flag, reason)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def change_plan(
        self,
        tenant_id: str,
        plan_name: str,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        notes: Optional[str] = None,
    ) -> TenantSubscription:
        """Put a tenant on a plan (creating its subscription if needed)."""
        plan = self._get_plan(plan_name)
        subscription = (
            self.db.query(TenantSubscription)
            .filter(TenantSubscription.tenant_id == tenant_id)
            .one_or_none()
        )
        previous_plan_id = subscription.plan_id if subscription else None

        if subscription is None:
            subscription = TenantSubscription(tenant_id=tenant_id)
            self.db.add(subscription)

        subscription.plan_id = plan.id
        subscription.status = SubscriptionStatus(status).value
        subscription.current_period_start = datetime.now(timezone.utc)
        if notes is not None:
            subscription.notes = notes

        self._commit()
        self._invalidate_tenant(tenant_id, None, f"plan_change:{plan_name}")

        logger.info(
            "Tenant plan changed",
            extra={
                "tenant_id": tenant_id,
                "plan": plan_name,
                "previous_plan_id": previous_plan_id,
                "status": subscription.status,
            },
        )
        return subscription

    def set_subscription_status(self, tenant_id: str, status: SubscriptionStatus) -> TenantSubscription:
        """Suspend, cancel or reactivate a tenant's subscription."""
        subscription = (
            self.db.query(TenantSubscription)
            .filter(TenantSubscription.tenant_id == tenant_id)
            .one_or_none()
        )
        if subscription is None:
            raise SubscriptionNotFoundError(tenant_id)

        old_status = subscription.status
        subscription.status = SubscriptionStatus(status).value
        self._commit()
        self._invalidate_tenant(tenant_id, None, f"status_change:{old_status}->{subscription.status}")
        return subscription

    # ------------------------------------------------------------------
    # Plan contents
    # ------------------------------------------------------------------

    def set_plan_feature(self, plan_name: str, flag: str, included: bool) -> bool:
        """
        Include or exclude a feature in a plan.

        Returns True if anything changed.
        """
        plan = self._get_plan(plan_name)
        feature = self._get_feature(flag)
        existing = (
            self.db.query(PlanFeature)
            .filter(PlanFeature.plan_id == plan.id, PlanFeature.feature_id == feature.id)
            .one_or_none()
        )

        if included and existing is None:
            self.db.add(PlanFeature(plan_id=plan.id, feature_id=feature.id))
        elif not included and existing is not None:
            self.db.delete(existing)
        else:
            return False

        self._commit()
        self._invalidate_flag(flag, f"plan_feature:{plan_name}:{flag}={included}")
        logger.info(
            "Plan feature toggled",
            extra={"plan": plan_name, "flag": flag, "included": included},
        )
        return True

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def _get_override(self, tenant_id: str, feature: Feature) -> Optional[TenantFeatureOverride]:
        return (
            self.db.query(TenantFeatureOverride)
            .filter(
                TenantFeatureOverride.tenant_id == tenant_id,
                TenantFeatureOverride.feature_id == feature.id,
            )
            .one_or_none()
        )

    def set_override(
        self,
        tenant_id: str,
        flag: str,
        enabled: bool,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> TenantFeatureOverride:
        """Grant (enabled=True) or revoke (enabled=False) a flag regardless of plan."""
        feature = self._get_feature(flag)
        override = self._get_override(tenant_id, feature)
        if override is None:
            override = TenantFeatureOverride(tenant_id=tenant_id, feature_id=feature.id)
            self.db.add(override)

        override.is_enabled = enabled
        override.reason = reason
        override.expires_at = expires_at
        override.created_by = created_by

        self._commit()
        self._invalidate_tenant(tenant_id, flag, f"override_set:{flag}={enabled}")
        logger.info(
            "Feature override set",
            extra={
                "tenant_id": tenant_id,
                "flag": flag,
                "enabled": enabled,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "created_by": created_by,
            },
        )
        return override

    def clear_override(self, tenant_id: str, flag: str) -> bool:
        """Remove an override, restoring the plan default. Returns True if one existed."""
        feature = self._get_feature(flag)
        override = self._get_override(tenant_id, feature)
        if override is None:
            return False

        self.db.delete(override)
        self._commit()
        self._invalidate_tenant(tenant_id, flag, f"override_cleared:{flag}")
        logger.info("Feature override cleared", extra={"tenant_id": tenant_id, "flag": flag})
        return True

    def list_overrides(self, tenant_id: str) -> List[TenantFeatureOverride]:
        return (
            self.db.query(TenantFeatureOverride)
            .filter(TenantFeatureOverride.tenant_id == tenant_id)
            .all()
        )

    def cleanup_expired_overrides(self, now: Optional[datetime] = None) -> int:
        """Delete expired overrides and invalidate the keys they covered."""
        now = now or datetime.now(timezone.utc)
        candidates = (
            self.db.query(TenantFeatureOverride)
            .filter(TenantFeatureOverride.expires_at.isnot(None))
            .all()
        )
        expired = [o for o in candidates if as_utc(o.expires_at) <= now]
        if not expired:
            return 0

        keys = [(o.tenant_id, o.feature.flag) for o in expired]
        for override in expired:
            self.db.delete(override)
        self._commit()

        for tenant_id, flag in keys:
            self._invalidate_tenant(tenant_id, flag, "override_expired")

        logger.info("Expired feature overrides removed", extra={"count": len(keys)})
        return len(keys)
