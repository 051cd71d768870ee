"""
Entitlement sources: where the resolver gets answers on a cache miss.

Provides:
- EntitlementSource: async contract (resolve_many)
- DatabaseEntitlementSource: resolves directly from SQLAlchemy tables
- HttpEntitlementSource: resolves through the remote capability procedures
- compute_feature_grants(): the override -> plan -> deny query

Sources raise EntitlementSourceError (transport/backend failure) or
MalformedEntitlementResponse (shape violation). They never fail closed
themselves; that is the resolver's job.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, StrictBool, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenant_access.entitlements.errors import (
    EntitlementSourceError,
    MalformedEntitlementResponse,
)
from tenant_access.entitlements.models import (
    FeatureGrant,
    TenantFeatureOverride,
    resolve_feature,
)
from tenant_access.models.plan import Feature, PlanFeature
from tenant_access.models.subscription import SubscriptionStatus, TenantSubscription
from tenant_access.platform.rpc import RpcClient, RpcResponseError, RpcTransportError

logger = logging.getLogger(__name__)


class EntitlementSource(ABC):
    """Resolves feature flags for a tenant. Must be idempotent."""

    @abstractmethod
    async def resolve_many(self, tenant_id: str, flags: Sequence[str]) -> Dict[str, bool]:
        """
        Resolve every flag in flags for tenant_id in one round trip.

        The returned dict has exactly one boolean per requested flag.
        """

    async def resolve(self, tenant_id: str, flag: str) -> bool:
        """Single-flag convenience wrapper."""
        result = await self.resolve_many(tenant_id, [flag])
        return result[flag]


# ---------------------------------------------------------------------------
# Database source
# ---------------------------------------------------------------------------

def _plan_flags(db: Session, tenant_id: str, flags: Sequence[str]) -> set:
    subscription = (
        db.query(TenantSubscription)
        .filter(TenantSubscription.tenant_id == tenant_id)
        .one_or_none()
    )
    if subscription is None:
        return set()

    try:
        status = SubscriptionStatus(subscription.status)
    except ValueError:
        logger.warning(
            "Unrecognised subscription status; plan grants nothing",
            extra={"tenant_id": tenant_id, "status": subscription.status},
        )
        return set()
    if not status.grants_plan_features:
        return set()

    rows = (
        db.query(Feature.flag)
        .join(PlanFeature, PlanFeature.feature_id == Feature.id)
        .filter(
            PlanFeature.plan_id == subscription.plan_id,
            Feature.is_active == True,  # noqa: E712
            Feature.flag.in_(list(flags)),
        )
        .all()
    )
    return {row[0] for row in rows}


def compute_feature_grants(
    db: Session,
    tenant_id: str,
    flags: Sequence[str],
    now: Optional[datetime] = None,
) -> Dict[str, FeatureGrant]:
    """Resolve flags for a tenant from its subscription and overrides."""
    now = now or datetime.now(timezone.utc)
    plan_flags = _plan_flags(db, tenant_id, flags)

    overrides = (
        db.query(TenantFeatureOverride)
        .join(Feature, TenantFeatureOverride.feature_id == Feature.id)
        .filter(
            TenantFeatureOverride.tenant_id == tenant_id,
            Feature.flag.in_(list(flags)),
        )
        .all()
    )
    override_by_flag = {o.feature.flag: o.to_state() for o in overrides}

    return {
        flag: resolve_feature(flag, plan_flags, override_by_flag.get(flag), now)
        for flag in flags
    }


class DatabaseEntitlementSource(EntitlementSource):
    """
    Resolves against the entitlement tables.

    Queries run in a worker thread so the event loop is never blocked.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._session_factory = session_factory
        self._clock = clock

    def _factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from tenant_access.database.session import get_session_factory
            self._session_factory = get_session_factory()
        return self._session_factory

    def _resolve_sync(self, tenant_id: str, flags: List[str]) -> Dict[str, bool]:
        try:
            db = self._factory()()
        except (ValueError, SQLAlchemyError) as e:
            raise EntitlementSourceError(tenant_id, "database not configured", cause=e) from e

        try:
            grants = compute_feature_grants(db, tenant_id, flags, self._clock())
        except SQLAlchemyError as e:
            raise EntitlementSourceError(tenant_id, f"query failed: {type(e).__name__}", cause=e) from e
        finally:
            db.close()

        logger.debug(
            "Resolved entitlements from database",
            extra={
                "tenant_id": tenant_id,
                "grants": {flag: g.source for flag, g in grants.items()},
            },
        )
        return {flag: grant.granted for flag, grant in grants.items()}

    async def resolve_many(self, tenant_id: str, flags: Sequence[str]) -> Dict[str, bool]:
        return await asyncio.to_thread(self._resolve_sync, tenant_id, list(flags))


# ---------------------------------------------------------------------------
# HTTP source
# ---------------------------------------------------------------------------

class FeatureCheckResponse(BaseModel):
    """Body of tenant_has_feature."""
    granted: StrictBool


class FeatureBatchResponse(BaseModel):
    """
    Body of tenant_features.

    Flags absent from the mapping are not granted.
    """
    features: Dict[str, StrictBool]


class HttpEntitlementSource(EntitlementSource):
    """
    Resolves through the remote capability procedures:

        POST /rpc/tenant_has_feature  {tenant_id, flag}   -> {granted}
        POST /rpc/tenant_features     {tenant_id, flags}  -> {features: {flag: bool}}
    """

    SINGLE_PROCEDURE = "tenant_has_feature"
    BATCH_PROCEDURE = "tenant_features"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc = RpcClient(base_url, api_key=api_key, timeout_seconds=timeout_seconds, client=client)

    async def _call(self, tenant_id: str, procedure: str, payload: dict):
        try:
            return await self._rpc.call(procedure, payload)
        except RpcTransportError as e:
            raise EntitlementSourceError(tenant_id, str(e), cause=e) from e
        except RpcResponseError as e:
            raise MalformedEntitlementResponse(tenant_id, str(e)) from e

    async def resolve_many(self, tenant_id: str, flags: Sequence[str]) -> Dict[str, bool]:
        flags = list(flags)
        if len(flags) == 1:
            body = await self._call(
                tenant_id, self.SINGLE_PROCEDURE, {"tenant_id": tenant_id, "flag": flags[0]}
            )
            try:
                parsed = FeatureCheckResponse.model_validate(body)
            except ValidationError as e:
                raise MalformedEntitlementResponse(
                    tenant_id, f"{self.SINGLE_PROCEDURE}: {e.error_count()} validation error(s)"
                ) from e
            return {flags[0]: parsed.granted}

        body = await self._call(
            tenant_id, self.BATCH_PROCEDURE, {"tenant_id": tenant_id, "flags": flags}
        )
        try:
            parsed = FeatureBatchResponse.model_validate(body)
        except ValidationError as e:
            raise MalformedEntitlementResponse(
                tenant_id, f"{self.BATCH_PROCEDURE}: {e.error_count()} validation error(s)"
            ) from e
        return {flag: parsed.features.get(flag, False) for flag in flags}

    async def close(self):
        await self._rpc.close()
