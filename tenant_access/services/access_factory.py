"""
Build access-control components from AccessControlSettings.

ENTITLEMENT_RPC_URL / SESSION_RPC_URL select the HTTP-backed source and
store; without them the database-backed ones are used. REDIS_URL enables
invalidation fan-out.

Usage:
    settings = get_settings()
    app.state.entitlement_resolver = build_entitlement_resolver(settings)
    registry = build_session_registry(settings)
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from tenant_access.config.settings import AccessControlSettings, get_settings
from tenant_access.entitlements.cache import (
    EntitlementCache,
    InvalidationPublisher,
    InvalidationSubscriber,
)
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.entitlements.source import (
    DatabaseEntitlementSource,
    EntitlementSource,
    HttpEntitlementSource,
)
from tenant_access.sessions.registry import SessionRegistry
from tenant_access.sessions.rpc_store import HttpSessionStore
from tenant_access.sessions.store import SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)


def build_entitlement_source(
    settings: Optional[AccessControlSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> EntitlementSource:
    settings = settings or get_settings()
    if settings.entitlement_rpc_url:
        logger.info("Entitlements resolve over HTTP", extra={"base_url": settings.entitlement_rpc_url})
        return HttpEntitlementSource(
            settings.entitlement_rpc_url,
            api_key=settings.rpc_api_key,
            timeout_seconds=settings.rpc_timeout_seconds,
        )
    return DatabaseEntitlementSource(session_factory)


def build_session_store(
    settings: Optional[AccessControlSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SessionStore:
    settings = settings or get_settings()
    if settings.session_rpc_url:
        logger.info("Sessions stored over HTTP", extra={"base_url": settings.session_rpc_url})
        return HttpSessionStore(
            settings.session_rpc_url,
            api_key=settings.rpc_api_key,
            timeout_seconds=settings.rpc_timeout_seconds,
        )
    return SqlSessionStore(session_factory)


def build_invalidation_publisher(
    settings: Optional[AccessControlSettings] = None,
) -> InvalidationPublisher:
    settings = settings or get_settings()
    return InvalidationPublisher(redis_url=settings.redis_url)


def build_invalidation_subscriber(
    cache: EntitlementCache,
    settings: Optional[AccessControlSettings] = None,
) -> InvalidationSubscriber:
    settings = settings or get_settings()
    return InvalidationSubscriber(cache, redis_url=settings.redis_url)


def build_entitlement_resolver(
    settings: Optional[AccessControlSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    publisher: Optional[InvalidationPublisher] = None,
) -> EntitlementResolver:
    """Resolver over the configured source, publishing to the configured Redis."""
    settings = settings or get_settings()
    return EntitlementResolver(
        build_entitlement_source(settings, session_factory),
        publisher=publisher or build_invalidation_publisher(settings),
    )


def build_session_registry(
    settings: Optional[AccessControlSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SessionRegistry:
    settings = settings or get_settings()
    return SessionRegistry(build_session_store(settings, session_factory), settings=settings)
