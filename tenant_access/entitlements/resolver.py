"""
Entitlement Resolver - single entry point for feature checks.

Provides:
- has_feature(tenant_id, flag) -> bool
- has_features(tenant_id, flags) -> {flag: bool}   (dashboards, one round trip)
- invalidate(...) passthroughs for administrative changes

Architecture:
- Fail-CLOSED: transport failures and malformed responses resolve to False,
  are logged at warning level and never raise into the caller
- Single-flight: concurrent checks for the same (tenant, flag) share one
  underlying resolution, whether they came in as single or batch checks
- Cached indefinitely: only explicit invalidation drops an entry
- Failures are not cached: the next check retries the source
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from tenant_access.constants.features import dashboard_flags
from tenant_access.entitlements.cache import EntitlementCache, InvalidationPublisher
from tenant_access.entitlements.errors import (
    EntitlementSourceError,
    MalformedEntitlementResponse,
)
from tenant_access.entitlements.source import EntitlementSource

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """
    Resolves whether a tenant may use a named feature.

    One instance per application instance (event loop). The cache is owned
    by the resolver unless one is injected.
    """

    def __init__(
        self,
        source: EntitlementSource,
        cache: Optional[EntitlementCache] = None,
        publisher: Optional[InvalidationPublisher] = None,
    ):
        self._source = source
        self._cache = cache if cache is not None else EntitlementCache()
        self._publisher = publisher

    @property
    def cache(self) -> EntitlementCache:
        return self._cache

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    async def has_feature(self, tenant_id: Optional[str], flag: Optional[str]) -> bool:
        """Check one flag. A batch of one, so it shares entries with batches."""
        if not tenant_id or not flag:
            return False
        result = await self.has_features(tenant_id, [flag])
        return result[flag]

    async def has_features(
        self,
        tenant_id: Optional[str],
        flags: Optional[Iterable[str]] = None,
    ) -> Dict[str, bool]:
        """
        Check several flags for one tenant.

        Flags with a cached or in-flight entry are joined; the rest are
        fetched together in a single source call. flags=None means every
        known dashboard flag.
        """
        wanted: List[str] = list(dict.fromkeys(
            f for f in (dashboard_flags() if flags is None else flags) if f
        ))
        if not tenant_id:
            return {flag: False for flag in wanted}

        entries: Dict[str, asyncio.Future] = {}
        owned: Dict[str, asyncio.Future] = {}
        for flag in wanted:
            entry = self._cache.get(tenant_id, flag)
            if entry is None:
                entry = self._cache.reserve(tenant_id, flag)
                owned[flag] = entry
            entries[flag] = entry

        if owned:
            logger.debug(
                "Entitlement cache miss",
                extra={"tenant_id": tenant_id, "flags": list(owned)},
            )
            await self._resolve(tenant_id, owned)

        results: Dict[str, bool] = {}
        for flag, entry in entries.items():
            # shield: a cancelled waiter must not cancel the shared entry
            results[flag] = await asyncio.shield(entry)
        return results

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self, tenant_id: str, owned: Dict[str, asyncio.Future]) -> None:
        """Fetch owned keys from the source and settle their entries."""
        flags = list(owned)
        try:
            resolved = await self._source.resolve_many(tenant_id, flags)
        except asyncio.CancelledError:
            self._fail_closed(tenant_id, owned, "resolution cancelled")
            raise
        except EntitlementSourceError as e:
            self._fail_closed(tenant_id, owned, f"source unavailable: {e.detail}")
            return
        except MalformedEntitlementResponse as e:
            self._fail_closed(tenant_id, owned, f"malformed response: {e.detail}")
            return
        except Exception as e:
            self._fail_closed(tenant_id, owned, f"unexpected {type(e).__name__}: {e}")
            return

        if not isinstance(resolved, dict):
            self._fail_closed(tenant_id, owned, "source returned a non-mapping")
            return

        for flag, entry in owned.items():
            value = resolved.get(flag)
            if not isinstance(value, bool):
                self._fail_closed(
                    tenant_id, {flag: entry}, f"missing or non-boolean value {value!r}"
                )
                continue
            if not entry.done():
                entry.set_result(value)

        logger.debug(
            "Entitlements resolved",
            extra={"tenant_id": tenant_id, "flags": flags},
        )

    def _fail_closed(
        self,
        tenant_id: str,
        owned: Dict[str, asyncio.Future],
        reason: str,
    ) -> None:
        logger.warning(
            "Entitlement check failed closed",
            extra={"tenant_id": tenant_id, "flags": list(owned), "reason": reason},
        )
        for flag, entry in owned.items():
            self._cache.discard(tenant_id, flag, entry)
            if not entry.done():
                entry.set_result(False)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _publish(self, tenant_id: Optional[str], flag: Optional[str], reason: Optional[str]) -> None:
        if self._publisher is not None:
            self._publisher.publish(tenant_id, flag, reason)

    def invalidate(
        self,
        tenant_id: str,
        flag: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        """Drop cached values for a tenant (one flag or all) here and elsewhere."""
        count = self._cache.invalidate(tenant_id, flag, reason=reason)
        self._publish(tenant_id, flag, reason)
        return count

    def invalidate_flag(self, flag: str, reason: Optional[str] = None) -> int:
        """Drop a flag for every tenant here and elsewhere."""
        count = self._cache.invalidate_flag(flag, reason=reason)
        self._publish(None, flag, reason)
        return count

    def invalidate_all(self, reason: Optional[str] = None) -> int:
        count = self._cache.invalidate_all(reason=reason)
        self._publish("*", None, reason)
        return count
