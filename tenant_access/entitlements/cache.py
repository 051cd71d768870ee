"""
Entitlement Cache - per-instance cache of (tenant, flag) resolutions.

Provides:
- EntitlementCache: in-process cache holding one future per (tenant, flag)
- InvalidationPublisher: fan invalidations out to other instances via Redis
- InvalidationSubscriber: apply invalidations received from other instances

Entries never expire on a timer. They are dropped only by explicit
invalidation (plan change, override change) or when the process restarts.
The cache is not a source of truth: dropping it costs latency, never
correctness.

An entry is an asyncio.Future. A pending future is an in-flight resolution
that later callers join; a completed future is the cached value. Single and
batch checks share these entries, so they converge on one value per key.
All methods must be called from the event loop that owns the cache.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

from tenant_access.config.settings import get_settings

logger = logging.getLogger(__name__)

INVALIDATION_CHANNEL = "entitlements:invalidations"

CacheKey = Tuple[str, str]


class EntitlementCache:
    """
    Cache of feature resolutions keyed by (tenant_id, flag).

    Usage:
        cache = EntitlementCache()

        entry = cache.get(tenant_id, flag)
        if entry is None:
            entry = cache.reserve(tenant_id, flag)
            ... resolve, then entry.set_result(value)

        # On plan change
        cache.invalidate(tenant_id, reason="plan_change")
    """

    def __init__(self):
        self._entries: Dict[CacheKey, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def keys(self) -> Iterator[CacheKey]:
        return iter(list(self._entries))

    def get(self, tenant_id: str, flag: str) -> Optional[asyncio.Future]:
        """Return the entry (pending or resolved) for a key, if any."""
        return self._entries.get((tenant_id, flag))

    def peek(self, tenant_id: str, flag: str) -> Optional[bool]:
        """Return the cached boolean, or None when missing or still in flight."""
        entry = self._entries.get((tenant_id, flag))
        if entry is None or not entry.done() or entry.cancelled():
            return None
        return entry.result()

    def reserve(self, tenant_id: str, flag: str) -> asyncio.Future:
        """Create and store a pending entry for a key that has none."""
        key = (tenant_id, flag)
        if key in self._entries:
            raise KeyError(f"cache entry already present for {key}")
        entry = asyncio.get_running_loop().create_future()
        self._entries[key] = entry
        return entry

    def discard(self, tenant_id: str, flag: str, entry: asyncio.Future) -> bool:
        """Drop a key only if it still maps to this entry."""
        key = (tenant_id, flag)
        if self._entries.get(key) is entry:
            del self._entries[key]
            return True
        return False

    def invalidate(
        self,
        tenant_id: str,
        flag: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        """
        Drop one key, or every key of a tenant when flag is None.

        In-flight resolutions for dropped keys still answer their current
        waiters but are not kept.
        """
        if flag is not None:
            keys = [(tenant_id, flag)] if (tenant_id, flag) in self._entries else []
        else:
            keys = [k for k in self._entries if k[0] == tenant_id]

        for key in keys:
            del self._entries[key]

        if keys:
            logger.info(
                "Invalidated entitlement cache",
                extra={"tenant_id": tenant_id, "flag": flag, "count": len(keys), "reason": reason},
            )
        return len(keys)

    def invalidate_flag(self, flag: str, reason: Optional[str] = None) -> int:
        """Drop a flag for every tenant (plan contents changed)."""
        keys = [k for k in self._entries if k[1] == flag]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.info(
                "Invalidated entitlement flag across tenants",
                extra={"flag": flag, "count": len(keys), "reason": reason},
            )
        return len(keys)

    def invalidate_all(self, reason: Optional[str] = None) -> int:
        """
        Drop everything.

        Use with caution - only for config reloads or emergencies.
        """
        count = len(self._entries)
        self._entries.clear()
        logger.warning(
            f"Mass invalidation of entitlement cache ({count} entries)",
            extra={"reason": reason},
        )
        return count


def _invalidation_message(
    tenant_id: Optional[str],
    flag: Optional[str],
    reason: Optional[str],
) -> str:
    return json.dumps({
        "tenant_id": tenant_id,
        "flag": flag,
        "reason": reason,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


def apply_invalidation(cache: EntitlementCache, payload: dict) -> int:
    """
    Apply one invalidation message to a cache.

    tenant_id "*" clears everything; tenant_id None with a flag clears that
    flag across tenants.
    """
    tenant_id = payload.get("tenant_id")
    flag = payload.get("flag")
    reason = payload.get("reason")

    if tenant_id == "*":
        return cache.invalidate_all(reason=reason)
    if tenant_id is None and flag:
        return cache.invalidate_flag(flag, reason=reason)
    if tenant_id:
        return cache.invalidate(tenant_id, flag, reason=reason)

    logger.warning("Ignoring invalidation without tenant or flag", extra={"payload": payload})
    return 0


class InvalidationPublisher:
    """
    Publishes invalidations so other application instances drop their copies.

    Degrades to a logged no-op when REDIS_URL is not configured or Redis is
    unreachable; the local cache is still invalidated by the caller.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None):
        self._redis = client
        if self._redis is None:
            redis_url = redis_url or get_settings().redis_url
            if redis_url:
                try:
                    import redis
                    self._redis = redis.from_url(
                        redis_url,
                        decode_responses=True,
                        socket_timeout=5.0,
                        socket_connect_timeout=5.0,
                    )
                except Exception as e:
                    logger.warning(f"Redis connection failed: {e} - invalidation fan-out disabled")
            else:
                logger.info("REDIS_URL not configured - invalidation fan-out disabled")

    @property
    def available(self) -> bool:
        return self._redis is not None

    def publish(
        self,
        tenant_id: Optional[str],
        flag: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        """Publish an invalidation; returns the number of receivers."""
        if not self.available:
            return 0
        try:
            return self._redis.publish(
                INVALIDATION_CHANNEL, _invalidation_message(tenant_id, flag, reason)
            )
        except Exception as e:
            logger.warning(f"Redis PUBLISH failed: {e}")
            return 0


class InvalidationSubscriber:
    """
    Listens on the invalidation channel and applies messages to a local cache.

    Run as a background task on the event loop that owns the cache:

        subscriber = InvalidationSubscriber(cache, redis_url)
        task = asyncio.create_task(subscriber.run())
    """

    def __init__(self, cache: EntitlementCache, redis_url: Optional[str] = None, client=None):
        self._cache = cache
        self._redis_url = redis_url or get_settings().redis_url
        self._client = client

    def handle_message(self, message: dict) -> int:
        """Apply one pub/sub message; malformed messages are logged and skipped."""
        if message.get("type") != "message":
            return 0
        try:
            payload = json.loads(message.get("data") or "")
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed invalidation message", extra={"data": message.get("data")})
            return 0
        if not isinstance(payload, dict):
            logger.warning("Ignoring malformed invalidation message", extra={"data": message.get("data")})
            return 0
        return apply_invalidation(self._cache, payload)

    async def run(self) -> None:
        """Consume the channel until cancelled."""
        if self._client is None:
            if not self._redis_url:
                logger.info("REDIS_URL not configured - not listening for invalidations")
                return
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)

        pubsub = self._client.pubsub()
        await pubsub.subscribe(INVALIDATION_CHANNEL)
        logger.info("Listening for entitlement invalidations", extra={"channel": INVALIDATION_CHANNEL})
        try:
            async for message in pubsub.listen():
                self.handle_message(message)
        finally:
            await pubsub.unsubscribe(INVALIDATION_CHANNEL)
            await pubsub.close()
