"""
EntitlementResolver tests.

CRITICAL: checks fail closed, concurrent checks for one key share a single
source call, and failures are never cached.
"""

import asyncio
from typing import Dict, List, Sequence

import pytest
from unittest.mock import MagicMock

from tenant_access.constants.features import dashboard_flags
from tenant_access.entitlements.errors import (
    EntitlementSourceError,
    MalformedEntitlementResponse,
)
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.entitlements.source import EntitlementSource


class FakeSource(EntitlementSource):
    """Records calls; answers from a grant map after an optional delay."""

    def __init__(self, grants: Dict[str, bool] = None, delay: float = 0.0, error: Exception = None):
        self.grants = grants or {}
        self.delay = delay
        self.error = error
        self.response = None
        self.calls: List[tuple] = []

    async def resolve_many(self, tenant_id: str, flags: Sequence[str]):
        self.calls.append((tenant_id, list(flags)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return {flag: self.grants.get(flag, False) for flag in flags}


class TestCaching:

    @pytest.mark.asyncio
    async def test_second_check_served_from_cache(self):
        source = FakeSource({"feature_tables": True})
        resolver = EntitlementResolver(source)

        assert await resolver.has_feature("rest-1", "feature_tables") is True
        assert await resolver.has_feature("rest-1", "feature_tables") is True
        assert len(source.calls) == 1
        assert resolver.cache.peek("rest-1", "feature_tables") is True

    @pytest.mark.asyncio
    async def test_denials_are_cached_too(self):
        source = FakeSource({})
        resolver = EntitlementResolver(source)

        assert await resolver.has_feature("rest-1", "advanced_reports") is False
        assert await resolver.has_feature("rest-1", "advanced_reports") is False
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_keys_are_per_tenant(self):
        source = FakeSource({"feature_tables": True})
        resolver = EntitlementResolver(source)

        await resolver.has_feature("rest-1", "feature_tables")
        await resolver.has_feature("rest-2", "feature_tables")
        assert [c[0] for c in source.calls] == ["rest-1", "rest-2"]

    @pytest.mark.asyncio
    async def test_empty_inputs_deny_without_source_call(self):
        source = FakeSource({"feature_tables": True})
        resolver = EntitlementResolver(source)

        assert await resolver.has_feature("", "feature_tables") is False
        assert await resolver.has_feature("rest-1", None) is False
        assert await resolver.has_features(None, ["feature_tables"]) == {"feature_tables": False}
        assert source.calls == []


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_single_checks_share_one_call(self):
        source = FakeSource({"feature_couriers": True}, delay=0.05)
        resolver = EntitlementResolver(source)

        results = await asyncio.gather(*[
            resolver.has_feature("rest-1", "feature_couriers") for _ in range(10)
        ])
        assert results == [True] * 10
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_single_check_joins_in_flight_batch(self):
        source = FakeSource({"a": True, "b": False}, delay=0.05)
        resolver = EntitlementResolver(source)

        batch, single = await asyncio.gather(
            resolver.has_features("rest-1", ["a", "b"]),
            resolver.has_feature("rest-1", "a"),
        )
        assert batch == {"a": True, "b": False}
        assert single is True
        assert source.calls == [("rest-1", ["a", "b"])]

    @pytest.mark.asyncio
    async def test_batch_fetches_only_missing_keys(self):
        source = FakeSource({"a": True, "b": True, "c": False})
        resolver = EntitlementResolver(source)

        await resolver.has_feature("rest-1", "a")
        result = await resolver.has_features("rest-1", ["a", "b", "c", "b"])
        assert result == {"a": True, "b": True, "c": False}
        assert source.calls == [("rest-1", ["a"]), ("rest-1", ["b", "c"])]

    @pytest.mark.asyncio
    async def test_default_batch_is_dashboard_flags(self):
        source = FakeSource({})
        resolver = EntitlementResolver(source)

        result = await resolver.has_features("rest-1")
        assert list(result) == dashboard_flags()
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_entry(self):
        source = FakeSource({"a": True}, delay=0.05)
        resolver = EntitlementResolver(source)

        owner = asyncio.create_task(resolver.has_feature("rest-1", "a"))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(resolver.has_feature("rest-1", "a"))
        await asyncio.sleep(0.01)
        waiter.cancel()

        assert await owner is True
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert len(source.calls) == 1


class TestFailClosed:

    @pytest.mark.asyncio
    async def test_source_error_denies_and_is_not_cached(self):
        source = FakeSource({"a": True}, error=EntitlementSourceError("rest-1", "timeout"))
        resolver = EntitlementResolver(source)

        assert await resolver.has_feature("rest-1", "a") is False
        assert ("rest-1", "a") not in resolver.cache

        source.error = None
        assert await resolver.has_feature("rest-1", "a") is True
        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_waiters_all_fail_closed(self):
        source = FakeSource(delay=0.02, error=EntitlementSourceError("rest-1", "HTTP 500"))
        resolver = EntitlementResolver(source)

        results = await asyncio.gather(*[resolver.has_feature("rest-1", "a") for _ in range(5)])
        assert results == [False] * 5
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        MalformedEntitlementResponse("rest-1", "bad shape"),
        RuntimeError("boom"),
    ])
    async def test_any_source_exception_denies(self, error):
        resolver = EntitlementResolver(FakeSource(error=error))
        assert await resolver.has_feature("rest-1", "a") is False

    @pytest.mark.asyncio
    async def test_non_boolean_value_denies(self):
        source = FakeSource()
        source.response = {"a": "yes", "b": True}
        resolver = EntitlementResolver(source)

        assert await resolver.has_features("rest-1", ["a", "b"]) == {"a": False, "b": True}
        assert ("rest-1", "a") not in resolver.cache
        assert resolver.cache.peek("rest-1", "b") is True

    @pytest.mark.asyncio
    async def test_non_mapping_response_denies(self):
        source = FakeSource()
        source.response = [True]
        resolver = EntitlementResolver(source)
        assert await resolver.has_feature("rest-1", "a") is False


class TestInvalidation:

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self):
        source = FakeSource({"a": False})
        resolver = EntitlementResolver(source)

        assert await resolver.has_feature("rest-1", "a") is False
        source.grants["a"] = True
        # cached until invalidated
        assert await resolver.has_feature("rest-1", "a") is False

        assert resolver.invalidate("rest-1", "a", reason="override_set") == 1
        assert await resolver.has_feature("rest-1", "a") is True

    @pytest.mark.asyncio
    async def test_invalidation_is_published(self):
        publisher = MagicMock()
        resolver = EntitlementResolver(FakeSource({"a": True}), publisher=publisher)
        await resolver.has_feature("rest-1", "a")

        resolver.invalidate("rest-1", reason="plan_change")
        resolver.invalidate_flag("a", reason="plan_feature")
        resolver.invalidate_all(reason="reload")

        assert [c.args for c in publisher.publish.call_args_list] == [
            ("rest-1", None, "plan_change"),
            (None, "a", "plan_feature"),
            ("*", None, "reload"),
        ]
