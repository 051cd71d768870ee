"""
SqlSessionStore tests.

CRITICAL: registration never leaves an account above its bound, evicts
the least recently heartbeated sessions first, and never evicts the
session being registered.
"""

import asyncio
from datetime import timedelta

import pytest

from tenant_access.sessions.errors import SessionStoreError
from tenant_access.sessions.store import SqlSessionStore


@pytest.fixture
def store(session_factory, clock):
    return SqlSessionStore(session_factory, clock=clock)


async def _ids(store, account_id="acct-1"):
    return [r.session_id for r in await store.list_sessions(account_id)]


class TestRegister:

    @pytest.mark.asyncio
    async def test_registers_up_to_bound_without_eviction(self, store, clock):
        for sid in ("s1", "s2", "s3"):
            assert await store.register_session("acct-1", "rest-1", sid, 3) == []
            clock.advance(1)
        assert await _ids(store) == ["s1", "s2", "s3"]

    @pytest.mark.asyncio
    async def test_fourth_session_evicts_oldest(self, store, clock):
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)
            clock.advance(1)

        assert await store.register_session("acct-1", "rest-1", "s4", 3) == ["s1"]
        assert await _ids(store) == ["s2", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_heartbeat_protects_from_eviction(self, store, clock):
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)
            clock.advance(1)
        assert await store.update_session_heartbeat("acct-1", "s1") is True
        clock.advance(1)

        assert await store.register_session("acct-1", "rest-1", "s4", 3) == ["s2"]
        assert sorted(await _ids(store)) == ["s1", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_reregister_refreshes_without_eviction(self, store, clock):
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)
            clock.advance(1)

        assert await store.register_session("acct-1", "rest-2", "s1", 3) == []
        records = await store.list_sessions("acct-1")
        assert [r.session_id for r in records] == ["s2", "s3", "s1"]
        assert records[-1].tenant_id == "rest-2"
        assert records[-1].last_heartbeat_at == clock.now

    @pytest.mark.asyncio
    async def test_tie_broken_by_creation_order(self, store):
        # clock never advances: identical heartbeat timestamps
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)

        assert await store.register_session("acct-1", "rest-1", "s4", 3) == ["s1"]

    @pytest.mark.asyncio
    async def test_lowered_bound_evicts_down_to_bound(self, store, clock):
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)
            clock.advance(1)

        assert await store.register_session("acct-1", "rest-1", "s4", 1) == ["s1", "s2", "s3"]
        assert await _ids(store) == ["s4"]

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, store):
        for sid in ("s1", "s2", "s3"):
            await store.register_session("acct-1", "rest-1", sid, 3)
        assert await store.register_session("acct-2", "rest-1", "s1", 3) == []
        assert len(await store.list_sessions("acct-1")) == 3
        assert len(await store.list_sessions("acct-2")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_registrations_never_exceed_bound(self, store):
        results = await asyncio.gather(*[
            store.register_session("acct-1", "rest-1", f"s{i}", 3) for i in range(8)
        ])
        evicted = [sid for batch in results for sid in batch]

        assert len(await store.list_sessions("acct-1")) == 3
        assert len(evicted) == 5
        assert len(set(evicted)) == 5

    @pytest.mark.asyncio
    async def test_invalid_bound_rejected(self, store):
        with pytest.raises(ValueError):
            await store.register_session("acct-1", "rest-1", "s1", 0)


class TestHeartbeatAndRemove:

    @pytest.mark.asyncio
    async def test_heartbeat_unknown_session(self, store):
        assert await store.update_session_heartbeat("acct-1", "ghost") is False
        assert await store.list_sessions("acct-1") == []

    @pytest.mark.asyncio
    async def test_heartbeat_refreshes_timestamp(self, store, clock):
        await store.register_session("acct-1", "rest-1", "s1", 3)
        clock.advance(45)
        await store.update_session_heartbeat("acct-1", "s1")
        record = await store.get_session("acct-1", "s1")
        assert record.last_heartbeat_at == clock.now
        assert record.created_at == clock.now - timedelta(seconds=45)

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, store):
        await store.register_session("acct-1", "rest-1", "s1", 3)
        assert await store.remove_session("acct-1", "s1") is True
        assert await store.remove_session("acct-1", "s1") is False
        assert await store.get_session("acct-1", "s1") is None

    @pytest.mark.asyncio
    async def test_remove_is_scoped_to_account(self, store):
        await store.register_session("acct-1", "rest-1", "s1", 3)
        assert await store.remove_session("acct-2", "s1") is False
        assert await _ids(store) == ["s1"]


class TestReap:

    @pytest.mark.asyncio
    async def test_reap_stale_only(self, store, clock):
        await store.register_session("acct-1", "rest-1", "old", 3)
        await store.register_session("acct-2", "rest-1", "old", 3)
        clock.advance(400)
        await store.register_session("acct-1", "rest-1", "fresh", 3)

        assert store.reap_stale(clock.now - timedelta(seconds=300)) == 2
        assert await _ids(store) == ["fresh"]
        assert await store.list_sessions("acct-2") == []


class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_unconfigured_database(self):
        def broken_factory():
            raise ValueError("DATABASE_URL environment variable is not set")

        store = SqlSessionStore(broken_factory)
        with pytest.raises(SessionStoreError) as exc_info:
            await store.register_session("acct-1", "rest-1", "s1", 3)
        assert exc_info.value.operation == "register_session"
