"""SessionHandle lifecycle tests."""

import asyncio
import re
import signal

import pytest
from unittest.mock import AsyncMock, MagicMock

from tenant_access.sessions.errors import RegistrationError
from tenant_access.sessions.heartbeat import (
    SessionHandle,
    generate_session_id,
    install_shutdown_hook,
)


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.heartbeat_interval_seconds = 60
    registry.register = AsyncMock(return_value=[])
    registry.heartbeat = AsyncMock(return_value=True)
    registry.remove = AsyncMock(return_value=True)
    return registry


class TestSessionId:

    def test_format_and_uniqueness(self):
        ids = {generate_session_id() for _ in range(50)}
        assert len(ids) == 50
        for sid in ids:
            assert re.fullmatch(r"session_\d{13}_[a-z0-9]{9}", sid)


class TestSessionHandle:

    @pytest.mark.asyncio
    async def test_start_registers_once(self, registry):
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        await handle.start()
        await handle.start()

        registry.register.assert_awaited_once_with("acct-1", "rest-1", "s1")
        assert handle.active
        await handle.close()

    @pytest.mark.asyncio
    async def test_heartbeats_on_interval(self, registry):
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1", interval_seconds=0.01)
        await handle.start()
        await asyncio.sleep(0.06)
        await handle.close()
        await handle.wait_closed()

        assert registry.heartbeat.await_count >= 2
        registry.heartbeat.assert_awaited_with("acct-1", "s1")

    @pytest.mark.asyncio
    async def test_heartbeat_errors_do_not_stop_loop(self, registry):
        registry.heartbeat.side_effect = RuntimeError("network down")
        handle = SessionHandle(registry, "acct-1", "rest-1", interval_seconds=0.01)
        await handle.start()
        await asyncio.sleep(0.06)

        assert registry.heartbeat.await_count >= 2
        assert not handle._task.done()
        await handle.close()
        await handle.wait_closed()

    @pytest.mark.asyncio
    async def test_close_removes_once_and_stops_heartbeats(self, registry):
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1", interval_seconds=0.01)
        await handle.start()
        await handle.close()
        await handle.close()
        await handle.wait_closed()

        registry.remove.assert_awaited_once_with("acct-1", "s1")
        count = registry.heartbeat.await_count
        await asyncio.sleep(0.03)
        assert registry.heartbeat.await_count == count
        assert not handle.active

    @pytest.mark.asyncio
    async def test_close_before_start_is_noop(self, registry):
        await SessionHandle(registry, "acct-1", "rest-1").close()
        registry.remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_during_registration_removes_and_never_heartbeats(self, registry):
        gate = asyncio.Event()

        async def slow_register(*args):
            await gate.wait()
            return []

        registry.register.side_effect = slow_register
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1", interval_seconds=0.01)
        start_task = asyncio.create_task(handle.start())
        await asyncio.sleep(0)

        close_task = asyncio.create_task(handle.close())
        await asyncio.sleep(0)
        assert not close_task.done()

        gate.set()
        await start_task
        await close_task
        await asyncio.sleep(0.05)

        registry.remove.assert_awaited_once_with("acct-1", "s1")
        registry.heartbeat.assert_not_awaited()
        assert not handle.active
        assert handle._task is None

    @pytest.mark.asyncio
    async def test_second_start_during_registration_is_noop(self, registry):
        gate = asyncio.Event()

        async def slow_register(*args):
            await gate.wait()
            return []

        registry.register.side_effect = slow_register
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        first = asyncio.create_task(handle.start())
        await asyncio.sleep(0)
        await handle.start()
        gate.set()
        await first

        registry.register.assert_awaited_once()
        assert handle.active
        await handle.close()

    @pytest.mark.asyncio
    async def test_registration_failure_propagates(self, registry):
        registry.register.side_effect = RegistrationError("acct-1", "s1")
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        with pytest.raises(RegistrationError):
            await handle.start()
        assert not handle.active

    @pytest.mark.asyncio
    async def test_rebind_same_identity_is_noop(self, registry):
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        await handle.start()
        await handle.rebind("acct-1", "rest-1")

        registry.register.assert_awaited_once()
        registry.remove.assert_not_awaited()
        await handle.close()

    @pytest.mark.asyncio
    async def test_rebind_new_identity_tears_down_first(self, registry):
        calls = []
        registry.register.side_effect = lambda *a: calls.append(("register",) + a) or []
        registry.remove.side_effect = lambda *a: calls.append(("remove",) + a) or True

        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        await handle.start()
        await handle.rebind("acct-1", "rest-2")

        assert calls == [
            ("register", "acct-1", "rest-1", "s1"),
            ("remove", "acct-1", "s1"),
            ("register", "acct-1", "rest-2", "s1"),
        ]
        assert handle.active
        await handle.close()

    @pytest.mark.asyncio
    async def test_context_manager(self, registry):
        async with SessionHandle(registry, "acct-1", "rest-1", session_id="s1") as handle:
            assert handle.active
        registry.remove.assert_awaited_once_with("acct-1", "s1")


class TestShutdownHook:

    @pytest.mark.asyncio
    async def test_signal_closes_handle(self, registry):
        handle = SessionHandle(registry, "acct-1", "rest-1", session_id="s1")
        await handle.start()
        loop = MagicMock()

        uninstall = install_shutdown_hook(handle, loop=loop)
        sigs = [c.args[0] for c in loop.add_signal_handler.call_args_list]
        assert sigs == [signal.SIGTERM, signal.SIGINT]

        callback, signum = loop.add_signal_handler.call_args_list[0].args[1:]
        loop.create_task.side_effect = asyncio.ensure_future
        callback(signum)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        registry.remove.assert_awaited_once_with("acct-1", "s1")

        uninstall()
        assert loop.remove_signal_handler.call_count == 2

    @pytest.mark.asyncio
    async def test_unsupported_platform_is_tolerated(self, registry):
        loop = MagicMock()
        loop.add_signal_handler.side_effect = NotImplementedError
        uninstall = install_shutdown_hook(SessionHandle(registry, "a", "t"), loop=loop)
        uninstall()
        loop.remove_signal_handler.assert_not_called()
