"""
Client-side session lifecycle.

A SessionHandle registers once when an identity becomes known, heartbeats
on an interval, and removes itself on close. Re-running it for the same
identity is a no-op; an identity change tears the old registration down
first.

Usage:
    handle = SessionHandle(registry, account_id, tenant_id)
    await handle.start()
    remove_hook = install_shutdown_hook(handle)
    ...
    await handle.close()
"""

import asyncio
import logging
import secrets
import signal
import string
import time
from typing import Callable, Optional

from tenant_access.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Opaque id, unique per tab: session_<epoch ms>_<9 random chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class SessionHandle:
    """One tab's registration plus its heartbeat task."""

    def __init__(
        self,
        registry: SessionRegistry,
        account_id: str,
        tenant_id: str,
        session_id: Optional[str] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.registry = registry
        self.account_id = account_id
        self.tenant_id = tenant_id
        self.session_id = session_id or generate_session_id()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else registry.heartbeat_interval_seconds
        )
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None
        self._starting: Optional[asyncio.Event] = None
        self._closing = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._closing

    async def start(self) -> None:
        """
        Register and begin heartbeating. Raises RegistrationError.

        A close() that arrives while registration is in flight wins: the
        heartbeat task is never created and the session is removed.
        """
        if self.active or self._starting is not None:
            return
        self._closing = False
        self._starting = asyncio.Event()
        try:
            await self.registry.register(self.account_id, self.tenant_id, self.session_id)
            if self._closing:
                logger.info(
                    "Session closed during registration; removing",
                    extra={"account_id": self.account_id, "session_id": self.session_id},
                )
                await self.registry.remove(self.account_id, self.session_id)
                return
            self._stop = asyncio.Event()
            self._task = asyncio.create_task(
                self._heartbeat_loop(self._stop),
                name=f"session-heartbeat:{self.session_id}",
            )
        finally:
            self._starting.set()
            self._starting = None

    async def _heartbeat_loop(self, stop: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.registry.heartbeat(self.account_id, self.session_id)
            except Exception:
                logger.warning(
                    "Heartbeat raised; will retry next interval",
                    extra={"account_id": self.account_id, "session_id": self.session_id},
                    exc_info=True,
                )

    async def close(self) -> None:
        """
        Stop heartbeating and remove the session. Safe to call twice.

        A heartbeat already in flight is left to finish on its own. During an
        in-flight start(), waits for it to finish and issue the remove.
        """
        if self._closing:
            return
        starting = self._starting
        if starting is None and self._task is None:
            return
        self._closing = True
        if starting is not None:
            await starting.wait()
            return
        self._stop.set()
        await self.registry.remove(self.account_id, self.session_id)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def rebind(self, account_id: str, tenant_id: str) -> None:
        """Follow an identity change: tear down, then register the new identity."""
        if account_id == self.account_id and tenant_id == self.tenant_id and self.active:
            return
        await self.close()
        self.account_id = account_id
        self.tenant_id = tenant_id
        self._task = None
        await self.start()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def install_shutdown_hook(
    handle: SessionHandle,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    signals=(signal.SIGTERM, signal.SIGINT),
) -> Callable[[], None]:
    """
    Close the handle on SIGTERM/SIGINT.

    Returns a callable that uninstalls the handlers.
    """
    loop = loop or asyncio.get_running_loop()
    installed = []

    def _on_signal(signum):
        logger.info(
            f"Received signal {signum}, closing session",
            extra={"session_id": handle.session_id},
        )
        loop.create_task(handle.close())

    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.warning(f"Cannot install handler for signal {sig}; session close relies on the reaper")

    def _uninstall():
        for sig in installed:
            loop.remove_signal_handler(sig)

    return _uninstall
