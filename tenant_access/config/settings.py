"""
Operator configuration for access control and session concurrency.

Values come from environment variables; defaults match production.

Usage:
    from tenant_access.config.settings import get_settings

    settings = get_settings()
    registry = SessionRegistry(store, settings=settings)

Configuration:
- MAX_SESSIONS: simultaneous sessions per account (default: 3)
- SESSION_HEARTBEAT_INTERVAL: seconds between heartbeats (default: 60)
- SESSION_STALE_AFTER: seconds without heartbeat before a session is stale (default: 300)
- SESSION_REAPER_INTERVAL: seconds between reaper cycles (default: 60)
- ENTITLEMENT_RPC_URL / SESSION_RPC_URL: remote procedure base URLs
- ACCESS_RPC_TIMEOUT / ACCESS_RPC_API_KEY: remote call settings
- REDIS_URL: enables cross-instance invalidation fan-out
"""

import logging
import os
from dataclasses import dataclass
from threading import Lock
from typing import Mapping, Optional

from tenant_access.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 3
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 60
DEFAULT_STALE_AFTER_SECONDS = 300
DEFAULT_REAPER_INTERVAL_SECONDS = 60
DEFAULT_RPC_TIMEOUT_SECONDS = 5.0

# Staleness below this multiple of the heartbeat interval risks reaping live tabs
RECOMMENDED_STALE_MULTIPLIER = 3


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer",
            details={"variable": name, "value": raw},
        )


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number",
            details={"variable": name, "value": raw},
        )


@dataclass(frozen=True)
class AccessControlSettings:
    """Resolved configuration values."""

    max_sessions: int = DEFAULT_MAX_SESSIONS
    heartbeat_interval_seconds: int = DEFAULT_HEARTBEAT_INTERVAL_SECONDS
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS
    reaper_interval_seconds: int = DEFAULT_REAPER_INTERVAL_SECONDS
    entitlement_rpc_url: Optional[str] = None
    session_rpc_url: Optional[str] = None
    rpc_timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS
    rpc_api_key: Optional[str] = None
    redis_url: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Reject impossible bounds; warn on a risky staleness threshold."""
        if self.max_sessions < 1:
            raise ConfigurationError(
                "MAX_SESSIONS must be at least 1",
                details={"max_sessions": self.max_sessions},
            )
        if self.heartbeat_interval_seconds <= 0:
            raise ConfigurationError(
                "SESSION_HEARTBEAT_INTERVAL must be positive",
                details={"heartbeat_interval_seconds": self.heartbeat_interval_seconds},
            )
        if self.reaper_interval_seconds <= 0:
            raise ConfigurationError(
                "SESSION_REAPER_INTERVAL must be positive",
                details={"reaper_interval_seconds": self.reaper_interval_seconds},
            )
        if self.rpc_timeout_seconds <= 0:
            raise ConfigurationError(
                "ACCESS_RPC_TIMEOUT must be positive",
                details={"rpc_timeout_seconds": self.rpc_timeout_seconds},
            )
        recommended = self.heartbeat_interval_seconds * RECOMMENDED_STALE_MULTIPLIER
        if self.stale_after_seconds < recommended:
            logger.warning(
                "Session staleness threshold is below the recommended multiple of the heartbeat interval",
                extra={
                    "stale_after_seconds": self.stale_after_seconds,
                    "heartbeat_interval_seconds": self.heartbeat_interval_seconds,
                    "recommended_minimum": recommended,
                },
            )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AccessControlSettings":
        """Build settings from environment variables (os.environ by default)."""
        env = os.environ if env is None else env
        return cls(
            max_sessions=_read_int(env, "MAX_SESSIONS", DEFAULT_MAX_SESSIONS),
            heartbeat_interval_seconds=_read_int(
                env, "SESSION_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL_SECONDS
            ),
            stale_after_seconds=_read_int(env, "SESSION_STALE_AFTER", DEFAULT_STALE_AFTER_SECONDS),
            reaper_interval_seconds=_read_int(
                env, "SESSION_REAPER_INTERVAL", DEFAULT_REAPER_INTERVAL_SECONDS
            ),
            entitlement_rpc_url=env.get("ENTITLEMENT_RPC_URL") or None,
            session_rpc_url=env.get("SESSION_RPC_URL") or None,
            rpc_timeout_seconds=_read_float(env, "ACCESS_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT_SECONDS),
            rpc_api_key=env.get("ACCESS_RPC_API_KEY") or None,
            redis_url=env.get("REDIS_URL") or None,
        )


# Module-level singleton
_settings: Optional[AccessControlSettings] = None
_settings_lock = Lock()


def get_settings() -> AccessControlSettings:
    """Get the process-wide settings, reading the environment once."""
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = AccessControlSettings.from_env()
                logger.info(
                    "Access control settings loaded",
                    extra={
                        "max_sessions": _settings.max_sessions,
                        "heartbeat_interval_seconds": _settings.heartbeat_interval_seconds,
                        "stale_after_seconds": _settings.stale_after_seconds,
                    },
                )
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests, config reloads)."""
    global _settings
    with _settings_lock:
        _settings = None
