"""
Configuration for the HTTP client and the socket connection manager.

Both configurations work with no arguments at all; every field has a
default.  Operators can override the defaults through environment
variables using :meth:`HttpConfig.from_env` and
:meth:`SocketConfig.from_env`:

``NETLAYER_API_URL``
    Base URL joined to relative request paths.
``NETLAYER_HTTP_TIMEOUT``
    Default per-request timeout in seconds.
``NETLAYER_CLIENT_VERSION`` / ``NETLAYER_PLATFORM``
    Values of the ``X-Client-Version`` and ``X-Platform`` headers.
``NETLAYER_MAX_RETRIES`` / ``NETLAYER_RETRY_DELAY`` / ``NETLAYER_RETRY_STATUS_CODES``
    Parameters of the opt-in retry policy (``request_with_retry``).
``NETLAYER_REFRESH_TIMEOUT``
    Upper bound on a single token refresh call.
``NETLAYER_WS_URL``
    Socket endpoint.
``NETLAYER_WS_RECONNECT_INTERVAL`` / ``NETLAYER_WS_MAX_RECONNECT_INTERVAL`` /
``NETLAYER_WS_RECONNECT_DECAY`` / ``NETLAYER_WS_MAX_RECONNECT_ATTEMPTS``
    Bounded exponential reconnection policy.
``NETLAYER_WS_HEARTBEAT_INTERVAL``
    Seconds between keep-alive pings.
``NETLAYER_WS_MESSAGE_TIMEOUT`` / ``NETLAYER_WS_CONNECT_TIMEOUT``
    Default deadline of correlated sends and of the connection handshake.

Malformed numeric values are logged and replaced by the default.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from . import __version__

logger = logging.getLogger(__name__)


DEFAULT_PUBLIC_ENDPOINTS: FrozenSet[str] = frozenset(
    {
        "/auth/login",
        "/auth/register",
        "/auth/forgot-password",
        "/auth/reset-password",
        "/auth/verify-email",
        "/auth/oauth/google",
        "/auth/oauth/apple",
        "/auth/refresh-token",
        "/public/",
    }
)

DEFAULT_RETRY_STATUS_CODES: Tuple[int, ...] = (408, 429, 500, 502, 503, 504)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default


def _env_codes(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default


@dataclass
class HttpConfig:
    base_url: str = "https://api.gpslab.io/v1"
    timeout: float = 30.0
    client_version: str = __version__
    platform: str = "python"
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_status_codes: Tuple[int, ...] = DEFAULT_RETRY_STATUS_CODES
    public_endpoints: FrozenSet[str] = field(default_factory=lambda: DEFAULT_PUBLIC_ENDPOINTS)
    refresh_path: str = "/auth/refresh-token"
    auth_prefix: str = "/auth/"
    refresh_timeout: float = 15.0

    @classmethod
    def from_env(cls, base_url: Optional[str] = None) -> "HttpConfig":
        """Build a configuration from ``NETLAYER_*`` environment variables."""
        return cls(
            base_url=base_url or os.getenv("NETLAYER_API_URL", cls.base_url),
            timeout=_env_float("NETLAYER_HTTP_TIMEOUT", cls.timeout),
            client_version=os.getenv("NETLAYER_CLIENT_VERSION", __version__),
            platform=os.getenv("NETLAYER_PLATFORM", cls.platform),
            max_retries=_env_int("NETLAYER_MAX_RETRIES", cls.max_retries),
            retry_delay=_env_float("NETLAYER_RETRY_DELAY", cls.retry_delay),
            retry_status_codes=_env_codes("NETLAYER_RETRY_STATUS_CODES", DEFAULT_RETRY_STATUS_CODES),
            refresh_timeout=_env_float("NETLAYER_REFRESH_TIMEOUT", cls.refresh_timeout),
        )


@dataclass
class SocketConfig:
    url: str = "wss://ws.gpslab.io"
    reconnect_interval: float = 1.0
    max_reconnect_interval: float = 30.0
    reconnect_decay: float = 1.5
    max_reconnect_attempts: int = 10
    heartbeat_interval: float = 30.0
    message_timeout: float = 10.0
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls, url: Optional[str] = None) -> "SocketConfig":
        """Build a configuration from ``NETLAYER_WS_*`` environment variables."""
        return cls(
            url=url or os.getenv("NETLAYER_WS_URL", cls.url),
            reconnect_interval=_env_float("NETLAYER_WS_RECONNECT_INTERVAL", cls.reconnect_interval),
            max_reconnect_interval=_env_float(
                "NETLAYER_WS_MAX_RECONNECT_INTERVAL", cls.max_reconnect_interval
            ),
            reconnect_decay=_env_float("NETLAYER_WS_RECONNECT_DECAY", cls.reconnect_decay),
            max_reconnect_attempts=_env_int(
                "NETLAYER_WS_MAX_RECONNECT_ATTEMPTS", cls.max_reconnect_attempts
            ),
            heartbeat_interval=_env_float("NETLAYER_WS_HEARTBEAT_INTERVAL", cls.heartbeat_interval),
            message_timeout=_env_float("NETLAYER_WS_MESSAGE_TIMEOUT", cls.message_timeout),
            connect_timeout=_env_float("NETLAYER_WS_CONNECT_TIMEOUT", cls.connect_timeout),
        )
