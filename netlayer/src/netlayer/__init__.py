"""
Resilient network client layer.

This package provides the pieces an application needs to talk to its
backend: a credential store, an HTTP client with an interceptor pipeline
and single-flight token refresh, and a socket connection manager with
reconnection, heartbeat, an outbound queue and request/response
correlation.  :class:`ClientLayer` wires them together around one shared
event bus.
"""

__version__ = "1.0.0"

from .clients.http_client import HttpClient, RequestConfig, Response  # noqa: E402,F401
from .clients.refresh import RefreshCoordinator  # noqa: E402,F401
from .clients.socket_manager import ConnectionState, SocketManager  # noqa: E402,F401
from .config import HttpConfig, SocketConfig  # noqa: E402,F401
from .models import Credential  # noqa: E402,F401
from .runtime import ClientLayer  # noqa: E402,F401
from .services.credential_store import CredentialStore  # noqa: E402,F401
from .services.event_bus import EventBus  # noqa: E402,F401
