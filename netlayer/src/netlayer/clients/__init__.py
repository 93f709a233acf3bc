"""
Network clients.

This package provides the HTTP client and its refresh coordinator, and
the socket connection manager with its message correlator.
"""

from .correlator import MessageCorrelator  # noqa: F401
from .http_client import HttpClient  # noqa: F401
from .refresh import RefreshCoordinator  # noqa: F401
from .socket_manager import ConnectionState, SocketManager  # noqa: F401
