"""
Composition root for the client layer.

Builds one event bus, one credential store, one HTTP client and one
socket manager wired to each other.  Nothing here is a module-level
singleton: every call to :meth:`ClientLayer.create` yields fresh
instances, so tests and multi-account processes can hold several layers
side by side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .clients.http_client import HttpClient
from .clients.socket_manager import SocketManager
from .config import HttpConfig, SocketConfig
from .services.credential_store import CredentialStore
from .services.event_bus import EventBus
from .services.storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class ClientLayer:
    event_bus: EventBus
    credentials: CredentialStore
    http: HttpClient
    socket: SocketManager

    @classmethod
    def create(
        cls,
        storage: Optional[KeyValueStore] = None,
        http_config: Optional[HttpConfig] = None,
        socket_config: Optional[SocketConfig] = None,
        *,
        connect: Any = None,
    ) -> "ClientLayer":
        """Wire a fresh layer; configs default to their ``from_env`` values."""
        event_bus = EventBus()
        credentials = CredentialStore(storage)
        http = HttpClient(
            credentials,
            http_config or HttpConfig.from_env(),
            event_bus=event_bus,
        )
        socket = SocketManager(
            credentials,
            socket_config or SocketConfig.from_env(),
            event_bus=event_bus,
            connect=connect,
        )
        logger.debug("Client layer created for %s", http.config.base_url)
        return cls(event_bus=event_bus, credentials=credentials, http=http, socket=socket)

    async def close(self) -> None:
        await self.socket.disconnect()
