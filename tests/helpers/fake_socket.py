"""Fake duplex connection for socket manager tests.

``FakeWebSocket`` mimics the small part of a ``websockets`` client
connection the manager relies on: ``send``, ``close``, ``close_code`` and
async iteration over inbound frames.  Tests push server frames with
:meth:`FakeWebSocket.push` and simulate a dropped connection with
:meth:`FakeWebSocket.drop`.

``FakeServer`` is a connect factory handing out one ``FakeWebSocket``
per successful handshake.  Failures can be scripted by setting
``fail_next`` to the number of upcoming handshakes that should raise.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

_CLOSED = object()


class FakeWebSocket:
    """In-memory connection recording sent frames."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None
        self.close_reason = ""
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionResetError("connection is closed")
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def push(self, frame: Any) -> None:
        """Deliver a server frame; dicts are JSON-encoded, strings sent as-is."""
        self._inbox.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server side closing the connection."""
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeServer:
    """Connect factory producing :class:`FakeWebSocket` instances."""

    def __init__(self) -> None:
        self.connections: List[FakeWebSocket] = []
        self.attempts: List[str] = []
        self.fail_next = 0

    async def __call__(self, url: str) -> FakeWebSocket:
        self.attempts.append(url)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionRefusedError("handshake refused")
        ws = FakeWebSocket(url)
        self.connections.append(ws)
        return ws

    @property
    def current(self) -> FakeWebSocket:
        return self.connections[-1]
