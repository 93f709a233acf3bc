"""
Simple in-memory event bus shared by the HTTP client and the socket
manager.

Listeners are plain callables registered per event name with
:meth:`EventBus.on`, which returns an unsubscribe function.  Emitting an
event calls every listener in registration order; a listener that raises
is logged and skipped so that the remaining listeners still run.  A
listener may also be a coroutine function, in which case the coroutine
is scheduled on the running loop and its failure is logged.

For consumers that prefer a stream, :meth:`EventBus.subscribe` yields
events of a given type as they arrive, backed by an ``asyncio.Queue``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Dict, Set

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]

AUTH_LOGOUT = "auth:logout"
STATE_CHANGE = "state_change"
CONNECT = "connect"
DISCONNECT = "disconnect"
RECONNECT = "reconnect"
RECONNECT_FAILED = "reconnect_failed"
ERROR = "error"


class EventBus:
    """Map of event name to an ordered set of listeners."""

    def __init__(self) -> None:
        # dicts keep insertion order, giving ordered-set semantics
        self._listeners: Dict[str, Dict[Listener, None]] = defaultdict(dict)
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for ``event`` and return an unsubscribe handle."""
        self._listeners[event][callback] = None

        def unsubscribe() -> None:
            self.off(event, callback)

        return unsubscribe

    def once(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` to run on the next ``event`` only."""

        def wrapper(data: Any) -> Any:
            unsubscribe()
            return callback(data)

        unsubscribe = self.on(event, wrapper)
        return unsubscribe

    def off(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners is not None:
            listeners.pop(callback, None)
            if not listeners:
                del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, data: Any = None) -> None:
        """Call every listener of ``event``; listener failures are isolated."""
        # Snapshot so listeners may (un)register during dispatch
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(data)
            except Exception:
                logger.exception("Listener for %r raised", event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: str, awaitable: Any) -> None:
        async def runner() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("Async listener for %r raised", event)

        task = asyncio.ensure_future(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def publish(self, event_type: str, data: Any) -> None:
        """Coroutine form of :meth:`emit` for producers already awaiting."""
        self.emit(event_type, data)

    async def subscribe(self, event_type: str) -> AsyncIterator[Any]:
        """Yield events of a given type as they arrive."""
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.on(event_type, queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

