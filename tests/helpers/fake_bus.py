"""Recording event bus for testing.

``RecordingBus`` is a real :class:`~netlayer.services.event_bus.EventBus`
that additionally appends every emitted ``(event, data)`` pair to the
``events`` list.  Tests inspect the list afterwards to assert on event
ordering and payloads without registering listeners for each name.
"""

from __future__ import annotations

from typing import Any, List, Tuple

from netlayer.services.event_bus import EventBus


class RecordingBus(EventBus):
    """An event bus that remembers everything emitted on it."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[Tuple[str, Any]] = []

    def emit(self, event: str, data: Any = None) -> None:
        self.events.append((event, data))
        super().emit(event, data)

    def named(self, event: str) -> List[Any]:
        """Return the payloads of every ``event`` emitted so far, in order."""
        return [data for name, data in self.events if name == event]
