"""
Request/response correlation for the socket connection.

Each correlated send gets a fresh id from a monotonically increasing
counter and an ``asyncio.Future`` that settles when a frame carrying the
same id arrives, or rejects with :class:`RequestTimeoutError` when its
timer fires first.  Whichever happens first removes the entry, so a
late reply after a timeout is treated as an ordinary broadcast and a
request can never be settled twice.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import RemoteError, RequestTimeoutError
from ..models_events import Envelope
from ..telemetry import SOCKET_PENDING

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    id: int
    future: asyncio.Future
    timeout: float
    created_at: float = field(default_factory=time.monotonic)
    timer: Optional[asyncio.TimerHandle] = None


class MessageCorrelator:
    """Pairs inbound response frames with the requests that triggered them."""

    def __init__(self) -> None:
        self._counter = 0
        self._pending: Dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> List[int]:
        return list(self._pending)

    def next_id(self) -> int:
        self._counter += 1
        return self._counter

    def register(self, request_id: int, timeout: float) -> asyncio.Future:
        """Create the pending entry for ``request_id`` and arm its timer."""
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id} is already pending")
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        pending = PendingRequest(id=request_id, future=future, timeout=timeout)
        pending.timer = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = pending
        SOCKET_PENDING.set(len(self._pending))
        return future

    def _pop(self, request_id: int) -> Optional[PendingRequest]:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            if pending.timer is not None:
                pending.timer.cancel()
            SOCKET_PENDING.set(len(self._pending))
        return pending

    def _expire(self, request_id: int) -> None:
        pending = self._pop(request_id)
        if pending is None or pending.future.done():
            return
        elapsed = time.monotonic() - pending.created_at
        logger.warning("Socket request %d timed out after %.3fs", request_id, elapsed)
        pending.future.set_exception(
            RequestTimeoutError(
                f"Socket request {request_id} timed out",
                elapsed=elapsed,
                timeout=pending.timeout,
            )
        )

    def settle(self, envelope: Envelope) -> bool:
        """Settle the request matching ``envelope.id``; False if none is pending."""
        if envelope.id is None:
            return False
        pending = self._pop(envelope.id)
        if pending is None:
            return False
        if pending.future.done():
            # caller stopped waiting (cancelled); nothing to deliver
            return True
        if envelope.error is not None:
            pending.future.set_exception(
                RemoteError(
                    f"Socket request {envelope.id} failed: {envelope.error}",
                    error=envelope.error,
                    request_id=envelope.id,
                )
            )
        else:
            pending.future.set_result(envelope.payload)
        return True

    def discard(self, request_id: int) -> None:
        """Drop ``request_id`` without settling it (e.g. transmission failed)."""
        pending = self._pop(request_id)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def reject_all(self, exc: BaseException) -> int:
        """Reject every pending request with ``exc``; return how many were rejected."""
        count = 0
        for request_id in list(self._pending):
            pending = self._pop(request_id)
            if pending is not None and not pending.future.done():
                pending.future.set_exception(exc)
                count += 1
        return count
