"""
Socket connection manager.

Owns the lifecycle of one persistent duplex connection and multiplexes
every send and receive over it:

* connect/disconnect with an explicit :class:`ConnectionState` machine;
* reconnection with bounded exponential backoff after an abnormal close
  or a failed connection attempt, ending in a single
  ``reconnect_failed`` event once ``max_reconnect_attempts`` is reached;
* an application-level heartbeat (``ping`` frames) that only runs while
  connected and is always stopped before it is (re)started;
* an outbound queue for fire-and-forget messages sent while disconnected,
  flushed in FIFO order right after the next successful open;
* request/response correlation through :class:`MessageCorrelator`;
* fan-out of server-pushed frames to the shared event bus and to
  type-specific handlers.

The handshake carries the current access token as a ``token`` query
parameter.  When the connection drops unexpectedly every pending
correlated request is rejected at once with
:class:`~netlayer.errors.ConnectionClosedError` instead of waiting for its
individual timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import SocketConfig
from ..errors import (
    ConnectionClosedError,
    NetlayerError,
    NetworkError,
    NotConnectedError,
    ProtocolError,
)
from ..models_events import PING, SUBSCRIBE, UNSUBSCRIBE, build_frame, encode_frame, parse_frame
from ..services.credential_store import CredentialStore
from ..services.event_bus import (
    CONNECT,
    DISCONNECT,
    ERROR,
    RECONNECT,
    RECONNECT_FAILED,
    STATE_CHANGE,
    EventBus,
)
from ..telemetry import SOCKET_CONNECTED, SOCKET_RECONNECTS
from .correlator import MessageCorrelator

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

ConnectFactory = Callable[[str], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    RECONNECTING = "reconnecting"


class SocketManager:
    """Maintain one reliable duplex connection and expose send/receive on top of it."""

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        config: Optional[SocketConfig] = None,
        *,
        event_bus: Optional[EventBus] = None,
        connect: Optional[ConnectFactory] = None,
    ) -> None:
        """
        :param credentials: Store providing the handshake token.
        :param config: Socket configuration; defaults to :class:`SocketConfig` ().
        :param event_bus: Bus receiving lifecycle events and server-pushed
            messages; shared with the HTTP client by the composition root.
        :param connect: Coroutine factory opening a connection for a URL.
            Defaults to ``websockets.connect``.
        """
        self.credentials = credentials if credentials is not None else CredentialStore()
        self.config = config or SocketConfig()
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self._connect = connect or websockets.connect
        self.correlator = MessageCorrelator()

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._connect_lock = asyncio.Lock()
        self._closing = False
        self._reconnect_attempts = 0
        self._terminal_emitted = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._queue: Deque[Dict[str, Any]] = deque()
        self._handlers = EventBus()
        self._channels: Set[str] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def pending_count(self) -> int:
        return len(self.correlator)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    @property
    def channels(self) -> Set[str]:
        return set(self._channels)

    def reconnect_delay(self, attempts: int) -> float:
        """Backoff before the retry that follows ``attempts`` failed retries."""
        delay = self.config.reconnect_interval * (self.config.reconnect_decay ** attempts)
        return min(delay, self.config.max_reconnect_interval)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        SOCKET_CONNECTED.set(1 if state is ConnectionState.CONNECTED else 0)
        logger.info("Socket state %s -> %s", previous.value, state.value)
        self.event_bus.emit(STATE_CHANGE, state)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _handshake_url(self) -> str:
        token = self.credentials.access_token
        if not token:
            return self.config.url
        parts = urlsplit(self.config.url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.append(("token", token))
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def connect(self) -> None:
        """Open the connection; a no-op if it is already open.

        Raises :class:`NetworkError` if the handshake fails.  A failed attempt
        also schedules a reconnection according to the backoff policy.
        """
        async with self._connect_lock:
            if self.is_connected and self._ws is not None:
                return
            self._cancel_reconnect()
            self._closing = False
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await asyncio.wait_for(
                    self._connect(self._handshake_url()),
                    timeout=self.config.connect_timeout,
                )
            except asyncio.CancelledError:
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except Exception as exc:
                logger.warning("Socket connection to %s failed: %s", self.config.url, exc)
                self._set_state(ConnectionState.DISCONNECTED)
                error = NetworkError(
                    f"Could not connect to {self.config.url}: {exc}",
                    details={"url": self.config.url},
                )
                self.event_bus.emit(ERROR, error)
                self._schedule_reconnect()
                raise error from exc
            if self._closing:
                # disconnect() was requested while the handshake was in flight
                await ws.close(code=NORMAL_CLOSURE, reason="Client disconnect")
                self._set_state(ConnectionState.DISCONNECTED)
                return
            self._ws = ws
            self._reader_task = asyncio.create_task(self._read_loop(ws))
            await self._on_open()

    async def _on_open(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self._reconnect_attempts = 0
        self._terminal_emitted = False
        logger.info("Socket connected to %s", self.config.url)
        self.event_bus.emit(CONNECT, None)
        self._start_heartbeat()
        await self._flush_queue()
        if self._channels:
            self._spawn(self._rejoin_channels())

    async def disconnect(self) -> None:
        """Close the connection deliberately; no reconnection is scheduled."""
        self._closing = True
        self._set_state(ConnectionState.DISCONNECTING)
        self._stop_heartbeat()
        self._cancel_reconnect()
        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE, reason="Client disconnect")
            except Exception as exc:
                logger.debug("Error while closing socket: %s", exc)
        self.correlator.reject_all(ConnectionClosedError("Socket disconnected by client"))
        self._channels.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self.event_bus.emit(DISCONNECT, {"code": NORMAL_CLOSURE, "reason": "Client disconnect"})

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_message(raw)
        except ConnectionClosed as exc:
            logger.debug("Socket read loop ended: %s", exc)
        except OSError as exc:
            logger.warning("Socket read failed: %s", exc)
        code = getattr(ws, "close_code", None)
        reason = getattr(ws, "close_reason", None) or ""
        if ws is self._ws:
            self._handle_close(ABNORMAL_CLOSURE if code is None else code, reason)

    def _handle_close(self, code: int, reason: str) -> None:
        self._stop_heartbeat()
        self._ws = None
        self._reader_task = None
        if self._state is ConnectionState.DISCONNECTING:
            return
        logger.warning("Socket closed (code=%s, reason=%r)", code, reason)
        self._set_state(ConnectionState.DISCONNECTED)
        self.event_bus.emit(DISCONNECT, {"code": code, "reason": reason})
        rejected = self.correlator.reject_all(
            ConnectionClosedError("Socket closed before a response arrived", details={"code": code})
        )
        if rejected:
            logger.info("Rejected %d pending socket request(s) after close", rejected)
        if code != NORMAL_CLOSURE:
            self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        max_attempts = self.config.max_reconnect_attempts
        if self._reconnect_attempts >= max_attempts:
            self._set_state(ConnectionState.DISCONNECTED)
            if not self._terminal_emitted:
                self._terminal_emitted = True
                logger.error("Giving up on socket after %d reconnect attempts", self._reconnect_attempts)
                self.event_bus.emit(
                    RECONNECT_FAILED,
                    {"attempts": self._reconnect_attempts, "message": "Max reconnect attempts reached"},
                )
                self.event_bus.emit(
                    ERROR,
                    NetworkError(
                        "Max reconnect attempts reached",
                        details={"attempts": self._reconnect_attempts},
                    ),
                )
            return
        delay = self.reconnect_delay(self._reconnect_attempts)
        self._set_state(ConnectionState.RECONNECTING)
        SOCKET_RECONNECTS.inc()
        logger.warning(
            "Reconnecting in %.2fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts + 1,
            max_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_attempts += 1
        self.event_bus.emit(RECONNECT, {"attempt": self._reconnect_attempts, "delay": delay})
        try:
            await self.connect()
        except NetworkError:
            # connect() has already scheduled the next attempt
            pass

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while self.is_connected:
            await asyncio.sleep(self.config.heartbeat_interval)
            if not self.is_connected:
                break
            try:
                await self._transmit(build_frame(PING))
            except NetworkError as exc:
                logger.debug("Heartbeat failed: %s", exc)
                break

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _transmit(self, frame: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise NotConnectedError("Socket is not connected")
        try:
            await ws.send(encode_frame(frame))
        except (ConnectionClosed, OSError) as exc:
            raise ConnectionClosedError(f"Socket send failed: {exc}") from exc
        logger.debug("Socket sent %s", frame.get("type"))

    async def _flush_queue(self) -> None:
        while self._queue and self.is_connected:
            frame = self._queue[0]
            try:
                await self._transmit(frame)
            except NetworkError as exc:
                logger.warning("Stopped flushing %d queued message(s): %s", len(self._queue), exc)
                return
            self._queue.popleft()

    async def send(
        self,
        type: str,
        payload: Any = None,
        *,
        expect_response: bool = False,
        timeout: Optional[float] = None,
        queue_if_disconnected: bool = True,
    ) -> Any:
        """Send a ``{type, payload}`` frame.

        Fire-and-forget sends (the default) are transmitted immediately when
        connected, otherwise queued (or dropped when ``queue_if_disconnected``
        is false).  With ``expect_response`` the frame carries a fresh id and
        the call returns the payload of the matching response, raising
        :class:`RemoteError` if it carries an error, or
        :class:`RequestTimeoutError` after ``timeout`` seconds (default
        ``message_timeout``).  Correlated sends are never queued: they raise
        :class:`NotConnectedError` when the socket is not open.
        """
        if expect_response:
            if not self.is_connected:
                raise NotConnectedError(f"Cannot send {type!r}: socket is not connected")
            request_id = self.correlator.next_id()
            wait = timeout if timeout is not None else self.config.message_timeout
            future = self.correlator.register(request_id, wait)
            try:
                await self._transmit(build_frame(type, payload, id=request_id))
                return await future
            finally:
                self.correlator.discard(request_id)

        frame = build_frame(type, payload)
        if self.is_connected:
            if self._queue:
                # a flush is in progress; keep FIFO order behind it
                self._queue.append(frame)
                return None
            try:
                await self._transmit(frame)
                return None
            except NetworkError:
                if not queue_if_disconnected:
                    raise
        if queue_if_disconnected:
            self._queue.append(frame)
            logger.debug("Queued %r until the socket reconnects (%d queued)", type, len(self._queue))
        else:
            logger.debug("Dropped %r: socket is not connected", type)
        return None

    async def subscribe(self, channel: str, *, timeout: Optional[float] = None) -> Any:
        """Join ``channel`` and wait for the server's confirmation."""
        result = await self.send(SUBSCRIBE, {"channel": channel}, expect_response=True, timeout=timeout)
        self._channels.add(channel)
        return result

    async def unsubscribe(self, channel: str, *, timeout: Optional[float] = None) -> Any:
        """Leave ``channel`` and wait for the server's confirmation."""
        result = await self.send(UNSUBSCRIBE, {"channel": channel}, expect_response=True, timeout=timeout)
        self._channels.discard(channel)
        return result

    async def _rejoin_channels(self) -> None:
        for channel in sorted(self._channels):
            try:
                await self.subscribe(channel)
            except NetlayerError as exc:
                logger.warning("Failed to rejoin channel %r: %s", channel, exc)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_message(self, raw: Any) -> None:
        try:
            envelope = parse_frame(raw)
        except ProtocolError as exc:
            logger.warning("Dropping malformed socket frame: %s", exc)
            return
        if envelope.is_heartbeat_reply:
            return
        if envelope.id is not None and self.correlator.settle(envelope):
            return
        logger.debug("Socket received %s", envelope.type)
        self.event_bus.emit(envelope.type, envelope.payload)
        self._handlers.emit(envelope.type, envelope.payload)

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Listen for a lifecycle event or server-pushed message type on the shared bus."""
        return self.event_bus.on(event, callback)

    def off(self, event: str, callback: Callable[[Any], Any]) -> None:
        self.event_bus.off(event, callback)

    def on_message(self, type: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        """Register a handler for server-pushed frames of ``type`` only."""
        return self._handlers.on(type, handler)

    def off_message(self, type: str, handler: Callable[[Any], Any]) -> None:
        self._handlers.off(type, handler)
