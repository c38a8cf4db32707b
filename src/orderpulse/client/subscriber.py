"""Reconnecting subscriber — the client's one logical connection to /ws.

Learn: This is a small state machine wrapped around a Transport:

  idle → connecting → connected → disconnected → reconnecting → connecting …
                    ↘ reconnecting (connect failed, backoff)
                    ↘ failed (attempt ceiling reached, no more auto-retry)
  any → closed (only via disconnect())

Reconnect timing:
- Connect failure: wait base_delay * 2**attempts (2, 4, 8, 16, 32 s with
  the defaults), then try again. When the counter has reached
  max_reconnect_attempts the subscriber goes to `failed` and emits
  `connection_failed` instead of scheduling another try.
- Server closed the socket: one immediate reconnect (delay 0).
- Network drop: same backoff path as a connect failure.

Running out of retries is never raised from connect(): the ceiling is hit
inside a timer callback, so it is reported through the connection_failed
event (a SubscriberConnectionError) and the last_error attribute.

After every transition to `connected` the subscriber authenticates (when
it has an identity) and re-joins every order room it was asked to watch,
so detail views survive reconnects. Typing notices are NOT queued: sent
while disconnected, they're dropped.

Consumers register with `on(message_type, handler)`. Server messages are
parsed into the wire models before dispatch; three pseudo-types carry
connection telemetry: connection_state, connection_failed, latency_update.

Timers go through an injectable scheduler(delay, coro_fn) → handle with
.cancel(), so tests can drive backoff without sleeping.
"""

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Protocol

import structlog
from pydantic import TypeAdapter, ValidationError

from orderpulse.client.transport import (
    Transport,
    TransportClosed,
    TransportError,
    WebSocketTransport,
)
from orderpulse.config import settings
from orderpulse.schemas.realtime import (
    AUTHENTICATE,
    BULK_ORDER_UPDATE,
    EMERGENCY_NOTIFICATION,
    JOIN_ORDER_ROOM,
    LEAVE_ORDER_ROOM,
    METRICS_UPDATE,
    NOTIFICATION,
    ORDER_DETAIL_UPDATE,
    ORDER_UPDATE,
    PING,
    PONG,
    SYSTEM_STATS,
    TYPING_START,
    TYPING_STOP,
    USER_STOPPED_TYPING,
    USER_TYPING,
    Authenticate,
    EmergencyNotification,
    MetricsUpdate,
    NotificationMessage,
    OrderDetailUpdate,
    OrderRoomRequest,
    OrderUpdate,
    Pong,
    SystemStats,
    TypingStart,
    TypingStop,
    UserStoppedTyping,
    UserTyping,
    envelope,
)

logger = structlog.get_logger()

# Pseudo message types for connection telemetry
CONNECTION_STATE = "connection_state"
CONNECTION_FAILED = "connection_failed"
LATENCY_UPDATE = "latency_update"


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


class SubscriberConnectionError(Exception):
    """The subscriber gave up reconnecting."""


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], Awaitable[None]]], TimerHandle]
TransportFactory = Callable[[str], Awaitable[Transport]]
Handler = Callable[[Any], None]


class _LoopTimer:
    """Default scheduler handle: call_later that spawns the coroutine."""

    def __init__(self, delay: float, coro_fn: Callable[[], Awaitable[None]]):
        loop = asyncio.get_running_loop()
        self._task: Optional[asyncio.Future] = None
        self._handle = loop.call_later(delay, self._fire, coro_fn)

    def _fire(self, coro_fn: Callable[[], Awaitable[None]]) -> None:
        self._task = asyncio.ensure_future(coro_fn())

    def cancel(self) -> None:
        self._handle.cancel()


# ─── Inbound parsing ─────────────────────────────────────

INBOUND_MODELS: dict[str, TypeAdapter] = {
    ORDER_UPDATE: TypeAdapter(OrderUpdate),
    ORDER_DETAIL_UPDATE: TypeAdapter(OrderDetailUpdate),
    BULK_ORDER_UPDATE: TypeAdapter(list[OrderUpdate]),
    NOTIFICATION: TypeAdapter(NotificationMessage),
    SYSTEM_STATS: TypeAdapter(SystemStats),
    METRICS_UPDATE: TypeAdapter(MetricsUpdate),
    EMERGENCY_NOTIFICATION: TypeAdapter(EmergencyNotification),
    USER_TYPING: TypeAdapter(UserTyping),
    USER_STOPPED_TYPING: TypeAdapter(UserStoppedTyping),
    PONG: TypeAdapter(Pong),
}


def parse_message(message_type: str, data: Any) -> Any:
    """Validate a payload into its wire model; unknown types pass through raw."""
    adapter = INBOUND_MODELS.get(message_type)
    if adapter is None:
        return data
    return adapter.validate_python(data)


class ReconnectingSubscriber:
    """Owns one logical connection, reconnecting with exponential backoff."""

    def __init__(
        self,
        url: Optional[str] = None,
        user_id: Optional[str] = None,
        name: Optional[str] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        base_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url or settings.ws_url
        self.user_id = user_id
        self.name = name
        self._transport_factory = transport_factory or WebSocketTransport.connect
        self._scheduler = scheduler or _LoopTimer
        self.base_delay = settings.reconnect_base_delay if base_delay is None else base_delay
        self.max_attempts = (
            settings.max_reconnect_attempts if max_attempts is None else max_attempts
        )
        self.heartbeat_interval = (
            settings.heartbeat_interval if heartbeat_interval is None else heartbeat_interval
        )
        self._clock = clock

        self._state = ConnectionState.IDLE
        self._attempts = 0
        self._transport: Optional[Transport] = None
        self._timer: Optional[TimerHandle] = None
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._ping_sent_at: Optional[float] = None
        self._settled = asyncio.Event()

        self.last_error: Optional[Exception] = None
        self.latency: Optional[float] = None  # ms, from the last ping/pong
        self._rooms: dict[str, None] = {}  # desired order rooms, join order
        self._handlers: dict[str, list[Handler]] = {}

    # ─── Introspection ───────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def rooms(self) -> list[str]:
        return list(self._rooms)

    # ─── Event surface ───────────────────────────────────

    def on(self, message_type: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a function that unregisters it."""
        self._handlers.setdefault(message_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(message_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def _emit(self, message_type: str, payload: Any) -> None:
        for handler in list(self._handlers.get(message_type, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("subscriber.handler_failed", type=message_type)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("subscriber.state", previous=self._state.value, state=state.value)
        self._state = state
        if state in (ConnectionState.CONNECTED, ConnectionState.FAILED, ConnectionState.CLOSED):
            self._settled.set()
        else:
            self._settled.clear()
        self._emit(CONNECTION_STATE, state)

    # ─── Lifecycle ───────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection. No-op while connecting or connected."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        if self._state in (ConnectionState.FAILED, ConnectionState.CLOSED):
            self._attempts = 0
        self._cancel_timer()
        self._set_state(ConnectionState.CONNECTING)

        try:
            transport = await self._transport_factory(self.url)
        except TransportError as e:
            if self._state is ConnectionState.CONNECTING:
                logger.warning("subscriber.connect_failed", error=str(e), attempts=self._attempts)
                self._retry_later(e)
            return

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the transport was opening
            await transport.close()
            return

        self._transport = transport
        self._attempts = 0
        self.last_error = None
        self._set_state(ConnectionState.CONNECTED)
        logger.info("subscriber.connected", url=self.url)

        if self.user_id and self.name:
            await self._send(AUTHENTICATE, Authenticate(user_id=self.user_id, name=self.name))
        for order_id in list(self._rooms):
            await self._send(JOIN_ORDER_ROOM, OrderRoomRequest(order_id=order_id))

        if self._transport is transport:
            self._reader = asyncio.create_task(self._read_loop(transport))
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def disconnect(self) -> None:
        """Stop for good: cancel retries, close the transport, reset attempts."""
        self._cancel_timer()
        transport = self._transport
        self._teardown()
        self._attempts = 0
        self._set_state(ConnectionState.CLOSED)
        if transport is not None:
            await transport.close()
        logger.info("subscriber.closed")

    async def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until connected, failed or closed. True only if connected."""
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_connected

    async def __aenter__(self) -> "ReconnectingSubscriber":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    def _retry_later(self, error: Exception) -> None:
        self.last_error = error
        if self._attempts >= self.max_attempts:
            failure = SubscriberConnectionError(
                f"Could not connect to {self.url} after {self._attempts} retries"
            )
            failure.__cause__ = error
            self._set_state(ConnectionState.FAILED)
            logger.error("subscriber.failed", attempts=self._attempts, error=str(error))
            self._emit(CONNECTION_FAILED, failure)
            return

        delay = self.base_delay * 2 ** self._attempts
        self._attempts += 1
        self._set_state(ConnectionState.RECONNECTING)
        logger.info("subscriber.retry_scheduled", delay=delay, attempt=self._attempts)
        self._timer = self._scheduler(delay, self.connect)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _teardown(self) -> None:
        current = asyncio.current_task()
        for task in (self._reader, self._heartbeat):
            if task is not None and task is not current:
                task.cancel()
        self._reader = None
        self._heartbeat = None
        self._transport = None
        self._ping_sent_at = None

    async def _on_transport_closed(self, transport: Transport, closed: TransportClosed) -> None:
        if transport is not self._transport or self._state is not ConnectionState.CONNECTED:
            return
        self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("subscriber.disconnected", reason=closed.reason, remote=closed.remote)

        if closed.remote:
            self.last_error = closed
            self._set_state(ConnectionState.RECONNECTING)
            self._timer = self._scheduler(0.0, self.connect)
        else:
            self._retry_later(closed)

    # ─── Background loops ────────────────────────────────

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                message = await transport.receive()
                self._dispatch(message)
        except TransportClosed as e:
            await self._on_transport_closed(transport, e)
        except Exception as e:
            # A dead reader must not leave the state at connected
            logger.exception("subscriber.reader_crashed")
            await self._on_transport_closed(transport, TransportClosed(str(e) or type(e).__name__))

    def _dispatch(self, message: dict[str, Any]) -> None:
        message_type = message.get("type")
        if not isinstance(message_type, str):
            return
        try:
            payload = parse_message(message_type, message.get("data"))
        except ValidationError as e:
            logger.debug("subscriber.invalid_payload", type=message_type, errors=e.error_count())
            return

        if message_type == PONG:
            self._record_pong()
        self._emit(message_type, payload)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.send_ping()

    def _record_pong(self) -> None:
        if self._ping_sent_at is None:
            return
        self.latency = (self._clock() - self._ping_sent_at) * 1000
        self._ping_sent_at = None
        self._emit(LATENCY_UPDATE, self.latency)

    # ─── Outbound ────────────────────────────────────────

    async def _send(self, message_type: str, data: Any = None) -> bool:
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None:
            return False
        try:
            await transport.send(envelope(message_type, data))
        except TransportClosed:
            # The read loop sees the same close and drives the state change
            logger.debug("subscriber.send_dropped", type=message_type)
            return False
        return True

    async def send_ping(self) -> bool:
        sent_at = self._clock()
        if not await self._send(PING):
            return False
        self._ping_sent_at = sent_at
        return True

    async def join_order_room(self, order_id: str) -> bool:
        """Watch an order's detail room, now and after every reconnect."""
        self._rooms[order_id] = None
        return await self._send(JOIN_ORDER_ROOM, OrderRoomRequest(order_id=order_id))

    async def leave_order_room(self, order_id: str) -> bool:
        self._rooms.pop(order_id, None)
        return await self._send(LEAVE_ORDER_ROOM, OrderRoomRequest(order_id=order_id))

    async def send_typing_start(self, order_id: str) -> bool:
        user_name = self.name or "Anonymous"
        return await self._send(TYPING_START, TypingStart(order_id=order_id, user_name=user_name))

    async def send_typing_stop(self, order_id: str) -> bool:
        return await self._send(TYPING_STOP, TypingStop(order_id=order_id))
