"""WebSocket endpoint — real-time order events to dashboard clients.

Learn: Each browser tab holds one connection to /ws. The handler:
1. Accepts and registers the connection under a fresh id (anonymous)
2. Reads client frames and dispatches them through CLIENT_HANDLERS
3. Unregisters the connection exactly once, whatever closed it

Outbound pushes don't happen here — the Broadcaster writes to the socket
it finds in the registry. This handler only reacts to what the client sends:

  authenticate      → join authenticated room, welcome + system_stats
  join_order_room   → join order_<id>
  leave_order_room  → leave order_<id>
  typing_start/stop → relay user_typing / user_stopped_typing to the room
  ping              → pong

Malformed frames are logged and ignored; they never close the socket.
"""

import json
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from orderpulse.realtime.broadcaster import Broadcaster
from orderpulse.realtime.registry import ConnectionRegistry
from orderpulse.schemas.realtime import (
    AUTHENTICATE,
    JOIN_ORDER_ROOM,
    LEAVE_ORDER_ROOM,
    PING,
    PONG,
    TYPING_START,
    TYPING_STOP,
    USER_STOPPED_TYPING,
    USER_TYPING,
    Authenticate,
    NotificationMessage,
    OrderRoomRequest,
    Pong,
    TypingStart,
    TypingStop,
    UserStoppedTyping,
    UserTyping,
    envelope,
    order_room,
)

logger = structlog.get_logger()
router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClientConnection:
    """Per-socket context handed to each client message handler."""

    def __init__(
        self,
        connection_id: str,
        websocket: WebSocket,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
    ):
        self.connection_id = connection_id
        self.websocket = websocket
        self.registry = registry
        self.broadcaster = broadcaster
        self.log = logger.bind(connection_id=connection_id)


# ─── Client message handlers ─────────────────────────────


async def _on_authenticate(conn: ClientConnection, data: Any) -> None:
    body = Authenticate.model_validate(data)
    conn.registry.authenticate(conn.connection_id, body.user_id, body.name)
    conn.log.info("realtime.authenticated", user_id=body.user_id, name=body.name)

    welcome = NotificationMessage(
        id=str(uuid.uuid4()),
        title="Connected Successfully",
        message=f"Welcome back, {body.name}! You're now receiving real-time updates.",
        type="success",
        timestamp=_now(),
        user_id=body.user_id,
    )
    await conn.broadcaster.send_notification(conn.connection_id, welcome)
    await conn.broadcaster.send_system_stats(conn.connection_id)


async def _on_join_order_room(conn: ClientConnection, data: Any) -> None:
    body = OrderRoomRequest.model_validate(data)
    conn.registry.join_room(conn.connection_id, order_room(body.order_id))
    conn.log.debug("realtime.joined_order_room", order_id=body.order_id)


async def _on_leave_order_room(conn: ClientConnection, data: Any) -> None:
    body = OrderRoomRequest.model_validate(data)
    conn.registry.leave_room(conn.connection_id, order_room(body.order_id))
    conn.log.debug("realtime.left_order_room", order_id=body.order_id)


async def _on_typing_start(conn: ClientConnection, data: Any) -> None:
    body = TypingStart.model_validate(data)
    typing = UserTyping(order_id=body.order_id, user_name=body.user_name, timestamp=_now())
    await conn.broadcaster.relay_to_room(
        order_room(body.order_id),
        envelope(USER_TYPING, typing),
        exclude=conn.connection_id,
    )


async def _on_typing_stop(conn: ClientConnection, data: Any) -> None:
    body = TypingStop.model_validate(data)
    await conn.broadcaster.relay_to_room(
        order_room(body.order_id),
        envelope(USER_STOPPED_TYPING, UserStoppedTyping(order_id=body.order_id)),
        exclude=conn.connection_id,
    )


async def _on_ping(conn: ClientConnection, data: Any) -> None:
    pong = Pong(timestamp=_now(), server_time=time.time() * 1000)
    await conn.websocket.send_json(envelope(PONG, pong))


CLIENT_HANDLERS: dict[str, Callable[[ClientConnection, Any], Awaitable[None]]] = {
    AUTHENTICATE: _on_authenticate,
    JOIN_ORDER_ROOM: _on_join_order_room,
    LEAVE_ORDER_ROOM: _on_leave_order_room,
    TYPING_START: _on_typing_start,
    TYPING_STOP: _on_typing_stop,
    PING: _on_ping,
}


async def handle_client_message(conn: ClientConnection, raw: str) -> None:
    """Parse one client frame and run its handler. Bad frames are dropped."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        conn.log.debug("realtime.invalid_json")
        return
    if not isinstance(msg, dict):
        conn.log.debug("realtime.invalid_frame")
        return

    message_type = msg.get("type")
    handler = CLIENT_HANDLERS.get(message_type)
    if handler is None:
        conn.log.debug("realtime.unknown_message", type=message_type)
        return

    try:
        await handler(conn, msg.get("data"))
    except ValidationError as e:
        conn.log.debug(
            "realtime.invalid_payload",
            type=message_type,
            errors=e.error_count(),
        )


@router.websocket("/ws")
async def order_events(websocket: WebSocket):
    """WebSocket endpoint for real-time order events.

    Learn: Registration happens before the first await on the socket and
    unregistration in `finally`, so the registry never holds a connection
    whose handler has exited — whatever the close reason.
    """
    container = websocket.app.state.container
    registry: ConnectionRegistry = container.registry
    broadcaster: Broadcaster = container.broadcaster

    await websocket.accept()

    connection_id = uuid.uuid4().hex
    registry.register(connection_id, websocket)
    conn = ClientConnection(connection_id, websocket, registry, broadcaster)
    conn.log.info("realtime.client_connected", connections=len(registry))

    reason = "server shutdown"
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_client_message(conn, raw)
    except WebSocketDisconnect as e:
        reason = f"client disconnect ({e.code})"
    finally:
        registry.unregister(connection_id)
        conn.log.info(
            "realtime.client_disconnected",
            reason=reason,
            connections=len(registry),
        )
