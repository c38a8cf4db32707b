"""Pydantic schemas for real-time wire messages.

Learn: Every frame on the socket is a JSON envelope
{"type": "<message type>", "data": <payload>}. Payload field names are
camelCase on the wire (orderId, customerName) because browsers consume
them directly; in Python they stay snake_case via an alias generator.

Both sides import these: the server builds them in the Broadcaster, the
client parses them in the ReconnectingSubscriber.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ─── Message types: client → server ──────────────────────

AUTHENTICATE = "authenticate"
JOIN_ORDER_ROOM = "join_order_room"
LEAVE_ORDER_ROOM = "leave_order_room"
TYPING_START = "typing_start"
TYPING_STOP = "typing_stop"
PING = "ping"

# ─── Message types: server → client ──────────────────────

ORDER_UPDATE = "order_update"
ORDER_DETAIL_UPDATE = "order_detail_update"
BULK_ORDER_UPDATE = "bulk_order_update"
NOTIFICATION = "notification"
SYSTEM_STATS = "system_stats"
METRICS_UPDATE = "metrics_update"
EMERGENCY_NOTIFICATION = "emergency_notification"
USER_TYPING = "user_typing"
USER_STOPPED_TYPING = "user_stopped_typing"
PONG = "pong"

# ─── Rooms ───────────────────────────────────────────────

AUTHENTICATED_ROOM = "authenticated_users"


def order_room(order_id: str) -> str:
    """Room of connections watching one order's detail view."""
    return f"order_{order_id}"


def envelope(message_type: str, data: Any = None) -> dict[str, Any]:
    """Wrap a payload in the wire envelope, dumping models by alias."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [
            item.model_dump(mode="json", by_alias=True)
            if isinstance(item, BaseModel) else item
            for item in data
        ]
    return {"type": message_type, "data": data}


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Client → server ─────────────────────────────────────


class Authenticate(WireModel):
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class OrderRoomRequest(WireModel):
    order_id: str = Field(..., min_length=1)


class TypingStart(WireModel):
    order_id: str = Field(..., min_length=1)
    user_name: str


class TypingStop(WireModel):
    order_id: str = Field(..., min_length=1)


# ─── Server → client ─────────────────────────────────────


class OrderUpdate(WireModel):
    """One order change. status/customer_name/amount are None for deletes."""
    order_id: str
    status: Optional[str] = None
    customer_name: Optional[str] = None
    timestamp: datetime
    amount: Optional[float] = None
    type: str  # created | updated | deleted | status_changed


class OrderDetailUpdate(OrderUpdate):
    detailed_info: bool = True


class NotificationMessage(WireModel):
    id: str
    title: str
    message: str
    type: str = Field(..., pattern=r"^(success|warning|error|info)$")
    timestamp: datetime
    user_id: Optional[str] = None
    order_id: Optional[str] = None


class EmergencyNotification(NotificationMessage):
    emergency_type: str = Field(..., pattern=r"^(maintenance|alert|update)$")


class SystemStats(WireModel):
    connected_users: int
    total_sessions: int
    server_uptime: float
    timestamp: datetime


class MetricsUpdate(WireModel):
    """Order metrics snapshot. Extra metric keys pass through untouched."""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )

    timestamp: datetime


class UserTyping(WireModel):
    order_id: str
    user_name: str
    timestamp: datetime


class UserStoppedTyping(WireModel):
    order_id: str


class Pong(WireModel):
    timestamp: datetime
    server_time: float  # epoch milliseconds
