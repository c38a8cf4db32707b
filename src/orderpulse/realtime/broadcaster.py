"""Broadcaster — turns one bus event into pushes to concrete connections.

Learn: Fan-out is best-effort, at-most-once. For a single-order event:
1. order_update → every member of the authenticated room
2. order_detail_update → members of order_<id> (the detail-view watchers)
3. notification (synthesized, human readable) → the authenticated room

A bulk status change goes out as ONE bulk_order_update array, not N
order_update messages — clients handle both forms.

Recipients are resolved from the registry once, when the call starts; a
connection that joins mid-broadcast misses the event. A dead socket is
skipped silently — one bad recipient never raises to the caller and never
stops delivery to the others. No queue, no retry: a client that was
offline when an event went out never sees it (it refetches via the API).
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from orderpulse.events.types import (
    ORDER_CREATED,
    ORDER_DELETED,
    BusEvent,
    MetricsTick,
    OrderCreated,
    OrderDeleted,
    OrdersBulkUpdated,
    OrderStatusChanged,
    OrderUpdated,
)
from orderpulse.realtime.registry import ConnectionRegistry
from orderpulse.schemas.realtime import (
    AUTHENTICATED_ROOM,
    BULK_ORDER_UPDATE,
    EMERGENCY_NOTIFICATION,
    METRICS_UPDATE,
    NOTIFICATION,
    ORDER_DETAIL_UPDATE,
    ORDER_UPDATE,
    SYSTEM_STATS,
    EmergencyNotification,
    MetricsUpdate,
    NotificationMessage,
    OrderDetailUpdate,
    OrderUpdate,
    SystemStats,
    envelope,
    order_room,
)

logger = structlog.get_logger()

# Notification severity per event kind; anything unlisted is "info"
_SEVERITY: dict[str, str] = {
    ORDER_CREATED: "success",
    ORDER_DELETED: "warning",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def order_update_from_event(
    event: OrderCreated | OrderUpdated | OrderStatusChanged | OrderDeleted,
) -> OrderUpdate:
    """Project a single-order event onto the order_update wire shape."""
    if isinstance(event, OrderDeleted):
        return OrderUpdate(
            order_id=event.order_id,
            timestamp=event.timestamp,
            type=event.kind,
        )
    return OrderUpdate(
        order_id=event.order_id,
        status=event.status,
        customer_name=event.customer_name,
        timestamp=event.timestamp,
        amount=event.amount,
        type=event.kind,
    )


def notification_for(
    event: OrderCreated | OrderUpdated | OrderStatusChanged | OrderDeleted,
) -> NotificationMessage:
    """Synthesize the human-readable notification for an order event."""
    words = event.kind.replace("_", " ")
    short_id = event.order_id.split("-")[0]
    return NotificationMessage(
        id=str(uuid.uuid4()),
        title=f"Order {words.upper()}",
        message=f"Order {short_id}... has been {words}",
        type=_SEVERITY.get(event.kind, "info"),
        timestamp=_now(),
        order_id=event.order_id,
    )


class Broadcaster:
    """Fans bus events out to rooms resolved through the ConnectionRegistry."""

    def __init__(self, registry: ConnectionRegistry, started_at: Optional[float] = None):
        self.registry = registry
        self._started_at = time.monotonic() if started_at is None else started_at

        # Every bus event class is listed here
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            OrderCreated: self._publish_order_event,
            OrderUpdated: self._publish_order_event,
            OrderStatusChanged: self._publish_order_event,
            OrderDeleted: self._publish_order_event,
            OrdersBulkUpdated: self._publish_bulk,
            MetricsTick: self._publish_metrics,
        }

    # ─── Entry point ─────────────────────────────────────

    async def publish(self, event: BusEvent) -> None:
        """Fan one bus event out. Raises TypeError for a non-event."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Broadcaster cannot publish {type(event).__name__}")
        await handler(event)

    # ─── Per-kind handlers ───────────────────────────────

    async def _publish_order_event(
        self,
        event: OrderCreated | OrderUpdated | OrderStatusChanged | OrderDeleted,
    ) -> None:
        # Resolve both target sets before the first await
        authenticated = self.registry.members_of(AUTHENTICATED_ROOM)
        watchers = self.registry.members_of(order_room(event.order_id))

        update = order_update_from_event(event)
        detail = OrderDetailUpdate.model_validate(
            {**update.model_dump(), "detailed_info": True}
        )

        logger.info(
            "broadcast.order_update",
            order_id=event.order_id,
            kind=event.kind,
            recipients=len(authenticated),
            watchers=len(watchers),
        )
        await self._push(authenticated, envelope(ORDER_UPDATE, update))
        await self._push(watchers, envelope(ORDER_DETAIL_UPDATE, detail))
        await self._push(authenticated, envelope(NOTIFICATION, notification_for(event)))

    async def _publish_bulk(self, event: OrdersBulkUpdated) -> None:
        authenticated = self.registry.members_of(AUTHENTICATED_ROOM)
        updates = [order_update_from_event(u) for u in event.updates]

        logger.info(
            "broadcast.bulk_order_update",
            count=len(updates),
            recipients=len(authenticated),
        )
        await self._push(authenticated, envelope(BULK_ORDER_UPDATE, updates))
        if updates:
            summary = NotificationMessage(
                id=str(uuid.uuid4()),
                title="Bulk Update",
                message=f"{len(updates)} orders updated",
                type="info",
                timestamp=_now(),
            )
            await self._push(authenticated, envelope(NOTIFICATION, summary))

    async def _publish_metrics(self, event: MetricsTick) -> None:
        authenticated = self.registry.members_of(AUTHENTICATED_ROOM)
        metrics = MetricsUpdate.model_validate(
            {**event.metrics, "timestamp": event.timestamp}
        )
        await self._push(authenticated, envelope(METRICS_UPDATE, metrics))

    # ─── Targeted sends ──────────────────────────────────

    async def broadcast_notification(self, notification: NotificationMessage) -> int:
        """Push a notification to every authenticated connection."""
        logger.info("broadcast.notification", title=notification.title)
        return await self._push(
            self.registry.members_of(AUTHENTICATED_ROOM),
            envelope(NOTIFICATION, notification),
        )

    async def send_notification(
        self, connection_id: str, notification: NotificationMessage
    ) -> bool:
        """Push a notification to one connection. False if it's gone."""
        return await self._push([connection_id], envelope(NOTIFICATION, notification)) == 1

    async def send_system_stats(self, connection_id: str) -> bool:
        return await self._push([connection_id], envelope(SYSTEM_STATS, self.stats())) == 1

    async def emergency_broadcast(self, message: str, emergency_type: str) -> int:
        """Alert EVERY connection, authenticated or not."""
        notification = EmergencyNotification(
            id=str(uuid.uuid4()),
            title="System Alert",
            message=message,
            type="warning",
            timestamp=_now(),
            emergency_type=emergency_type,
        )
        recipients = self.registry.connection_ids()
        logger.warning(
            "broadcast.emergency",
            emergency_type=emergency_type,
            recipients=len(recipients),
        )
        return await self._push(recipients, envelope(EMERGENCY_NOTIFICATION, notification))

    async def relay_to_room(
        self,
        room: str,
        message: dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        """Push a raw envelope to a room, optionally skipping the sender."""
        members = self.registry.members_of(room)
        return await self._push((m for m in members if m != exclude), message)

    def stats(self) -> SystemStats:
        return SystemStats(
            connected_users=self.registry.authenticated_count,
            total_sessions=len(self.registry),
            server_uptime=round(time.monotonic() - self._started_at, 3),
            timestamp=_now(),
        )

    # ─── Delivery ────────────────────────────────────────

    async def _push(self, connection_ids: Iterable[str], message: dict[str, Any]) -> int:
        """Send to each connection concurrently. Returns how many succeeded."""
        deliveries = []
        for connection_id in connection_ids:
            channel = self.registry.channel_for(connection_id)
            if channel is not None:
                deliveries.append(self._deliver(connection_id, channel, message))
        if not deliveries:
            return 0
        results = await asyncio.gather(*deliveries)
        return sum(results)

    async def _deliver(self, connection_id: str, channel: Any, message: dict[str, Any]) -> bool:
        try:
            await channel.send_json(message)
            return True
        except Exception as e:
            # Closed socket: drop this recipient
            logger.debug(
                "broadcast.delivery_dropped",
                connection_id=connection_id,
                type=message.get("type"),
                error=str(e),
            )
            return False
