"""Live feed — what a dashboard shows from the pushed event stream.

Learn: The subscriber only dispatches; something has to remember. LiveFeed
registers on a ReconnectingSubscriber and keeps:
- notifications (plain + emergency), newest first, capped (100 default)
- order updates, newest first, capped (50 default). A bulk_order_update
  array is expanded into one entry per order
- the latest order_detail_update per order
- the latest system_stats and metrics_update snapshots
- who's typing on which order

Both capped lists live in BoundedExpiringCache, so old entries also age out
after the cache TTL even when the cap isn't hit.
"""

import itertools
import time
from collections.abc import Callable
from typing import Optional, Union

from orderpulse.client.cache import BoundedExpiringCache
from orderpulse.client.subscriber import ReconnectingSubscriber
from orderpulse.config import settings
from orderpulse.schemas.realtime import (
    BULK_ORDER_UPDATE,
    EMERGENCY_NOTIFICATION,
    METRICS_UPDATE,
    NOTIFICATION,
    ORDER_DETAIL_UPDATE,
    ORDER_UPDATE,
    SYSTEM_STATS,
    USER_STOPPED_TYPING,
    USER_TYPING,
    EmergencyNotification,
    MetricsUpdate,
    NotificationMessage,
    OrderDetailUpdate,
    OrderUpdate,
    SystemStats,
    UserStoppedTyping,
    UserTyping,
)

AnyNotification = Union[NotificationMessage, EmergencyNotification]


class LiveFeed:
    def __init__(
        self,
        subscriber: ReconnectingSubscriber,
        notification_limit: Optional[int] = None,
        update_limit: Optional[int] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        ttl = float(settings.cache_ttl_seconds) if ttl is None else ttl
        self.notifications_cache: BoundedExpiringCache[AnyNotification] = BoundedExpiringCache(
            max_size=notification_limit or settings.notification_buffer, ttl=ttl, clock=clock,
        )
        self.updates_cache: BoundedExpiringCache[OrderUpdate] = BoundedExpiringCache(
            max_size=update_limit or settings.order_update_buffer, ttl=ttl, clock=clock,
        )
        self.order_details: dict[str, OrderDetailUpdate] = {}
        self.system_stats: Optional[SystemStats] = None
        self.metrics: Optional[MetricsUpdate] = None
        self.typing: dict[str, set[str]] = {}
        self._seq = itertools.count()

        self._unsubscribers = [
            subscriber.on(ORDER_UPDATE, self._on_order_update),
            subscriber.on(BULK_ORDER_UPDATE, self._on_bulk_update),
            subscriber.on(ORDER_DETAIL_UPDATE, self._on_detail_update),
            subscriber.on(NOTIFICATION, self._on_notification),
            subscriber.on(EMERGENCY_NOTIFICATION, self._on_notification),
            subscriber.on(SYSTEM_STATS, self._on_system_stats),
            subscriber.on(METRICS_UPDATE, self._on_metrics),
            subscriber.on(USER_TYPING, self._on_user_typing),
            subscriber.on(USER_STOPPED_TYPING, self._on_user_stopped_typing),
        ]

    # ─── Views ───────────────────────────────────────────

    @property
    def notifications(self) -> list[AnyNotification]:
        """Newest first."""
        return [value for _, value in reversed(self.notifications_cache.items())]

    @property
    def order_updates(self) -> list[OrderUpdate]:
        """Newest first."""
        return [value for _, value in reversed(self.updates_cache.items())]

    def typing_users(self, order_id: str) -> list[str]:
        return sorted(self.typing.get(order_id, ()))

    def clear_notifications(self) -> None:
        self.notifications_cache.clear()

    def clear_order_updates(self) -> None:
        self.updates_cache.clear()

    def close(self) -> None:
        """Stop listening to the subscriber."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # ─── Handlers ────────────────────────────────────────

    def _on_order_update(self, update: OrderUpdate) -> None:
        self.updates_cache.set(f"update:{next(self._seq)}", update)

    def _on_bulk_update(self, updates: list[OrderUpdate]) -> None:
        for update in updates:
            self._on_order_update(update)

    def _on_detail_update(self, update: OrderDetailUpdate) -> None:
        self.order_details[update.order_id] = update

    def _on_notification(self, notification: AnyNotification) -> None:
        # Keyed by arrival so a re-sent id still shows up as new
        self.notifications_cache.set(f"{next(self._seq)}:{notification.id}", notification)

    def _on_system_stats(self, stats: SystemStats) -> None:
        self.system_stats = stats

    def _on_metrics(self, metrics: MetricsUpdate) -> None:
        self.metrics = metrics

    def _on_user_typing(self, typing: UserTyping) -> None:
        self.typing.setdefault(typing.order_id, set()).add(typing.user_name)

    def _on_user_stopped_typing(self, stopped: UserStoppedTyping) -> None:
        self.typing.pop(stopped.order_id, None)
