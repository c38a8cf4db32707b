"""Event bus — process-local pub/sub between order logic and fan-out.

Learn: The order service doesn't know WebSockets exist. It emits typed
events here; listeners (the Broadcaster, the Redis relay) subscribe at
startup. A failing listener is logged and skipped — an order mutation
never fails because a real-time consumer did.
"""

from collections.abc import Awaitable, Callable

import structlog

from orderpulse.events.types import BusEvent

logger = structlog.get_logger()

Listener = Callable[[BusEvent], Awaitable[None]]


class EventBus:
    """Relays bus events to async listeners in subscription order."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: BusEvent) -> None:
        """Deliver one event to every listener, isolating listener failures."""
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("event_bus.listener_failed", kind=event.kind)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
