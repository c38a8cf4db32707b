"""Dependency container wiring for the server.

Learn: Every stateful piece of the server is constructed exactly once here
and handed to the app — no module-level service singletons. Tests build
their own container (or swap pieces of one) without touching globals.

Wiring:
  OrderService ──emit──▶ EventBus ──▶ Broadcaster.publish ──▶ registry rooms
                                 └──▶ RedisEventRelay.forward (if enabled)
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from orderpulse.config import Settings, settings as default_settings
from orderpulse.events.bus import EventBus
from orderpulse.realtime.broadcaster import Broadcaster
from orderpulse.realtime.pubsub import RedisEventRelay
from orderpulse.realtime.registry import ConnectionRegistry
from orderpulse.services.order_service import OrderService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    bus: EventBus
    registry: ConnectionRegistry
    broadcaster: Broadcaster
    order_service: OrderService
    started_at: float = field(default_factory=time.monotonic)
    relay: Optional[RedisEventRelay] = None

    def attach_relay(self, relay: RedisEventRelay) -> None:
        """Start mirroring bus events to Redis through the given relay."""
        self.relay = relay
        self.bus.subscribe(relay.forward)


def build_container(settings: Optional[Settings] = None) -> AppContainer:
    """Create the default dependency container."""
    resolved = settings or default_settings
    started_at = time.monotonic()

    bus = EventBus()
    registry = ConnectionRegistry()
    broadcaster = Broadcaster(registry, started_at=started_at)
    bus.subscribe(broadcaster.publish)

    order_service = OrderService(bus, metrics_enabled=resolved.metrics_enabled)

    return AppContainer(
        settings=resolved,
        bus=bus,
        registry=registry,
        broadcaster=broadcaster,
        order_service=order_service,
        started_at=started_at,
    )
