"""Domain event types.

Learn: Every order mutation produces exactly one immutable event. The
events form a closed set — DomainEvent is a Union of frozen dataclasses —
so consumers (the Broadcaster, the Redis relay) can enumerate every kind
in a dispatch table instead of discovering listener names at runtime.

  OrderCreated        created          new order fields
  OrderUpdated        updated          new order fields
  OrderStatusChanged  status_changed   new order fields + previous status
  OrderDeleted        deleted          id only
  OrdersBulkUpdated   bulk_updated     N status changes pushed as one array

MetricsTick rides the same EventBus but is not an order event.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional, Union

# ─── Event kinds ─────────────────────────────────────────

ORDER_CREATED = "created"
ORDER_UPDATED = "updated"
ORDER_STATUS_CHANGED = "status_changed"
ORDER_DELETED = "deleted"
ORDERS_BULK_UPDATED = "bulk_updated"
METRICS_TICK = "metrics"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Order events ────────────────────────────────────────


@dataclass(frozen=True)
class OrderCreated:
    order_id: str
    status: str
    customer_name: str
    amount: float
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = ORDER_CREATED


@dataclass(frozen=True)
class OrderUpdated:
    order_id: str
    status: str
    customer_name: str
    amount: float
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = ORDER_UPDATED


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: str
    status: str
    customer_name: str
    amount: float
    previous_status: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = ORDER_STATUS_CHANGED


@dataclass(frozen=True)
class OrderDeleted:
    order_id: str
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = ORDER_DELETED


@dataclass(frozen=True)
class OrdersBulkUpdated:
    updates: tuple[OrderStatusChanged, ...]
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = ORDERS_BULK_UPDATED

    @property
    def order_ids(self) -> list[str]:
        return [u.order_id for u in self.updates]


@dataclass(frozen=True)
class MetricsTick:
    metrics: dict[str, Any]
    timestamp: datetime = field(default_factory=_now)

    kind: ClassVar[str] = METRICS_TICK


DomainEvent = Union[
    OrderCreated,
    OrderUpdated,
    OrderStatusChanged,
    OrderDeleted,
    OrdersBulkUpdated,
]

BusEvent = Union[DomainEvent, MetricsTick]

# Events that name exactly one order (and so have a detail room)
SINGLE_ORDER_EVENTS = (OrderCreated, OrderUpdated, OrderStatusChanged, OrderDeleted)


# ─── Serialization (Redis relay) ─────────────────────────

_SIMPLE_KINDS: dict[str, type] = {
    cls.kind: cls
    for cls in (OrderCreated, OrderUpdated, OrderStatusChanged, OrderDeleted)
}


def _fields(event: Any) -> dict[str, Any]:
    data = {
        f.name: getattr(event, f.name)
        for f in fields(event)
        if f.name != "timestamp"
    }
    data["timestamp"] = event.timestamp.isoformat()
    return data


def event_to_dict(event: BusEvent) -> dict[str, Any]:
    """Serialize a bus event to a JSON-safe dict tagged with its kind."""
    if isinstance(event, OrdersBulkUpdated):
        return {
            "kind": event.kind,
            "timestamp": event.timestamp.isoformat(),
            "updates": [event_to_dict(u) for u in event.updates],
        }
    return {"kind": event.kind, **_fields(event)}


def event_from_dict(data: dict[str, Any]) -> BusEvent:
    """Rebuild a bus event serialized by event_to_dict.

    Raises ValueError for an unknown or missing kind.
    """
    payload = dict(data)
    kind = payload.pop("kind", None)
    timestamp = datetime.fromisoformat(payload.pop("timestamp"))

    if kind == ORDERS_BULK_UPDATED:
        updates = tuple(event_from_dict(u) for u in payload["updates"])
        return OrdersBulkUpdated(updates=updates, timestamp=timestamp)
    if kind == METRICS_TICK:
        return MetricsTick(metrics=payload["metrics"], timestamp=timestamp)

    cls = _SIMPLE_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event kind: {kind!r}")
    return cls(timestamp=timestamp, **payload)
