"""Order service — in-memory order CRUD that emits real-time events.

Learn: Every mutation follows the same three steps:
1. Apply the change to the in-memory store
2. Emit exactly one DomainEvent on the EventBus (the Broadcaster fans it out)
3. Emit a MetricsTick so dashboards can refresh their counters

Reads never emit. The store is a dict in process memory — restarting the
server forgets every order. That's fine: persistence is someone else's job,
this service exists to drive the real-time layer.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from orderpulse.events.bus import EventBus
from orderpulse.events.types import (
    MetricsTick,
    OrderCreated,
    OrderDeleted,
    OrdersBulkUpdated,
    OrderStatusChanged,
    OrderUpdated,
)
from orderpulse.models import ORDER_STATUSES, Order, OrderItem

logger = structlog.get_logger()


class OrderNotFoundError(Exception):
    """Raised when an order id is not in the store."""


class InvalidStatusError(Exception):
    """Raised for a status outside pending/processing/completed/cancelled."""


def _check_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise InvalidStatusError(
            f"Invalid status {status!r}; expected one of {', '.join(ORDER_STATUSES)}"
        )


class OrderService:
    """Business logic for orders, backed by a dict."""

    def __init__(self, bus: EventBus, metrics_enabled: bool = True):
        self.bus = bus
        self.metrics_enabled = metrics_enabled
        self._orders: dict[str, Order] = {}

    # ─── Create ──────────────────────────────────────────

    async def create_order(
        self,
        customer_name: str,
        amount: float,
        customer_email: Optional[str] = None,
        items: Optional[list[OrderItem]] = None,
    ) -> Order:
        """Create a new order in 'pending' status.

        Learn: An order without line items gets one synthetic item covering
        the full amount, so totals always add up.
        """
        order = Order(
            customer_name=customer_name,
            amount=amount,
            customer_email=customer_email,
            items=items or [OrderItem(name="Order total", quantity=1, price=amount)],
        )
        self._orders[order.order_id] = order
        logger.info("orders.created", order_id=order.order_id, amount=amount)

        await self.bus.emit(OrderCreated(
            order_id=order.order_id,
            status=order.status,
            customer_name=order.customer_name,
            amount=order.amount,
        ))
        await self._emit_metrics()
        return order

    # ─── Read ────────────────────────────────────────────

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def list_orders(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Order], Optional[int]]:
        """List orders newest first. Returns (page, next_offset or None).

        search matches customer name, email, order id or status,
        case-insensitively.
        """
        orders = sorted(self._orders.values(), key=lambda o: o.order_date, reverse=True)
        if status:
            orders = [o for o in orders if o.status == status]
        if search:
            needle = search.lower()
            orders = [
                o for o in orders
                if needle in o.customer_name.lower()
                or needle in (o.customer_email or "").lower()
                or needle in o.order_id.lower()
                or needle in o.status
            ]

        page = orders[offset:offset + limit]
        end = offset + len(page)
        return page, (end if end < len(orders) else None)

    # ─── Update ──────────────────────────────────────────

    async def update_order(
        self,
        order_id: str,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        amount: Optional[float] = None,
        status: Optional[str] = None,
    ) -> Order:
        """Partially update an order. Only non-None fields are applied.

        Learn: A change that touches ONLY the status is emitted as
        OrderStatusChanged (with the previous status); anything else is
        OrderUpdated. A no-op update emits nothing.
        """
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if status is not None:
            _check_status(status)

        previous_status = order.status
        changed: set[str] = set()
        for name, value in (
            ("customer_name", customer_name),
            ("customer_email", customer_email),
            ("amount", amount),
            ("status", status),
        ):
            if value is not None and getattr(order, name) != value:
                setattr(order, name, value)
                changed.add(name)

        if not changed:
            return order

        logger.info("orders.updated", order_id=order_id, fields=sorted(changed))
        fields = dict(
            order_id=order.order_id,
            status=order.status,
            customer_name=order.customer_name,
            amount=order.amount,
        )
        if changed == {"status"}:
            await self.bus.emit(OrderStatusChanged(previous_status=previous_status, **fields))
        else:
            await self.bus.emit(OrderUpdated(**fields))
        await self._emit_metrics()
        return order

    async def bulk_update_status(self, order_ids: list[str], status: str) -> list[Order]:
        """Set one status on many orders; unknown ids are skipped.

        Learn: The whole batch is ONE OrdersBulkUpdated event, so clients
        receive a single bulk_order_update array instead of N messages.
        """
        _check_status(status)
        updated: list[Order] = []
        changes: list[OrderStatusChanged] = []
        for order_id in order_ids:
            order = self._orders.get(order_id)
            if order is None:
                continue
            previous = order.status
            order.status = status
            updated.append(order)
            changes.append(OrderStatusChanged(
                order_id=order.order_id,
                status=order.status,
                customer_name=order.customer_name,
                amount=order.amount,
                previous_status=previous,
            ))

        logger.info("orders.bulk_updated", requested=len(order_ids), updated=len(updated))
        if changes:
            await self.bus.emit(OrdersBulkUpdated(updates=tuple(changes)))
            await self._emit_metrics()
        return updated

    # ─── Delete ──────────────────────────────────────────

    async def delete_order(self, order_id: str) -> None:
        if self._orders.pop(order_id, None) is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        logger.info("orders.deleted", order_id=order_id)
        await self.bus.emit(OrderDeleted(order_id=order_id))
        await self._emit_metrics()

    # ─── Metrics ─────────────────────────────────────────

    def metrics(self) -> dict[str, Any]:
        """Counters pushed in metrics_update (camelCase: they go on the wire)."""
        count = len(self._orders)
        revenue = round(sum(o.amount for o in self._orders.values()), 2)
        return {
            "orderCount": count,
            "totalRevenue": revenue,
            "averageOrderValue": round(revenue / count, 2) if count else 0.0,
            "statusCounts": dict(Counter(o.status for o in self._orders.values())),
        }

    def realtime_stats(self) -> dict[str, Any]:
        """Totals overall and for today (UTC)."""
        today = datetime.now(timezone.utc).date()
        todays = [o for o in self._orders.values() if o.order_date.date() == today]
        return {
            "total_orders": len(self._orders),
            "today_orders": len(todays),
            "total_revenue": round(sum(o.amount for o in self._orders.values()), 2),
            "today_revenue": round(sum(o.amount for o in todays), 2),
            "status_counts": dict(Counter(o.status for o in self._orders.values())),
        }

    async def _emit_metrics(self) -> None:
        if self.metrics_enabled:
            await self.bus.emit(MetricsTick(metrics=self.metrics()))
