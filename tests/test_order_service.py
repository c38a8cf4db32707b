"""OrderService tests — each mutation emits exactly one domain event.

Learn: A recording listener on the container's bus captures what the
service emits, so these tests check the event stream directly rather than
going through sockets.
"""

import pytest

from orderpulse.events.bus import EventBus
from orderpulse.events.types import (
    MetricsTick,
    OrderCreated,
    OrderDeleted,
    OrdersBulkUpdated,
    OrderStatusChanged,
    OrderUpdated,
)
from orderpulse.services.order_service import (
    InvalidStatusError,
    OrderNotFoundError,
    OrderService,
)


@pytest.fixture
def recorded():
    return []


@pytest.fixture
def svc(recorded):
    bus = EventBus()

    async def record(event):
        recorded.append(event)

    bus.subscribe(record)
    return OrderService(bus, metrics_enabled=True)


def domain(events):
    return [e for e in events if not isinstance(e, MetricsTick)]


@pytest.mark.asyncio
async def test_create_emits_created_then_metrics(svc, recorded):
    order = await svc.create_order("Alice", 120.0, customer_email="a@example.com")

    assert order.status == "pending"
    assert order.items[0].name == "Order total"
    assert order.items[0].price == 120.0
    assert [type(e) for e in recorded] == [OrderCreated, MetricsTick]
    assert recorded[0].order_id == order.order_id
    assert recorded[1].metrics["orderCount"] == 1


@pytest.mark.asyncio
async def test_status_only_change_is_status_changed(svc, recorded):
    order = await svc.create_order("Alice", 10.0)
    recorded.clear()

    await svc.update_order(order.order_id, status="completed")

    event = domain(recorded)[0]
    assert isinstance(event, OrderStatusChanged)
    assert event.previous_status == "pending"
    assert event.status == "completed"


@pytest.mark.asyncio
async def test_field_change_is_updated(svc, recorded):
    order = await svc.create_order("Alice", 10.0)
    recorded.clear()

    await svc.update_order(order.order_id, amount=15.0, status="processing")

    assert [type(e) for e in domain(recorded)] == [OrderUpdated]


@pytest.mark.asyncio
async def test_noop_update_emits_nothing(svc, recorded):
    order = await svc.create_order("Alice", 10.0)
    recorded.clear()

    await svc.update_order(order.order_id, customer_name="Alice")

    assert recorded == []


@pytest.mark.asyncio
async def test_update_errors(svc):
    with pytest.raises(OrderNotFoundError):
        await svc.update_order("missing", status="completed")
    order = await svc.create_order("Alice", 10.0)
    with pytest.raises(InvalidStatusError):
        await svc.update_order(order.order_id, status="shipped")


@pytest.mark.asyncio
async def test_bulk_update_is_one_event(svc, recorded):
    a = await svc.create_order("Alice", 10.0)
    b = await svc.create_order("Bob", 20.0)
    recorded.clear()

    updated = await svc.bulk_update_status([a.order_id, "missing", b.order_id], "completed")

    assert len(updated) == 2
    events = domain(recorded)
    assert len(events) == 1
    assert isinstance(events[0], OrdersBulkUpdated)
    assert events[0].order_ids == [a.order_id, b.order_id]


@pytest.mark.asyncio
async def test_bulk_update_with_no_matches_emits_nothing(svc, recorded):
    assert await svc.bulk_update_status(["missing"], "completed") == []
    assert recorded == []


@pytest.mark.asyncio
async def test_delete(svc, recorded):
    order = await svc.create_order("Alice", 10.0)
    recorded.clear()

    await svc.delete_order(order.order_id)

    assert isinstance(domain(recorded)[0], OrderDeleted)
    assert svc.get_order(order.order_id) is None
    with pytest.raises(OrderNotFoundError):
        await svc.delete_order(order.order_id)


@pytest.mark.asyncio
async def test_list_filters_and_pages(svc):
    for name in ("Alice", "Bob", "Carol"):
        await svc.create_order(name, 10.0, customer_email=f"{name.lower()}@example.com")

    page, next_offset = svc.list_orders(limit=2)
    assert len(page) == 2
    assert next_offset == 2

    page, next_offset = svc.list_orders(limit=2, offset=2)
    assert len(page) == 1
    assert next_offset is None

    page, _ = svc.list_orders(search="BOB@")
    assert [o.customer_name for o in page] == ["Bob"]


@pytest.mark.asyncio
async def test_metrics(svc):
    a = await svc.create_order("Alice", 10.0)
    await svc.create_order("Bob", 30.0)
    await svc.update_order(a.order_id, status="completed")

    metrics = svc.metrics()
    assert metrics["orderCount"] == 2
    assert metrics["totalRevenue"] == 40.0
    assert metrics["averageOrderValue"] == 20.0
    assert metrics["statusCounts"] == {"completed": 1, "pending": 1}


@pytest.mark.asyncio
async def test_metrics_tick_can_be_disabled(recorded):
    bus = EventBus()

    async def record(event):
        recorded.append(event)

    bus.subscribe(record)
    svc = OrderService(bus, metrics_enabled=False)
    await svc.create_order("Alice", 10.0)

    assert [type(e) for e in recorded] == [OrderCreated]
