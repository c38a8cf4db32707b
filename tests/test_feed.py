"""LiveFeed tests — buffering what the subscriber receives."""

import pytest

from conftest import make_subscriber, settle
from orderpulse.client.feed import LiveFeed

TS = "2024-05-01T12:00:00+00:00"


def order_frame(order_id, status="pending"):
    return {
        "orderId": order_id,
        "status": status,
        "customerName": "Alice",
        "timestamp": TS,
        "amount": 10.0,
        "type": "created",
    }


def notification_frame(n, type_="info"):
    return {"id": f"n-{n}", "title": f"Note {n}", "message": "m", "type": type_, "timestamp": TS}


@pytest.fixture
async def connected(transports, scheduler, clock):
    sub = make_subscriber(transports, scheduler)
    feed = LiveFeed(sub, notification_limit=3, update_limit=2, ttl=60, clock=clock)
    await sub.connect()
    yield feed, transports.last
    await sub.disconnect()


@pytest.mark.asyncio
async def test_order_updates_newest_first_and_capped(connected):
    feed, transport = connected
    for i in range(3):
        transport.push("order_update", order_frame(f"o-{i}"))
    await settle()

    assert [u.order_id for u in feed.order_updates] == ["o-2", "o-1"]


@pytest.mark.asyncio
async def test_bulk_update_is_expanded(connected):
    feed, transport = connected
    transport.push("bulk_order_update", [order_frame("o-1", "completed"), order_frame("o-2", "completed")])
    await settle()

    assert [u.order_id for u in feed.order_updates] == ["o-2", "o-1"]


@pytest.mark.asyncio
async def test_notifications_include_emergencies(connected):
    feed, transport = connected
    transport.push("notification", notification_frame(1))
    transport.push("emergency_notification", {
        **notification_frame(2, "warning"), "emergencyType": "maintenance",
    })
    await settle()

    assert [n.id for n in feed.notifications] == ["n-2", "n-1"]
    assert feed.notifications[0].emergency_type == "maintenance"

    feed.clear_notifications()
    assert feed.notifications == []


@pytest.mark.asyncio
async def test_buffers_expire(connected, clock):
    feed, transport = connected
    transport.push("notification", notification_frame(1))
    await settle()

    clock.advance(61)
    assert feed.notifications == []


@pytest.mark.asyncio
async def test_snapshots_and_typing(connected):
    feed, transport = connected
    transport.push("system_stats", {
        "connectedUsers": 3, "totalSessions": 4, "serverUptime": 12.5, "timestamp": TS,
    })
    transport.push("metrics_update", {"orderCount": 7, "timestamp": TS})
    transport.push("order_detail_update", {**order_frame("o-1"), "detailedInfo": True})
    transport.push("user_typing", {"orderId": "o-1", "userName": "Bob", "timestamp": TS})
    transport.push("user_typing", {"orderId": "o-1", "userName": "Alice", "timestamp": TS})
    await settle(10)

    assert feed.system_stats.connected_users == 3
    assert feed.metrics.model_extra["orderCount"] == 7
    assert feed.order_details["o-1"].detailed_info is True
    assert feed.typing_users("o-1") == ["Alice", "Bob"]

    transport.push("user_stopped_typing", {"orderId": "o-1"})
    await settle()
    assert feed.typing_users("o-1") == []


@pytest.mark.asyncio
async def test_close_stops_listening(connected):
    feed, transport = connected
    feed.close()
    transport.push("order_update", order_frame("o-1"))
    await settle()
    assert feed.order_updates == []
