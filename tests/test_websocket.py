"""WebSocket endpoint tests — the /ws handshake and client messages.

Learn: TestClient runs the app in a background portal, so a REST call made
on the same TestClient broadcasts to sockets opened with
websocket_connect(). Client messages are handled in order, so a ping/pong
round trip proves every earlier message (join, leave) has been applied.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeChannel
from orderpulse.realtime.websocket import ClientConnection, handle_client_message


def authenticate(ws, user_id="u1", name="Alice"):
    ws.send_json({"type": "authenticate", "data": {"userId": user_id, "name": name}})
    welcome = ws.receive_json()
    stats = ws.receive_json()
    return welcome, stats


def sync(ws):
    ws.send_json({"type": "ping"})
    pong = ws.receive_json()
    assert pong["type"] == "pong"
    return pong


def test_authenticate_handshake(app):
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws") as ws:
            welcome, stats = authenticate(ws)

    assert welcome["type"] == "notification"
    assert welcome["data"]["title"] == "Connected Successfully"
    assert welcome["data"]["userId"] == "u1"
    assert "Alice" in welcome["data"]["message"]
    assert stats["type"] == "system_stats"
    assert stats["data"]["connectedUsers"] == 1


def test_order_created_reaches_authenticated_socket(app):
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws") as ws:
            authenticate(ws)
            resp = tc.post("/api/v1/orders", json={"customer_name": "Bob", "amount": 5})
            order_id = resp.json()["order_id"]

            update = ws.receive_json()
            notification = ws.receive_json()

    assert update["type"] == "order_update"
    assert update["data"]["orderId"] == order_id
    assert update["data"]["type"] == "created"
    assert notification["data"]["type"] == "success"


def test_detail_room_join_and_typing_relay(app):
    with TestClient(app) as tc:
        order_id = tc.post("/api/v1/orders", json={"customer_name": "Bob", "amount": 5}).json()["order_id"]
        with tc.websocket_connect("/ws") as alice, tc.websocket_connect("/ws") as bob:
            for ws in (alice, bob):
                ws.send_json({"type": "join_order_room", "data": {"orderId": order_id}})
                sync(ws)

            alice.send_json({
                "type": "typing_start",
                "data": {"orderId": order_id, "userName": "Alice"},
            })
            typing = bob.receive_json()

            tc.patch(f"/api/v1/orders/{order_id}", json={"status": "completed"})
            detail = alice.receive_json()

    assert typing["type"] == "user_typing"
    assert typing["data"] == {
        "orderId": order_id,
        "userName": "Alice",
        "timestamp": typing["data"]["timestamp"],
    }
    assert detail["type"] == "order_detail_update"
    assert detail["data"]["detailedInfo"] is True


def test_malformed_frames_keep_socket_open(app):
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            ws.send_json(["not", "an", "object"])
            ws.send_json({"type": "teleport"})
            ws.send_json({"type": "join_order_room", "data": {}})
            pong = sync(ws)

    assert pong["data"]["serverTime"] > 0


# ═══════════════════════════════════════════════════════════
# Handler unit tests (no socket)
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def conn(container):
    channel = FakeChannel()
    container.registry.register("c1", channel)
    return ClientConnection("c1", channel, container.registry, container.broadcaster)


@pytest.mark.asyncio
async def test_leave_order_room(conn, container):
    await handle_client_message(conn, '{"type": "join_order_room", "data": {"orderId": "o-1"}}')
    assert container.registry.members_of("order_o-1") == {"c1"}

    await handle_client_message(conn, '{"type": "leave_order_room", "data": {"orderId": "o-1"}}')
    assert container.registry.members_of("order_o-1") == frozenset()


@pytest.mark.asyncio
async def test_typing_stop_relay(conn, container):
    other = FakeChannel()
    container.registry.register("c2", other)
    container.registry.join_room("c1", "order_o-1")
    container.registry.join_room("c2", "order_o-1")

    await handle_client_message(conn, '{"type": "typing_stop", "data": {"orderId": "o-1"}}')

    assert other.sent == [{"type": "user_stopped_typing", "data": {"orderId": "o-1"}}]
    assert conn.websocket.sent == []


@pytest.mark.asyncio
async def test_authenticate_requires_name(conn, container):
    await handle_client_message(conn, '{"type": "authenticate", "data": {"userId": "u1"}}')
    assert not container.registry.get("c1").is_authenticated
