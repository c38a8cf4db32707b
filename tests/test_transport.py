"""WebSocketTransport tests — close classification and frame decoding.

Learn: The transport wraps a websockets ClientConnection, so tests hand it
a FakeConnection with the same recv/send/close surface. Close frames are
built with the library's own exception classes, which is exactly what a
real connection raises.
"""

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from conftest import make_subscriber, settle
from orderpulse.client import transport as transport_module
from orderpulse.client.subscriber import ConnectionState
from orderpulse.client.transport import (
    TransportClosed,
    TransportError,
    WebSocketTransport,
    _closed,
)
from orderpulse.schemas.realtime import NOTIFICATION

NOTIFICATION_FRAME = json.dumps({
    "type": NOTIFICATION,
    "data": {
        "id": "n-1",
        "title": "Order Created",
        "message": "Order a1b2c3d4... has been created",
        "type": "success",
        "timestamp": "2024-05-01T12:00:00+00:00",
    },
})


class FakeConnection:
    """ClientConnection stand-in. Queued exceptions are raised from recv()."""

    def __init__(self, *frames):
        self.sent: list[str] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._frames.put_nowait(frame)

    async def recv(self):
        frame = await self._frames.get()
        if isinstance(frame, BaseException):
            raise frame
        return frame

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


def server_close():
    return ConnectionClosedOK(Close(1001, "going away"), Close(1001, "going away"), True)


# ═══════════════════════════════════════════════════════════
# Close classification
# ═══════════════════════════════════════════════════════════


def test_server_initiated_close_is_remote():
    closed = _closed(server_close())
    assert closed.remote is True
    assert closed.reason == "going away"


def test_client_initiated_close_is_not_remote():
    exc = ConnectionClosedOK(Close(1000, ""), Close(1000, ""), False)
    assert _closed(exc).remote is False


def test_abnormal_drop_is_not_remote():
    assert _closed(ConnectionClosedError(None, None)).remote is False


# ═══════════════════════════════════════════════════════════
# Connect / send / receive
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_connect_failure_raises_transport_error(monkeypatch):
    async def refuse(url, **kwargs):
        raise OSError("Connection refused")

    monkeypatch.setattr(transport_module, "connect", refuse)

    with pytest.raises(TransportError, match="Connection refused"):
        await WebSocketTransport.connect("ws://localhost:1/ws")


@pytest.mark.asyncio
async def test_send_encodes_json():
    connection = FakeConnection()
    await WebSocketTransport(connection).send({"type": "ping", "data": None})
    assert json.loads(connection.sent[0]) == {"type": "ping", "data": None}


@pytest.mark.asyncio
async def test_receive_skips_frames_that_are_not_objects():
    connection = FakeConnection(
        "not json",
        "[1, 2]",
        "42",
        b"\x80\x81 not utf8",
        NOTIFICATION_FRAME,
    )

    message = await WebSocketTransport(connection).receive()

    assert message["type"] == NOTIFICATION


@pytest.mark.asyncio
async def test_receive_reports_server_close():
    transport = WebSocketTransport(FakeConnection(server_close()))

    with pytest.raises(TransportClosed) as exc:
        await transport.receive()
    assert exc.value.remote is True


# ═══════════════════════════════════════════════════════════
# Behind a subscriber
# ═══════════════════════════════════════════════════════════


class ConnectionFactory:
    def __init__(self, *frames):
        self.connection = FakeConnection(*frames)

    async def __call__(self, url: str) -> WebSocketTransport:
        return WebSocketTransport(self.connection)


@pytest.mark.asyncio
async def test_undecodable_frame_keeps_subscriber_reading(scheduler):
    factory = ConnectionFactory(b"\x80\x81 not utf8", NOTIFICATION_FRAME)
    sub = make_subscriber(factory, scheduler)
    received = []
    sub.on(NOTIFICATION, received.append)
    await sub.connect()
    await settle()

    assert [n.id for n in received] == ["n-1"]
    assert sub.state is ConnectionState.CONNECTED
    assert not sub._reader.done()
    await sub.disconnect()


@pytest.mark.asyncio
async def test_reader_crash_falls_back_to_reconnect(scheduler):
    factory = ConnectionFactory(RuntimeError("decoder blew up"))
    sub = make_subscriber(factory, scheduler)
    await sub.connect()
    await settle()

    assert sub.state is ConnectionState.RECONNECTING
    assert scheduler.delays == [2.0]
    assert isinstance(sub.last_error, TransportClosed)
    await sub.disconnect()
