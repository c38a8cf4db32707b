"""Test fixtures — a fresh container per test, plus in-memory fakes.

Learn: Nothing here touches the network. Every test gets its own
AppContainer (bus, registry, broadcaster, order service), so state can't
leak between tests. The fakes stand in for the three things the real-time
layer talks to:

1. FakeChannel — a server-side socket; records what the Broadcaster sends
2. FakeTransport — the client's socket; tests push server frames into it
3. FakeScheduler / FakeClock — let tests fire reconnect timers and move
   time forward without sleeping
"""

import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from orderpulse.client.transport import TransportClosed, TransportError
from orderpulse.config import Settings
from orderpulse.container import build_container
from orderpulse.main import create_app


# ═══════════════════════════════════════════════════════════
# Server side
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def test_settings():
    return Settings(redis_enabled=False, metrics_enabled=True)


@pytest.fixture
def container(test_settings):
    return build_container(test_settings)


@pytest.fixture
def app(container):
    return create_app(container)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class FakeChannel:
    """Server-side socket stand-in. Set closed=True to make sends fail."""

    def __init__(self, closed: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.closed = closed

    async def send_json(self, data: Any) -> None:
        if self.closed:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


# ═══════════════════════════════════════════════════════════
# Client side
# ═══════════════════════════════════════════════════════════


class FakeTransport:
    """Client socket stand-in fed by the test."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise TransportClosed("closed", remote=False)
        self.sent.append(message)

    async def receive(self) -> dict[str, Any]:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            self.closed = True
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    # Test controls

    def push(self, message_type: str, data: Any = None) -> None:
        self._inbox.put_nowait({"type": message_type, "data": data})

    def drop(self, reason: str = "connection lost", remote: bool = False) -> None:
        self._inbox.put_nowait(TransportClosed(reason, remote=remote))

    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class FakeTransportFactory:
    """Hands out transports, or raises TransportError while `failing` is set."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.calls = 0
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.failing:
            raise TransportError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeTimer:
    def __init__(self, delay: float, coro_fn):
        self.delay = delay
        self.coro_fn = coro_fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records scheduled callbacks; fire_next() runs the oldest pending one."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, coro_fn) -> FakeTimer:
        timer = FakeTimer(delay, coro_fn)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and t.coro_fn is not None]

    async def fire_next(self) -> None:
        timer = self.pending[0]
        coro_fn, timer.coro_fn = timer.coro_fn, None
        await coro_fn()


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def transports():
    return FakeTransportFactory()


async def settle(rounds: int = 5) -> None:
    """Let background tasks (reader loops) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_subscriber(transports, scheduler, clock: Optional[FakeClock] = None, **kwargs):
    from orderpulse.client.subscriber import ReconnectingSubscriber

    kwargs.setdefault("heartbeat_interval", 3600.0)
    kwargs.setdefault("base_delay", 2.0)
    kwargs.setdefault("max_attempts", 5)
    return ReconnectingSubscriber(
        "ws://test/ws",
        transport_factory=transports,
        scheduler=scheduler,
        clock=clock or FakeClock(),
        **kwargs,
    )
