"""Client transport — one JSON message stream to the server.

Learn: The subscriber only needs three operations (send a dict, receive a
dict, close) and two failure signals:
- TransportError: the connection could not be opened
- TransportClosed: an open connection ended; `remote` says whether the
  SERVER closed it (a clean close frame from the other side) or it simply
  dropped (network failure, abnormal close)

WebSocketTransport implements that on top of the `websockets` library.
Tests swap in an in-memory fake with the same shape.
"""

import asyncio
import json
from typing import Any, Optional, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI


class TransportError(Exception):
    """The transport could not connect."""


class TransportClosed(Exception):
    """An open transport ended."""

    def __init__(self, reason: str, remote: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.remote = remote


class Transport(Protocol):
    async def send(self, message: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


def _closed(exc: ConnectionClosed) -> TransportClosed:
    # rcvd is the peer's close frame; rcvd_then_sent means the peer went first
    remote = exc.rcvd is not None and (exc.sent is None or bool(exc.rcvd_then_sent))
    reason = exc.rcvd.reason if exc.rcvd is not None and exc.rcvd.reason else str(exc)
    return TransportClosed(reason, remote=remote)


class WebSocketTransport:
    """JSON-over-WebSocket transport."""

    def __init__(self, connection: ClientConnection):
        self._connection = connection

    @classmethod
    async def connect(cls, url: str, open_timeout: Optional[float] = 10.0) -> "WebSocketTransport":
        try:
            connection = await connect(url, open_timeout=open_timeout)
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            raise TransportError(str(e) or type(e).__name__) from e
        return cls(connection)

    async def send(self, message: dict[str, Any]) -> None:
        try:
            await self._connection.send(json.dumps(message))
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def receive(self) -> dict[str, Any]:
        """Next JSON object from the server; any other frame is skipped."""
        while True:
            try:
                raw = await self._connection.recv()
            except ConnectionClosed as e:
                raise _closed(e) from e
            try:
                message = json.loads(raw)
            except (ValueError, TypeError):
                # ValueError covers JSONDecodeError and UnicodeDecodeError
                continue
            if isinstance(message, dict):
                return message

    async def close(self) -> None:
        await self._connection.close()
