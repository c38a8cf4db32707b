"""Connection registry — who is connected, who they are, which rooms they're in.

Learn: This is the single mutable structure shared by every WebSocket
handler in the process. All mutations are synchronous (no awaits), so on
one event loop a broadcast that calls members_of() always sees the room
list as of the last completed connect/join/leave/disconnect — never a
half-applied change.

Lookups on unknown connections are no-ops, not errors: a message racing a
disconnect is an expected steady-state outcome, and crashing the transport
over it would be worse than dropping it.

The registry holds each connection's channel (the socket handle) but never
sends on it — that's the Broadcaster's job.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from orderpulse.schemas.realtime import AUTHENTICATED_ROOM


class Channel(Protocol):
    """Anything a message can be pushed to (a Starlette WebSocket, a fake)."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class ConnectionSession:
    """One live client connection. Only the registry mutates it."""

    connection_id: str
    channel: Channel
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    rooms: set[str] = field(default_factory=set)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class ConnectionRegistry:
    """Map of connection id → session, plus the room membership index."""

    def __init__(self) -> None:
        self._sessions: dict[str, ConnectionSession] = {}
        self._rooms: dict[str, set[str]] = defaultdict(set)

    # ─── Lifecycle ───────────────────────────────────────

    def register(self, connection_id: str, channel: Channel) -> ConnectionSession:
        """Create an anonymous session. Re-registering an id replaces it."""
        if connection_id in self._sessions:
            self.unregister(connection_id)
        session = ConnectionSession(connection_id=connection_id, channel=channel)
        self._sessions[connection_id] = session
        return session

    def authenticate(
        self,
        connection_id: str,
        user_id: str,
        display_name: str,
    ) -> Optional[ConnectionSession]:
        """Attach an identity and join the authenticated room."""
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        session.user_id = user_id
        session.display_name = display_name
        self.join_room(connection_id, AUTHENTICATED_ROOM)
        return session

    def unregister(self, connection_id: str) -> None:
        """Drop the session and every room membership it held."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        for room in session.rooms:
            self._discard_member(room, connection_id)
        session.rooms.clear()

    # ─── Rooms ───────────────────────────────────────────

    def join_room(self, connection_id: str, room: str) -> None:
        session = self._sessions.get(connection_id)
        if session is None:
            return
        session.rooms.add(room)
        self._rooms[room].add(connection_id)

    def leave_room(self, connection_id: str, room: str) -> None:
        session = self._sessions.get(connection_id)
        if session is None:
            return
        session.rooms.discard(room)
        self._discard_member(room, connection_id)

    def members_of(self, room: str) -> frozenset[str]:
        """Connection ids currently in a room (a snapshot, safe to iterate)."""
        return frozenset(self._rooms.get(room, ()))

    def _discard_member(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    # ─── Lookups ─────────────────────────────────────────

    def get(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._sessions.get(connection_id)

    def channel_for(self, connection_id: str) -> Optional[Channel]:
        session = self._sessions.get(connection_id)
        return session.channel if session else None

    def connection_ids(self) -> frozenset[str]:
        return frozenset(self._sessions)

    @property
    def authenticated_count(self) -> int:
        return len(self._rooms.get(AUTHENTICATED_ROOM, ()))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions
