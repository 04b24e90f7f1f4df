"""
Connection registry: live connections and their transient state.
"""
import itertools
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Connection:
    """The relay's view of one transport session."""

    id: str
    transport: Any
    connected_at: datetime
    last_seen: datetime
    room_id: Optional[str] = None
    user_id: Optional[int] = None
    username: Optional[str] = None
    last_probe_at: Optional[datetime] = None
    probe_pending: bool = False
    missed_probes: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectionId": self.id,
            "roomId": self.room_id,
            "userId": self.user_id,
            "connectedAt": self.connected_at.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
            "missedProbes": self.missed_probes,
        }


class ConnectionRegistry:
    """Owns every live Connection. Pure map mutation, never blocks."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        # counter part never repeats within one process
        return f"c{next(self._counter)}-{secrets.token_hex(4)}"

    def register(self, transport: Any) -> str:
        """Allocate an id for a newly accepted transport."""
        now = _utcnow()
        conn_id = self._next_id()
        self._connections[conn_id] = Connection(
            id=conn_id,
            transport=transport,
            connected_at=now,
            last_seen=now,
        )
        logger.debug("Connection registered: %s (total=%d)", conn_id, len(self._connections))
        return conn_id

    def deregister(self, conn_id: str) -> Optional[Connection]:
        """Remove a connection. Returns the removed entry, or None if it was already gone."""
        conn = self._connections.pop(conn_id, None)
        if conn is not None:
            logger.debug("Connection deregistered: %s (total=%d)", conn_id, len(self._connections))
        return conn

    def lookup(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def set_room(self, conn_id: str, room_id: Optional[str]) -> None:
        """Update the room pointer. Callers keep RoomManager consistent."""
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.room_id = room_id

    def bind_user(self, conn_id: str, user_id: Optional[int], username: Optional[str] = None) -> None:
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.user_id = user_id
            conn.username = username

    def touch(self, conn_id: str) -> None:
        """Record that the client was heard from."""
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.last_seen = _utcnow()
            conn.probe_pending = False
            conn.missed_probes = 0

    def connections_for_user(self, user_id: int) -> List[Connection]:
        return [c for c in self._connections.values() if c.user_id == user_id]

    def all(self) -> List[Connection]:
        return list(self._connections.values())

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
