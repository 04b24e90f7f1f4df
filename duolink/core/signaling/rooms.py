"""
Room manager: pairing slots of at most two connections.

Methods here are synchronous and never touch a transport. Each mutating call
returns the notifications that must be delivered once the state change is
complete, as ``(recipient connection id, frame)`` pairs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from duolink.core.signaling import messages
from duolink.core.signaling.errors import InvalidRoomError, RoomFullError
from duolink.core.signaling.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

ROOM_CAPACITY = 2

Notice = Tuple[str, Dict[str, Any]]


@dataclass
class Room:
    """An in-memory pairing slot. Members are kept in join order."""

    id: str
    members: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_full(self) -> bool:
        return len(self.members) >= ROOM_CAPACITY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roomId": self.id,
            "participantCount": len(self.members),
            "members": list(self.members),
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class LeaveResult:
    room_id: str
    removed: bool
    participant_count: int
    room_deleted: bool = False
    notices: List[Notice] = field(default_factory=list)


@dataclass
class JoinResult:
    room_id: str
    participant_count: int
    notices: List[Notice] = field(default_factory=list)
    previous: Optional[LeaveResult] = None


def normalize_room_id(room_id: Any) -> str:
    """Trim a client-supplied room id; raise InvalidRoomError if nothing is left."""
    if room_id is None:
        raise InvalidRoomError()
    room_id = str(room_id).strip()
    if not room_id:
        raise InvalidRoomError()
    return room_id


class RoomManager:
    """Owns active rooms and keeps each connection's room pointer in step with them."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        self._rooms: Dict[str, Room] = {}

    def join(self, conn_id: str, room_id: Any) -> JoinResult:
        """
        Add a connection to a room, creating the room if unseen.

        Validation and the capacity check run before any mutation, so a
        rejected join leaves the caller's previous membership untouched.

        Raises:
            InvalidRoomError: room id missing or blank
            RoomFullError: room already holds two members
            LookupError: connection is not registered
        """
        room_id = normalize_room_id(room_id)
        conn = self._registry.lookup(conn_id)
        if conn is None:
            raise LookupError(f"Unknown connection {conn_id}")

        room = self._rooms.get(room_id)
        if room is not None and conn_id in room.members:
            count = len(room.members)
            return JoinResult(room_id, count, [(conn_id, messages.room_joined(room_id, count))])
        if room is not None and room.is_full:
            logger.info("Join rejected: room %s is full (connection %s)", room_id, conn_id)
            raise RoomFullError(room_id)

        previous = None
        notices: List[Notice] = []
        if conn.room_id is not None:
            previous = self.leave(conn_id, conn.room_id)
            notices.extend(previous.notices)

        if room is None:
            room = Room(id=room_id)
            self._rooms[room_id] = room
            logger.info("Room created: %s", room_id)
        room.members.append(conn_id)
        self._registry.set_room(conn_id, room_id)
        count = len(room.members)
        logger.info("Connection %s joined room %s (%d/%d)", conn_id, room_id, count, ROOM_CAPACITY)

        notices.append((conn_id, messages.room_joined(room_id, count)))
        if count == ROOM_CAPACITY:
            other = next(m for m in room.members if m != conn_id)
            ready = messages.room_ready(room_id, count, initiator=other)
            notices.append((other, messages.user_joined(conn_id, count)))
            notices.append((other, ready))
            notices.append((conn_id, ready))
        return JoinResult(room_id, count, notices, previous)

    def leave(self, conn_id: str, room_id: Any) -> LeaveResult:
        """Remove a connection from a room. No-op if it is not a member."""
        room = self._rooms.get(room_id) if room_id is not None else None
        if room is None or conn_id not in room.members:
            return LeaveResult(
                room_id=room_id,
                removed=False,
                participant_count=len(room.members) if room else 0,
            )

        room.members.remove(conn_id)
        conn = self._registry.lookup(conn_id)
        if conn is not None and conn.room_id == room_id:
            self._registry.set_room(conn_id, None)
        count = len(room.members)
        logger.info("Connection %s left room %s (%d/%d)", conn_id, room_id, count, ROOM_CAPACITY)

        if count == 0:
            del self._rooms[room_id]
            logger.info("Room removed: %s", room_id)
            return LeaveResult(room_id, True, 0, room_deleted=True)
        notices = [(member, messages.user_left(conn_id, count)) for member in room.members]
        return LeaveResult(room_id, True, count, notices=notices)

    def get_peer(self, conn_id: str, room_id: Optional[str]) -> Optional[str]:
        """Return the other occupant of the room, or None. Never raises."""
        if room_id is None:
            return None
        room = self._rooms.get(room_id)
        if room is None or conn_id not in room.members:
            return None
        for member in room.members:
            if member != conn_id:
                return member
        return None

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [room.to_dict() for room in self._rooms.values()]

    def occupancy(self) -> Dict[str, int]:
        """Count rooms by how many members they hold."""
        waiting = sum(1 for r in self._rooms.values() if len(r.members) == 1)
        return {"waiting": waiting, "paired": len(self._rooms) - waiting}

    def clear(self) -> None:
        self._rooms.clear()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms
