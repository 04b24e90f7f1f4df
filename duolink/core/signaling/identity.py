"""
Optional identity binding: attach a directory user to a relay connection.

The relay works without it; when a UserDirectory is configured, ``auth``
frames resolve the user and the directory is told about connects and
disconnects.
"""
import logging
from typing import Any, Dict, Optional, Protocol, Union

from duolink.core.signaling.errors import IdentityResolutionError
from duolink.core.signaling.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"


class UserDirectory(Protocol):
    """External user store consumed by the relay. All calls are async."""

    async def resolve(self, user_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        ...

    async def record_connection(self, user_id: int, connection_id: str, room_id: Optional[str]) -> None:
        ...

    async def record_disconnection(self, connection_id: str) -> None:
        ...

    async def update_room(self, connection_id: str, room_id: Optional[str]) -> None:
        ...

    async def set_status(self, user_id: int, status: str) -> None:
        ...


class IdentityBinder:
    """Binds connections to directory users and keeps directory presence in step."""

    def __init__(self, registry: ConnectionRegistry, directory: UserDirectory) -> None:
        self._registry = registry
        self._directory = directory

    async def bind(self, conn_id: str, user_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        """
        Resolve user_id and bind it to the connection.

        Returns the user dict, or None if the connection disconnected while
        the lookup was in flight.

        Raises:
            IdentityResolutionError: the user is unknown or the directory failed
        """
        try:
            user = await self._directory.resolve(user_id)
        except Exception as e:
            logger.warning("User lookup failed for %r: %s", user_id, e)
            raise IdentityResolutionError("User lookup failed")
        if not user:
            raise IdentityResolutionError(f"User not found: {user_id}")

        conn = self._registry.lookup(conn_id)
        if conn is None:
            logger.info("Connection %s closed before auth for user %s completed", conn_id, user["id"])
            return None
        if conn.user_id is not None and conn.user_id != user["id"]:
            await self.release(conn)

        self._registry.bind_user(conn_id, user["id"], user["username"])
        logger.info("Connection %s authenticated as user %s (%s)", conn_id, user["id"], user["username"])
        recorded_room = conn.room_id
        try:
            await self._directory.record_connection(user["id"], conn_id, recorded_room)
            await self._directory.set_status(user["id"], STATUS_ONLINE)
        except Exception as e:
            logger.warning("Could not record connection %s for user %s: %s", conn_id, user["id"], e)
        if conn.room_id != recorded_room:
            # a join or leave landed before the row existed
            await self.room_changed(conn_id)

        if conn_id not in self._registry:
            # disconnect ran during the bookkeeping above; undo what we just recorded
            await self._forget(conn_id, user["id"])
            return None
        return user

    async def room_changed(self, conn_id: str) -> None:
        """Copy the connection's current room to the directory. Never raises."""
        conn = self._registry.lookup(conn_id)
        if conn is None or conn.user_id is None:
            return
        try:
            await self._directory.update_room(conn_id, conn.room_id)
        except Exception as e:
            logger.warning("Could not record room %s for connection %s: %s", conn.room_id, conn_id, e)

    async def release(self, conn: Connection) -> None:
        """Tell the directory a bound connection is gone. Never raises."""
        if conn.user_id is None:
            return
        await self._forget(conn.id, conn.user_id)

    async def _forget(self, conn_id: str, user_id: int) -> None:
        still_online = any(c.id != conn_id for c in self._registry.connections_for_user(user_id))
        try:
            await self._directory.record_disconnection(conn_id)
            if not still_online:
                await self._directory.set_status(user_id, STATUS_OFFLINE)
        except Exception as e:
            logger.warning("Could not record disconnection of %s for user %s: %s", conn_id, user_id, e)
