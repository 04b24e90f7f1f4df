"""
Message router: parse an inbound frame, validate it, mutate room state and
forward negotiation payloads to the peer.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from duolink.core.signaling import messages
from duolink.core.signaling.errors import IdentityResolutionError, SignalingError
from duolink.core.signaling.identity import IdentityBinder
from duolink.core.signaling.registry import ConnectionRegistry
from duolink.core.signaling.rooms import Notice, RoomManager

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Dict[str, Any]], Awaitable[bool]]


class MessageRouter:
    """Dispatches inbound frames by type for one relay instance."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomManager,
        send: SendFn,
        identity: Optional[IdentityBinder] = None,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._send = send
        self._identity = identity
        self._handlers = {
            messages.JOIN_ROOM: self._handle_join,
            messages.LEAVE_ROOM: self._handle_leave,
            messages.OFFER: self._handle_relay,
            messages.ANSWER: self._handle_relay,
            messages.ICE_CANDIDATE: self._handle_relay,
            messages.PING: self._handle_ping,
            messages.HEARTBEAT_ACK: self._handle_heartbeat_ack,
            messages.AUTH: self._handle_auth,
        }

    async def route(self, conn_id: str, raw: Any) -> None:
        """
        Handle one inbound frame from conn_id.

        Any frame, valid or not, counts as a liveness response. Errors that
        belong to the client become an ``error`` reply; the connection stays open.
        """
        if conn_id not in self._registry:
            logger.debug("Frame for unknown connection %s ignored", conn_id)
            return
        self._registry.touch(conn_id)
        try:
            message = messages.parse_frame(raw)
            logger.debug("Received %s from %s", message.type, conn_id)
            await self._handlers[message.type](conn_id, message)
        except SignalingError as e:
            logger.info("Rejected frame from %s: %s", conn_id, e.message)
            await self._send(conn_id, messages.error(e.message))

    async def deliver_all(self, notices: Iterable[Notice]) -> None:
        """Send queued notifications; failures are logged by the send function."""
        for recipient, frame in notices:
            await self._send(recipient, frame)

    def _current_room(self, conn_id: str, room_id: Optional[str]) -> Optional[str]:
        if room_id is not None:
            return room_id
        conn = self._registry.lookup(conn_id)
        return conn.room_id if conn else None

    async def _room_changed(self, conn_id: str) -> None:
        if self._identity is not None:
            await self._identity.room_changed(conn_id)

    async def _handle_join(self, conn_id: str, message: messages.JoinRoom) -> None:
        result = self._rooms.join(conn_id, message.room_id)
        await self._room_changed(conn_id)
        await self.deliver_all(result.notices)

    async def _handle_leave(self, conn_id: str, message: messages.LeaveRoom) -> None:
        room_id = self._current_room(conn_id, message.room_id)
        if room_id is None:
            return
        result = self._rooms.leave(conn_id, room_id)
        if result.removed:
            await self._room_changed(conn_id)
        await self.deliver_all(result.notices)

    async def _handle_relay(self, conn_id: str, message) -> None:
        room_id = self._current_room(conn_id, message.room_id)
        peer_id = self._rooms.get_peer(conn_id, room_id)
        # ICE candidates routinely race ahead of the peer's join
        log = logger.debug if message.type == messages.ICE_CANDIDATE else logger.warning
        if peer_id is None:
            log("Dropped %s from %s: no peer in room %s", message.type, conn_id, room_id)
            return
        peer = self._registry.lookup(peer_id)
        if peer is None or not peer.transport.is_open:
            log("Dropped %s from %s: peer %s not open", message.type, conn_id, peer_id)
            return
        payload = getattr(message, messages.RELAY_FIELDS[message.type])
        sent = await self._send(peer_id, messages.relayed(message.type, payload, conn_id))
        if sent:
            logger.debug("Relayed %s %s -> %s in room %s", message.type, conn_id, peer_id, room_id)
        else:
            log("Dropped %s from %s: send to %s failed", message.type, conn_id, peer_id)

    async def _handle_ping(self, conn_id: str, message: messages.Ping) -> None:
        await self._send(conn_id, messages.pong())

    async def _handle_heartbeat_ack(self, conn_id: str, message: messages.HeartbeatAck) -> None:
        return None

    async def _handle_auth(self, conn_id: str, message: messages.Auth) -> None:
        if self._identity is None:
            raise IdentityResolutionError("Authentication is not available")
        user = await self._identity.bind(conn_id, message.user_id)
        if user is None:
            # connection went away while the directory call was in flight
            return
        await self._send(
            conn_id,
            messages.auth_success(user["id"], user["username"], user.get("display_name")),
        )
