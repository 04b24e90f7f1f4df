"""
Signaling relay service.

One explicitly constructed instance owns the connection registry, the room
manager, the router and the liveness monitor. All state is mutated on the
event loop thread, one inbound event at a time, so no locks are needed.
"""
import logging
from typing import Any, Dict, Optional

from duolink.core.config import settings
from duolink.core.signaling import messages
from duolink.core.signaling.identity import IdentityBinder, UserDirectory
from duolink.core.signaling.liveness import LivenessMonitor
from duolink.core.signaling.registry import ConnectionRegistry
from duolink.core.signaling.rooms import RoomManager
from duolink.core.signaling.router import MessageRouter
from duolink.core.signaling.transport import Transport

logger = logging.getLogger(__name__)

SHUTDOWN_CLOSE_CODE = 1001


def frame_size(raw: Any) -> int:
    """Size of an inbound frame in bytes, as it was on the wire."""
    if isinstance(raw, str):
        return len(raw.encode("utf-8"))
    return len(raw)


class SignalingRelay:
    """Pairs two clients per room and relays WebRTC negotiation between them."""

    def __init__(
        self,
        directory: Optional[UserDirectory] = None,
        heartbeat_interval: Optional[float] = None,
        heartbeat_max_missed: Optional[int] = None,
        max_frame_size: Optional[int] = None,
    ) -> None:
        self.registry = ConnectionRegistry()
        self.rooms = RoomManager(self.registry)
        self.identity = IdentityBinder(self.registry, directory) if directory is not None else None
        self.router = MessageRouter(self.registry, self.rooms, self.send, self.identity)
        self.liveness = LivenessMonitor(
            self.registry,
            interval=settings.heartbeat_interval if heartbeat_interval is None else heartbeat_interval,
            max_missed=settings.heartbeat_max_missed if heartbeat_max_missed is None else heartbeat_max_missed,
            on_timeout=self.disconnect,
        )
        self.max_frame_size = settings.max_frame_size if max_frame_size is None else max_frame_size
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.info(
            "Signaling relay started (heartbeat every %ss, max missed %s)",
            self.liveness.interval,
            self.liveness.max_missed or "disabled",
        )

    async def connect(self, transport: Transport) -> str:
        """Register an accepted transport and greet it with its connection id."""
        conn_id = self.registry.register(transport)
        logger.info("Client connected: %s (connections=%d)", conn_id, len(self.registry))
        self.liveness.start(conn_id)
        await self.send(conn_id, messages.connection_established(conn_id))
        return conn_id

    async def handle_frame(self, conn_id: str, raw: Any) -> None:
        if raw is not None and frame_size(raw) > self.max_frame_size:
            self.registry.touch(conn_id)
            await self.send(conn_id, messages.error("Frame too large"))
            return
        await self.router.route(conn_id, raw)

    async def disconnect(self, conn_id: str) -> None:
        """
        Single cleanup path for closed or failed transports.

        Leaves the room (the peer hears ``user-left`` exactly once), deregisters
        the connection and cancels its timers. Calling it twice is harmless.
        """
        conn = self.registry.lookup(conn_id)
        if conn is None:
            return
        self.liveness.stop(conn_id)
        notices = []
        if conn.room_id is not None:
            notices = self.rooms.leave(conn_id, conn.room_id).notices
        self.registry.deregister(conn_id)
        logger.info("Client disconnected: %s (connections=%d)", conn_id, len(self.registry))
        await self.router.deliver_all(notices)
        if self.identity is not None:
            await self.identity.release(conn)

    async def send(self, conn_id: str, frame: Dict[str, Any]) -> bool:
        """Fire-and-forget send. Returns False if the frame could not be written."""
        conn = self.registry.lookup(conn_id)
        if conn is None or not conn.transport.is_open:
            return False
        try:
            await conn.transport.send(frame)
            return True
        except Exception as e:
            logger.warning("Send to %s failed: %s", conn_id, e)
            return False

    async def shutdown(self) -> None:
        """Tell every client the server is going away, close all transports and drop state."""
        self._running = False
        connections = self.registry.all()
        await self.liveness.stop_all()
        self.rooms.clear()
        self.registry.clear()
        logger.info("Signaling relay shutting down, closing %d connections", len(connections))
        for conn in connections:
            if conn.transport.is_open:
                try:
                    await conn.transport.send(messages.server_shutdown())
                    await conn.transport.close(code=SHUTDOWN_CLOSE_CODE, reason="server_shutdown")
                except Exception as e:
                    logger.debug("Close on shutdown failed for %s: %s", conn.id, e)
            if self.identity is not None:
                await self.identity.release(conn)

    def stats(self) -> Dict[str, Any]:
        return {
            "connectionCount": len(self.registry),
            "roomCount": len(self.rooms),
            "authenticatedCount": sum(1 for c in self.registry if c.is_authenticated),
            "rooms": self.rooms.occupancy(),
            "liveness": {
                "enforced": self.liveness.enforcing,
                "probing": len(self.liveness),
            },
        }
