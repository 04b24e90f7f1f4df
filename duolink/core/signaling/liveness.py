"""
Liveness monitor: periodic heartbeat probe per connection.

Every HEARTBEAT_INTERVAL a ``heartbeat`` frame is sent. Any inbound frame
counts as the response. By default unanswered probes only update diagnostic
state; with max_missed > 0 the connection is handed to on_timeout after that
many consecutive misses.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from duolink.core.signaling import messages
from duolink.core.signaling.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

HEARTBEAT_TIMEOUT_CODE = 4001


class LivenessMonitor:
    """Owns one probe task per connection."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = 30.0,
        max_missed: int = 0,
        on_timeout: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._max_missed = max_missed
        self._on_timeout = on_timeout
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def max_missed(self) -> int:
        return self._max_missed

    @property
    def enforcing(self) -> bool:
        return self._max_missed > 0

    def start(self, conn_id: str) -> None:
        if conn_id in self._tasks or self._interval <= 0:
            return
        self._tasks[conn_id] = asyncio.create_task(self._run(conn_id))

    def stop(self, conn_id: str) -> None:
        """Cancel the probe task for conn_id; safe to call from inside that task."""
        task = self._tasks.pop(conn_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def __len__(self) -> int:
        return len(self._tasks)

    async def _run(self, conn_id: str) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                conn = self._registry.lookup(conn_id)
                if conn is None:
                    return
                if not await self._probe(conn):
                    return
        except asyncio.CancelledError:
            pass
        finally:
            if self._tasks.get(conn_id) is asyncio.current_task():
                del self._tasks[conn_id]

    async def _probe(self, conn: Connection) -> bool:
        """Check the previous probe, then send the next. Returns False to stop probing."""
        if conn.probe_pending:
            conn.missed_probes += 1
            logger.debug("Connection %s missed heartbeat (%d in a row)", conn.id, conn.missed_probes)
            if self.enforcing and conn.missed_probes >= self._max_missed:
                logger.info(
                    "Closing connection %s after %d missed heartbeats", conn.id, conn.missed_probes
                )
                await self._expire(conn)
                return False

        conn.last_probe_at = datetime.now(timezone.utc)
        conn.probe_pending = True
        try:
            await conn.transport.send(messages.heartbeat())
        except Exception as e:
            logger.debug("Heartbeat send failed for connection %s: %s", conn.id, e)
            return False
        return True

    async def _expire(self, conn: Connection) -> None:
        if self._on_timeout is not None:
            await self._on_timeout(conn.id)
        try:
            await conn.transport.close(code=HEARTBEAT_TIMEOUT_CODE, reason="heartbeat_timeout")
        except Exception as e:
            logger.debug("Close after heartbeat timeout failed for %s: %s", conn.id, e)
