"""
SQL-backed user directory used by the relay for optional identity binding.

Every call runs its query in the default executor with its own session, so
the event loop never blocks on SQLite.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from duolink.core.memory.db import db_session
from duolink.core.memory.models import User
from duolink.core.memory.repository import ConnectionRepository, UserRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "status": user.status,
    }


class SqlUserDirectory:
    """UserDirectory over the SQLAlchemy repositories."""

    async def _run(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def resolve(self, user_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        """Look a user up by numeric id or by username."""
        def _fetch() -> Optional[Dict[str, Any]]:
            with db_session() as db:
                if isinstance(user_id, int) or str(user_id).isdigit():
                    user = UserRepository.get_by_id(db, int(user_id))
                else:
                    user = UserRepository.get_by_username(db, str(user_id))
                return user_to_dict(user) if user else None
        return await self._run(_fetch)

    async def record_connection(self, user_id: int, connection_id: str, room_id: Optional[str]) -> None:
        def _record() -> None:
            with db_session() as db:
                ConnectionRepository.add(db, user_id, connection_id, room_id)
        await self._run(_record)

    async def record_disconnection(self, connection_id: str) -> None:
        def _record() -> None:
            with db_session() as db:
                ConnectionRepository.remove(db, connection_id)
        await self._run(_record)

    async def update_room(self, connection_id: str, room_id: Optional[str]) -> None:
        def _update() -> None:
            with db_session() as db:
                ConnectionRepository.update_room(db, connection_id, room_id)
        await self._run(_update)

    async def set_status(self, user_id: int, status: str) -> None:
        def _update() -> None:
            with db_session() as db:
                if not UserRepository.update_status(db, user_id, status):
                    logger.debug("Status update for unknown user %s ignored", user_id)
        await self._run(_update)

    async def reset_connections(self) -> int:
        """Forget connections left over from a previous process."""
        def _clear() -> int:
            with db_session() as db:
                return ConnectionRepository.clear(db)
        return await self._run(_clear)
