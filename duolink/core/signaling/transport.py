"""
Transport adapter: the small surface the relay needs from a live socket.
"""
from typing import Any, Dict, Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class Transport(Protocol):
    """One live client session as seen by the relay."""

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, obj: Dict[str, Any]) -> None:
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


class WebSocketTransport:
    """Wraps a FastAPI/Starlette WebSocket that has already been accepted."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def remote(self) -> Optional[str]:
        client = self._websocket.client
        if client is None:
            return None
        return f"{client.host}:{client.port}"

    async def send(self, obj: Dict[str, Any]) -> None:
        await self._websocket.send_json(obj)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self._websocket.close(code=code, reason=reason)
