"""
WebSocket route: /ws. Accept, register with the relay, message loop, disconnect.
"""
import logging

from fastapi import WebSocket, WebSocketDisconnect

from duolink.core.signaling.relay import SHUTDOWN_CLOSE_CODE, SignalingRelay
from duolink.core.signaling.transport import WebSocketTransport

logger = logging.getLogger(__name__)


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Accept a client and feed its frames to the relay until the socket closes."""
    relay: SignalingRelay = websocket.app.state.relay
    if not relay.running:
        await websocket.close(code=SHUTDOWN_CLOSE_CODE)
        return
    await websocket.accept()
    transport = WebSocketTransport(websocket)
    conn_id = await relay.connect(transport)
    logger.debug("WebSocket %s accepted from %s", conn_id, transport.remote)
    try:
        while True:
            try:
                message = await websocket.receive()
            except WebSocketDisconnect:
                break
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await relay.handle_frame(conn_id, raw)
    except Exception as e:
        logger.error("WebSocket error for connection %s: %s", conn_id, e, exc_info=True)
    finally:
        await relay.disconnect(conn_id)
