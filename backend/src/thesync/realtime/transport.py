"""Transport adapters delivering realtime frames to live sockets."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Protocol

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_connections

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class ConnectionTransport(Protocol):
    """What the coordinator needs from the socket layer."""

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        ...

    async def close(self, connection_id: str, *, code: int, reason: str) -> None:
        ...

    def is_connected(self, connection_id: str) -> bool:
        ...

    def connection_ids(self) -> Iterable[str]:
        ...


def build_frame(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": event, **payload}


class WebSocketTransport:
    """Maps connection ids to accepted FastAPI websockets."""

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        if connection_id not in self._sockets:
            realtime_connections.labels("websocket").inc()
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        if self._sockets.pop(connection_id, None) is not None:
            realtime_connections.labels("websocket").dec()

    def is_connected(self, connection_id: str) -> bool:
        websocket = self._sockets.get(connection_id)
        return (
            websocket is not None
            and websocket.application_state == WebSocketState.CONNECTED
        )

    def connection_ids(self) -> list[str]:
        return list(self._sockets)

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        return await safe_send_json(websocket, build_frame(event, payload))

    async def close(self, connection_id: str, *, code: int, reason: str) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.close(code=code, reason=reason)
        except RuntimeError as exc:
            logger.debug("Closing websocket %s failed: %s", connection_id, exc)


__all__ = ["ConnectionTransport", "WebSocketTransport", "build_frame", "safe_send_json"]
