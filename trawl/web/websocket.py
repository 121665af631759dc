"""WebSocket streaming of status events.

Every connected client receives every StatusEvent of the engine as JSON.
Clients may send ``{"action": "ping"}`` to check the connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from trawl.common.status import StatusEvent, StatusReporter

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketManager:
    """Tracks WebSocket connections and broadcasts status events."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("WebSocket connected")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("WebSocket disconnected")

    async def broadcast(self, event: StatusEvent) -> None:
        """Send an event to every connection.

        Args:
            event: The status event to broadcast.
        """
        async with self._lock:
            connections = self._connections.copy()

        message = event.to_json()
        for websocket in connections:
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Failed to send to WebSocket: {e}")
                # Don't remove here - let the disconnect handler clean up

    @property
    def connection_count(self) -> int:
        return len(self._connections)


async def pump_events(
    reporter: StatusReporter, manager: WebSocketManager
) -> None:
    """Forward the reporter's events to the WebSocket clients until cancelled."""
    queue = reporter.subscribe()
    try:
        while True:
            event = await queue.get()
            await manager.broadcast(event)
    finally:
        reporter.unsubscribe(queue)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream status events of the running batch."""
    manager: WebSocketManager = websocket.app.state.ws_manager
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"error": "Invalid JSON"})
                continue
            action = (
                message.get("action") if isinstance(message, dict) else None
            )
            if action == "ping":
                await websocket.send_json({"status": "pong"})
            else:
                await websocket.send_json(
                    {"error": f"Unknown action: {action}"}
                )
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)


@router.get("/ws/status")
async def websocket_status(request: Request) -> dict[str, Any]:
    """Connection statistics."""
    manager: WebSocketManager = request.app.state.ws_manager
    return {"total_connections": manager.connection_count}
