"""WebSocket fan-out of transfer and discovery events."""

import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class EventHub:
    """Pushes manager and discovery events to every connected UI client."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        logger.info(f"WebSocket client connected. Total: {len(self._clients)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)
        logger.info(f"WebSocket client disconnected. Total: {len(self._clients)}")

    async def handle_event(self, event: str, data: dict) -> None:
        """
        Callback compatible with TransferManager.on_event()
        and DiscoveryService.on_peer_change().
        """
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            clients = list(self._clients)

        for ws in clients:
            try:
                await ws.send_text(message)
            except Exception:
                await self.disconnect(ws)
