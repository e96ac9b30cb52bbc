"""
netdrop: FastAPI application entry point.

Starts the inbound transfer listener on startup and serves the REST API
and WebSocket event endpoint for driving scans and fan-outs.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from netdrop import __version__
from netdrop.api.routes import init_routes, router
from netdrop.api.websocket import EventHub
from netdrop.config import API_HOST, API_PORT
from netdrop.discovery.service import DiscoveryService
from netdrop.transfer.manager import TransferManager

logger = logging.getLogger(__name__)

# --- Service singletons ---
discovery_service = DiscoveryService()
transfer_manager = TransferManager()
event_hub = EventHub()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop the transfer listener."""
    logger.info("Starting netdrop services...")

    transfer_manager.on_event(event_hub.handle_event)
    discovery_service.on_peer_change(event_hub.handle_event)

    try:
        await transfer_manager.start()
    except OSError as e:
        logger.error(f"Cannot start transfer listener: {e}")
        raise

    logger.info(
        f"netdrop ready. API: {API_HOST}:{API_PORT}, "
        f"receiver port: {transfer_manager.receiver_port}"
    )
    try:
        yield
    finally:
        logger.info("Shutting down netdrop services...")
        await transfer_manager.stop()


app = FastAPI(
    title="netdrop",
    version=__version__,
    lifespan=lifespan,
)

init_routes(discovery_service, transfer_manager)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await event_hub.connect(websocket)
    try:
        while True:
            # Keep the connection alive; we don't expect client messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await event_hub.disconnect(websocket)
    except Exception:
        await event_hub.disconnect(websocket)


def run(host: str = API_HOST, port: int = API_PORT) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    run()
