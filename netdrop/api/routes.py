"""REST API routes for netdrop."""

import logging
import os
from ipaddress import IPv4Address

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from netdrop.errors import NoInterfaceFound, PayloadError
from netdrop.transfer.models import FilePayload, TextPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_discovery_service = None
_transfer_manager = None


def init_routes(discovery_service, transfer_manager) -> None:
    """Inject service dependencies into the routes module."""
    global _discovery_service, _transfer_manager
    _discovery_service = discovery_service
    _transfer_manager = transfer_manager


async def _target_peers(peers: list[IPv4Address] | None) -> list[IPv4Address]:
    if peers:
        return peers
    discovered = await _discovery_service.get_peers()
    if not discovered:
        raise HTTPException(status_code=409, detail="No peers discovered; run a scan first")
    return sorted(discovered)


# --- Device Discovery ---

@router.get("/devices")
async def list_devices():
    """Return the peer set of the last scan."""
    peers = await _discovery_service.get_peers()
    return {
        "devices": sorted(str(p) for p in peers),
        "last_scan": _discovery_service.last_scan,
    }


@router.post("/scan")
async def scan():
    """Scan the local subnet now."""
    try:
        peers = await _discovery_service.discover()
    except NoInterfaceFound as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"devices": sorted(str(p) for p in peers)}


# --- Transfers ---

class FileTransferBody(BaseModel):
    file_path: str
    peers: list[IPv4Address] | None = None


class TextTransferBody(BaseModel):
    text: str
    peers: list[IPv4Address] | None = None


@router.get("/transfers")
async def list_transfers():
    """Return sent reports and received payloads."""
    reports = await _transfer_manager.get_reports()
    received = await _transfer_manager.get_received()
    return {
        "sent": [r.model_dump(mode="json") for r in reports],
        "received": [r.model_dump(mode="json") for r in received],
    }


@router.post("/transfers")
async def create_transfer(body: FileTransferBody):
    """Send a file from the host's disk to the given or discovered peers."""
    try:
        payload = FilePayload.from_path(body.file_path)
    except PayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))

    peers = await _target_peers(body.peers)
    report = await _transfer_manager.dispatch_to_all(peers, payload)
    return report.model_dump(mode="json")


@router.post("/text")
async def send_text(body: TextTransferBody):
    peers = await _target_peers(body.peers)
    report = await _transfer_manager.dispatch_to_all(peers, TextPayload(text=body.text))
    return report.model_dump(mode="json")


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None
    buffer_size: int | None = Field(default=None, gt=0)


@router.get("/settings")
async def get_settings():
    return {
        "save_dir": _transfer_manager.save_dir,
        "buffer_size": _transfer_manager.buffer_size,
    }


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.save_dir is not None:
        if not os.path.isdir(body.save_dir):
            try:
                os.makedirs(body.save_dir, exist_ok=True)
            except OSError as e:
                raise HTTPException(
                    status_code=400, detail=f"Invalid directory: {e}"
                )
        _transfer_manager.save_dir = body.save_dir
    if body.buffer_size is not None:
        _transfer_manager.buffer_size = body.buffer_size
    return {"status": "updated"}
