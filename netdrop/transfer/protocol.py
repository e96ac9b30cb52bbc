"""
TCP wire protocol for payload transfer.

A transfer is a 74-byte header (10-byte decimal size, 64-byte name, both
padded with ``:``) followed by exactly ``size`` raw payload bytes. The
receiver never reads past the announced size, so several frames can
share one connection.
"""

import asyncio
import logging
import os
from typing import BinaryIO

from netdrop.config import CHUNK_SIZE, DEFAULT_SAVE_DIR
from netdrop.errors import IncompleteTransfer, MalformedHeader
from netdrop.transfer.models import (
    HEADER_SIZE,
    SIZE_FIELD_WIDTH,
    ReceivedPayload,
    TransferHeader,
)

logger = logging.getLogger(__name__)


async def write_header(writer: asyncio.StreamWriter, name: str, size: int) -> None:
    header = TransferHeader(payload_size=size, payload_name=name)
    if len(str(size)) > SIZE_FIELD_WIDTH:
        logger.warning(f"Size {size} of '{name}' does not fit the size field and will be truncated")
    writer.write(header.encode())
    await writer.drain()


async def read_header(reader: asyncio.StreamReader) -> TransferHeader:
    """Read one header. Raises ``asyncio.IncompleteReadError`` on a short read."""
    raw = await reader.readexactly(HEADER_SIZE)
    return TransferHeader.decode(raw)


async def send_payload(
    writer: asyncio.StreamWriter,
    name: str,
    size: int,
    source: BinaryIO,
    buffer_size: int = CHUNK_SIZE,
) -> int:
    """
    Send one framed payload.

    Writes the header, then copies exactly ``size`` bytes from ``source``.

    Returns:
        Number of payload bytes written.

    Raises:
        IncompleteTransfer: ``source`` ran dry before ``size`` bytes.
    """
    await write_header(writer, name, size)

    sent = 0
    while sent < size:
        chunk = await asyncio.to_thread(source.read, min(buffer_size, size - sent))
        if not chunk:
            raise IncompleteTransfer(f"Source for '{name}' ended after {sent} of {size} bytes")
        writer.write(chunk)
        await writer.drain()
        sent += len(chunk)
    return sent


async def send_file(
    writer: asyncio.StreamWriter,
    file_path: str,
    buffer_size: int = CHUNK_SIZE,
    preamble: bytes = b"",
) -> int | None:
    """
    Send a file from disk under its base name.

    ``preamble`` is written ahead of the header, and only once the file
    has been opened.

    Returns the number of bytes written, or None if the file could not be
    opened (logged, nothing is written to the connection).
    """
    try:
        f = open(file_path, "rb")
    except OSError as e:
        logger.error(f"Error opening file {file_path}: {e}")
        return None

    with f:
        try:
            size = os.fstat(f.fileno()).st_size
        except OSError as e:
            logger.error(f"Error reading file info for {file_path}: {e}")
            return None
        if preamble:
            writer.write(preamble)
        return await send_payload(writer, os.path.basename(file_path), size, f, buffer_size)


def safe_file_name(name: str) -> str:
    """Base name of a received payload name, directory parts stripped."""
    base = os.path.basename(name.replace("\\", "/"))
    if base in ("", ".", "..") or "\x00" in base:
        raise MalformedHeader(f"Unusable file name {name!r}")
    return base


async def copy_exact(
    reader: asyncio.StreamReader,
    sink: BinaryIO,
    size: int,
    buffer_size: int = CHUNK_SIZE,
) -> int:
    """Copy exactly ``size`` bytes from the connection into ``sink``."""
    remaining = size
    while remaining:
        try:
            chunk = await reader.readexactly(min(buffer_size, remaining))
        except asyncio.IncompleteReadError as e:
            raise IncompleteTransfer(
                f"Connection closed after {size - remaining + len(e.partial)} of {size} bytes"
            ) from e
        await asyncio.to_thread(sink.write, chunk)
        remaining -= len(chunk)
    return size


async def receive_payload(
    reader: asyncio.StreamReader,
    save_dir: str = DEFAULT_SAVE_DIR,
    peer_address: str = "",
    buffer_size: int = CHUNK_SIZE,
    header: TransferHeader | None = None,
) -> ReceivedPayload:
    """
    Receive one framed payload.

    Text payloads (the reserved ``text`` name) are returned in memory and
    never touch the disk. Anything else is written to ``save_dir`` under
    the base name from the header, replacing an existing file.

    Raises:
        asyncio.IncompleteReadError: the connection closed inside the header.
        MalformedSize, MalformedHeader: the header did not parse.
        IncompleteTransfer: the connection closed inside the payload; the
            partial file is removed.
    """
    if header is None:
        header = await read_header(reader)
    size, name = header.payload_size, header.payload_name

    if header.is_text:
        try:
            data = await reader.readexactly(size)
        except asyncio.IncompleteReadError as e:
            raise IncompleteTransfer(
                f"Connection closed after {len(e.partial)} of {size} text bytes"
            ) from e
        return ReceivedPayload(
            name=name, size=size, peer_address=peer_address,
            text=data.decode("utf-8", errors="replace"),
        )

    file_path = os.path.join(save_dir, safe_file_name(name))
    logger.info(f"Receiving file: {name} ({size} bytes) from {peer_address or 'peer'}")
    try:
        with open(file_path, "wb") as f:
            await copy_exact(reader, f, size, buffer_size)
    except IncompleteTransfer:
        # no truncated file is left behind
        os.remove(file_path)
        raise

    return ReceivedPayload(name=name, size=size, peer_address=peer_address, path=file_path)
