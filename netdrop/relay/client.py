"""Interactive relay client: stdin lines go to the relay, relayed lines are printed."""

import asyncio
import logging
import os
import sys

from netdrop.config import CHUNK_SIZE, RELAY_PORT
from netdrop.transfer.models import FILE_SHARE_PREFIX
from netdrop.transfer.protocol import send_file

logger = logging.getLogger(__name__)


async def send_line(writer: asyncio.StreamWriter, message: str) -> None:
    writer.write((message + "\n").encode("utf-8"))
    await writer.drain()


async def share_file(
    writer: asyncio.StreamWriter, file_path: str, buffer_size: int = CHUNK_SIZE
) -> int | None:
    """Announce a file share and send the framed file. None if it could not be opened."""
    name = os.path.basename(file_path)
    control = f"{FILE_SHARE_PREFIX}{name}\n".encode("utf-8")
    sent = await send_file(writer, file_path, buffer_size, preamble=control)
    if sent is not None:
        logger.info(f"File {file_path} sent successfully")
    return sent


async def listen_for_messages(reader: asyncio.StreamReader, out=None) -> None:
    out = out or sys.stdout
    while True:
        line = await reader.readline()
        if not line:
            logger.info("Disconnected from server")
            return
        out.write(line.decode("utf-8", errors="replace"))
        out.flush()


async def run_client(
    host: str = "localhost",
    port: int = RELAY_PORT,
    stdin=None,
    out=None,
    buffer_size: int = CHUNK_SIZE,
) -> None:
    """
    Connect to a relay and pump lines until stdin is exhausted.

    Raises:
        OSError: the relay could not be reached.
    """
    stdin = stdin or sys.stdin
    reader, writer = await asyncio.open_connection(host, port)
    listener = asyncio.create_task(listen_for_messages(reader, out))

    try:
        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            line = line.rstrip("\r\n")
            if line.startswith(FILE_SHARE_PREFIX):
                await share_file(writer, line[len(FILE_SHARE_PREFIX):].strip(), buffer_size)
            else:
                await send_line(writer, line)
    finally:
        listener.cancel()
        writer.close()
        try:
            await writer.wait_closed()
        except Exception:
            pass
