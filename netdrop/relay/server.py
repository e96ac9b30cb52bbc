"""
Broadcast relay server.

Every connected peer sends newline-terminated lines. A plain line is
relayed to all other peers prefixed with the sender's address; a line
``file:<name>`` is followed by one framed transfer, which the relay saves
and then announces to the other peers.
"""

import asyncio
import logging

from netdrop.config import CHUNK_SIZE, DEFAULT_SAVE_DIR, LISTEN_HOST, RELAY_PORT
from netdrop.errors import ProtocolError
from netdrop.relay.registry import ConnectionRegistry
from netdrop.transfer.models import FILE_SHARE_PREFIX
from netdrop.transfer.protocol import receive_payload

logger = logging.getLogger(__name__)


class RelayServer:
    """Accepts relay peers and rebroadcasts their lines and file shares."""

    def __init__(
        self,
        save_dir: str = DEFAULT_SAVE_DIR,
        buffer_size: int = CHUNK_SIZE,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self.save_dir = save_dir
        self.buffer_size = buffer_size
        self.registry = registry or ConnectionRegistry()
        self._server: asyncio.Server | None = None
        self._port = 0

    @property
    def port(self) -> int:
        return self._port

    async def start(self, host: str = LISTEN_HOST, port: int = RELAY_PORT) -> None:
        """Bind the relay port. Raises ``OSError`` if it is taken."""
        self._server = await asyncio.start_server(self._handle_client, host, port)
        self._port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Relay server started on port {self._port}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        address = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        await self.registry.add(writer)

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                message = line.decode("utf-8", errors="replace").rstrip("\r\n")

                if message.startswith(FILE_SHARE_PREFIX):
                    await self._handle_file_share(reader, writer, address, message[len(FILE_SHARE_PREFIX):])
                else:
                    await self.registry.broadcast(f"{address}: {message}", writer)

        except (OSError, ProtocolError, asyncio.IncompleteReadError, ValueError) as e:
            logger.warning(f"Dropping relay client {address}: {e}")
        finally:
            await self.registry.remove(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except Exception:
                pass

    async def _handle_file_share(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        address: str,
        announced_name: str,
    ) -> None:
        logger.info(f"Receiving file: {announced_name} from {address}")
        received = await receive_payload(
            reader,
            save_dir=self.save_dir,
            peer_address=address,
            buffer_size=self.buffer_size,
        )

        if received.is_text:
            await self.registry.broadcast(f"{address}: {received.text}", writer)
            return

        logger.info(f"File {received.name} received successfully")
        await self.registry.broadcast(f"[FILE] {address} shared a file: {received.name}", writer)
