"""Registry of live relay connections."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks connected relay peers and broadcasts lines to them."""

    def __init__(self) -> None:
        self._connections: dict[asyncio.StreamWriter, bool] = {}
        self._lock = asyncio.Lock()

    async def add(self, writer: asyncio.StreamWriter) -> None:
        async with self._lock:
            self._connections[writer] = True
        logger.info(f"Relay client connected. Total: {len(self._connections)}")

    async def remove(self, writer: asyncio.StreamWriter) -> None:
        async with self._lock:
            self._connections.pop(writer, None)
        logger.info(f"Relay client disconnected. Total: {len(self._connections)}")

    async def count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def broadcast(self, message: str, sender: asyncio.StreamWriter | None = None) -> int:
        """
        Send ``message`` as one line to every connection except ``sender``.

        Returns the number of peers the line was delivered to. A peer that
        fails is skipped; the lock is released before any drain.
        """
        data = (message.rstrip("\n") + "\n").encode("utf-8")
        logger.info(f"Broadcasting message: {message}")

        async with self._lock:
            targets = []
            for writer in self._connections:
                if writer is sender or writer.is_closing():
                    continue
                try:
                    writer.write(data)
                except Exception as e:
                    logger.debug(f"Skipping peer during broadcast: {e}")
                    continue
                targets.append(writer)

        delivered = 0
        for writer in targets:
            try:
                await writer.drain()
                delivered += 1
            except Exception as e:
                logger.debug(f"Broadcast to peer failed: {e}")
        return delivered
