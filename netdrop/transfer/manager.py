"""
Transfer Manager: fans a payload out to many peers and accepts payloads
from many concurrent inbound connections.

One failing peer never affects the others: every per-peer attempt ends in
a TransferOutcome, and every inbound connection is handled on its own task.
"""

import asyncio
import logging
import os
from collections import deque
from ipaddress import IPv4Address

from netdrop.config import (
    CHUNK_SIZE,
    CONNECT_TIMEOUT,
    DEFAULT_SAVE_DIR,
    HISTORY_LIMIT,
    LISTEN_HOST,
    TRANSFER_PORT,
)
from netdrop.errors import PayloadError, ProtocolError
from netdrop.transfer.models import (
    FilePayload,
    OutcomeKind,
    ReceivedPayload,
    TextPayload,
    TransferOutcome,
    TransferReport,
)
from netdrop.transfer.protocol import read_header, receive_payload, send_payload

logger = logging.getLogger(__name__)


class TransferManager:
    """Dispatches payloads to peers and runs the inbound listener."""

    def __init__(
        self,
        port: int = TRANSFER_PORT,
        buffer_size: int = CHUNK_SIZE,
        save_dir: str = DEFAULT_SAVE_DIR,
        connect_timeout: float | None = CONNECT_TIMEOUT,
        concurrency: int | None = None,
    ) -> None:
        self.port = port
        self.buffer_size = buffer_size
        self._save_dir = save_dir
        self._connect_timeout = connect_timeout
        self._concurrency = concurrency
        self._reports: deque[TransferReport] = deque(maxlen=HISTORY_LIMIT)
        self._received: deque[ReceivedPayload] = deque(maxlen=HISTORY_LIMIT)
        self._lock = asyncio.Lock()
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._receiver_server: asyncio.Server | None = None
        self._receiver_port = 0

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    @property
    def receiver_port(self) -> int:
        return self._receiver_port

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    # --- Outbound fan-out ---

    async def dispatch_to_all(
        self,
        peers,
        payload: FilePayload | TextPayload,
    ) -> TransferReport:
        """
        Send ``payload`` to every peer concurrently.

        Waits until every attempt has finished and returns the per-peer
        outcomes; connect failures and mid-transfer errors are recorded,
        never raised.
        """
        peers = sorted({IPv4Address(p) for p in peers})
        report = TransferReport(payload_name=payload.name, payload_size=payload.size)
        if not peers:
            logger.warning(f"No peers to send '{payload.name}' to")
            return report

        semaphore = asyncio.Semaphore(self._concurrency) if self._concurrency else None

        async def attempt(peer: IPv4Address) -> TransferOutcome:
            if semaphore is None:
                return await self._send_to_peer(peer, payload)
            async with semaphore:
                return await self._send_to_peer(peer, payload)

        logger.info(f"Sending '{payload.name}' ({payload.size} bytes) to {len(peers)} peer(s)")
        report.outcomes = list(await asyncio.gather(*(attempt(p) for p in peers)))

        async with self._lock:
            self._reports.append(report)

        logger.info(f"Fan-out complete: {report.summary()}")
        await self._emit("transfer_report", report.model_dump(mode="json"))
        return report

    async def _send_to_peer(
        self, peer: IPv4Address, payload: FilePayload | TextPayload
    ) -> TransferOutcome:
        """Deliver one payload to one peer; every failure becomes an outcome."""
        try:
            connect = asyncio.open_connection(str(peer), self.port)
            if self._connect_timeout:
                connect = asyncio.wait_for(connect, timeout=self._connect_timeout)
            reader, writer = await connect
        except (OSError, asyncio.TimeoutError) as e:
            reason = str(e) or type(e).__name__
            logger.warning(f"Could not connect to {peer}:{self.port}: {reason}")
            return TransferOutcome(
                peer_address=peer,
                outcome=OutcomeKind.CONNECT_FAILED,
                error_message=reason,
            )

        try:
            with payload.open() as source:
                sent = await send_payload(
                    writer, payload.name, payload.size, source, self.buffer_size
                )
            writer.write_eof()
            await writer.drain()
            logger.info(f"Sent '{payload.name}' to {peer} ({sent} bytes)")
            return TransferOutcome(
                peer_address=peer, bytes_transferred=sent, outcome=OutcomeKind.SUCCESS
            )
        except (OSError, ProtocolError, PayloadError) as e:
            logger.error(f"Send error for {payload.name} to {peer}: {e}")
            return TransferOutcome(
                peer_address=peer,
                outcome=OutcomeKind.PROTOCOL_ERROR,
                error_message=str(e),
            )
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except Exception:
                pass

    # --- Inbound listener ---

    async def start(self, host: str = LISTEN_HOST, port: int | None = None) -> None:
        """
        Start accepting inbound transfers.

        Raises:
            OSError: the port could not be bound.
        """
        port = self.port if port is None else port
        self._receiver_server = await asyncio.start_server(
            self._handle_incoming_connection, host, port
        )
        self._receiver_port = self._receiver_server.sockets[0].getsockname()[1]
        logger.info(f"Transfer receiver listening on {host}:{self._receiver_port}")

    async def serve_forever(self) -> None:
        if self._receiver_server is None:
            await self.start()
        async with self._receiver_server:
            await self._receiver_server.serve_forever()

    async def stop(self) -> None:
        """Stop the receiver listener."""
        if self._receiver_server:
            self._receiver_server.close()
            await self._receiver_server.wait_closed()
            self._receiver_server = None
        logger.info("Transfer manager stopped")

    async def get_reports(self) -> list[TransferReport]:
        async with self._lock:
            return list(self._reports)

    async def get_received(self) -> list[ReceivedPayload]:
        async with self._lock:
            return list(self._received)

    async def _handle_incoming_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Receive frames from one connection until the peer closes it."""
        peer = writer.get_extra_info("peername")
        peer_address = peer[0] if peer else ""
        try:
            while True:
                try:
                    header = await read_header(reader)
                except asyncio.IncompleteReadError as e:
                    if e.partial:
                        raise ProtocolError(
                            f"Connection closed inside header ({len(e.partial)} bytes)"
                        ) from e
                    break  # clean close on a frame boundary

                received = await receive_payload(
                    reader,
                    save_dir=self._save_dir,
                    peer_address=peer_address,
                    buffer_size=self.buffer_size,
                    header=header,
                )
                await self._record(received)

        except (OSError, ProtocolError, ValueError) as e:
            logger.error(f"Receive error from {peer_address}: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except Exception:
                pass

    async def _record(self, received: ReceivedPayload) -> None:
        async with self._lock:
            self._received.append(received)

        if received.is_text:
            logger.info(f"Text received from {received.peer_address} ({received.size} bytes)")
            await self._emit("text_received", received.model_dump(mode="json"))
        else:
            logger.info(f"File {received.name} received successfully ({received.size} bytes)")
            await self._emit("payload_received", received.model_dump(mode="json"))
