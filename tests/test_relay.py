"""
Tests for the broadcast relay: registry, server and client.
"""

import asyncio
import io
import time

import pytest

from netdrop.relay.client import run_client, send_line, share_file
from netdrop.relay.registry import ConnectionRegistry
from netdrop.relay.server import RelayServer
from netdrop.transfer.models import TransferHeader

TIMEOUT = 5


async def wait_until(predicate, timeout=TIMEOUT):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


async def connect(server, count):
    peers = [await asyncio.open_connection("127.0.0.1", server.port) for _ in range(count)]

    async def all_registered():
        return await server.registry.count() == count

    await wait_until(all_registered)
    return peers


def local_address(writer):
    host, port = writer.get_extra_info("sockname")[:2]
    return f"{host}:{port}"


async def close_all(server, peers):
    for _, writer in peers:
        writer.close()
        await writer.wait_closed()

    async def none_registered():
        return await server.registry.count() == 0

    await wait_until(none_registered)
    await server.stop()


class FakeWriter:
    def __init__(self, fail=False):
        self.fail = fail
        self.data = bytearray()

    def write(self, data):
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.data.extend(data)

    async def drain(self):
        pass

    def is_closing(self):
        return False


class TestConnectionRegistry:
    """Test registry bookkeeping and broadcast."""

    def test_broadcast_skips_sender_and_failures(self):
        sender, good, broken = FakeWriter(), FakeWriter(), FakeWriter(fail=True)

        async def run():
            registry = ConnectionRegistry()
            for w in (sender, good, broken):
                await registry.add(w)
            return await registry.broadcast("hello", sender)

        delivered = asyncio.run(run())

        assert delivered == 1
        assert good.data == b"hello\n"
        assert sender.data == b""

    def test_remove(self):
        async def run():
            registry = ConnectionRegistry()
            w = FakeWriter()
            await registry.add(w)
            await registry.remove(w)
            await registry.remove(w)
            return await registry.count(), await registry.broadcast("anyone?")

        assert asyncio.run(run()) == (0, 0)


class TestRelayServer:
    """Test the relay over loopback sockets."""

    def test_line_goes_to_everyone_but_sender(self, tmp_path):
        async def run():
            server = RelayServer(save_dir=str(tmp_path))
            await server.start("127.0.0.1", 0)
            (ra, wa), (rb, wb), (rc, wc) = peers = await connect(server, 3)

            await send_line(wa, "hello there")
            line_b = await asyncio.wait_for(rb.readline(), TIMEOUT)
            line_c = await asyncio.wait_for(rc.readline(), TIMEOUT)
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(ra.readline(), 0.2)

            expected = f"{local_address(wa)}: hello there\n".encode()
            await close_all(server, peers)
            return expected, line_b, line_c

        expected, line_b, line_c = asyncio.run(run())

        assert line_b == expected
        assert line_c == expected

    def test_file_share_is_saved_and_announced(self, tmp_path):
        src = tmp_path / "notes.txt"
        src.write_bytes(b"meeting at noon\n" * 100)
        inbox = tmp_path / "relay"
        inbox.mkdir()

        async def run():
            server = RelayServer(save_dir=str(inbox), buffer_size=256)
            await server.start("127.0.0.1", 0)
            (ra, wa), (rb, wb) = peers = await connect(server, 2)

            sent = await share_file(wa, str(src))
            notice = await asyncio.wait_for(rb.readline(), TIMEOUT)
            # the sender can keep chatting after the framed share
            await send_line(wa, "did you get it?")
            follow_up = await asyncio.wait_for(rb.readline(), TIMEOUT)

            address = local_address(wa)
            await close_all(server, peers)
            return sent, address, notice, follow_up

        sent, address, notice, follow_up = asyncio.run(run())

        assert sent == 1600
        assert notice == f"[FILE] {address} shared a file: notes.txt\n".encode()
        assert follow_up == f"{address}: did you get it?\n".encode()
        assert (inbox / "notes.txt").read_bytes() == src.read_bytes()

    def test_text_share_is_broadcast(self, tmp_path):
        frame = TransferHeader(payload_size=5, payload_name="text").encode() + b"howdy"

        async def run():
            server = RelayServer(save_dir=str(tmp_path))
            await server.start("127.0.0.1", 0)
            (ra, wa), (rb, wb) = peers = await connect(server, 2)

            wa.write(b"file:text\n" + frame)
            await wa.drain()
            line = await asyncio.wait_for(rb.readline(), TIMEOUT)

            address = local_address(wa)
            await close_all(server, peers)
            return address, line

        address, line = asyncio.run(run())

        assert line == f"{address}: howdy\n".encode()
        assert not (tmp_path / "text").exists()

    def test_disconnect_removes_peer(self, tmp_path):
        async def run():
            server = RelayServer(save_dir=str(tmp_path))
            await server.start("127.0.0.1", 0)
            (ra, wa), (rb, wb), (rc, wc) = await connect(server, 3)

            wc.close()
            await wc.wait_closed()

            async def two_left():
                return await server.registry.count() == 2

            await wait_until(two_left)
            delivered = await server.registry.broadcast("after c left")
            line = await asyncio.wait_for(rb.readline(), TIMEOUT)

            await close_all(server, [(ra, wa), (rb, wb)])
            return delivered, line

        delivered, line = asyncio.run(run())

        assert delivered == 2
        assert line == b"after c left\n"

    def test_malformed_share_drops_connection(self, tmp_path):
        async def run():
            server = RelayServer(save_dir=str(tmp_path))
            await server.start("127.0.0.1", 0)
            (ra, wa), (rb, wb) = await connect(server, 2)

            wa.write(b"file:bad\n" + b"zz::::::::" + b"bad".ljust(64, b":"))
            await wa.drain()
            leftover = await asyncio.wait_for(ra.read(), TIMEOUT)

            async def one_left():
                return await server.registry.count() == 1

            await wait_until(one_left)
            wa.close()
            await close_all(server, [(rb, wb)])
            return leftover

        assert asyncio.run(run()) == b""


class TestRelayClient:
    """Test the interactive client against a live relay."""

    def test_stdin_lines_are_relayed(self, tmp_path):
        src = tmp_path / "pic.bin"
        src.write_bytes(bytes(range(256)) * 10)
        inbox = tmp_path / "relay"
        inbox.mkdir()

        async def run():
            server = RelayServer(save_dir=str(inbox))
            await server.start("127.0.0.1", 0)
            [(rb, wb)] = peers = await connect(server, 1)

            stdin = io.StringIO(f"hi everyone\nfile:{src}\n")
            await run_client("127.0.0.1", server.port, stdin=stdin, out=io.StringIO())

            first = await asyncio.wait_for(rb.readline(), TIMEOUT)
            second = await asyncio.wait_for(rb.readline(), TIMEOUT)
            await close_all(server, peers)
            return first, second

        first, second = asyncio.run(run())

        assert first.endswith(b": hi everyone\n")
        assert second.endswith(b"shared a file: pic.bin\n")
        assert (inbox / "pic.bin").read_bytes() == src.read_bytes()

    def test_incoming_lines_are_printed(self, tmp_path):
        out = io.StringIO()

        class SlowStdin:
            """Yields one line, then EOF after the relay had time to answer."""

            def __init__(self):
                self.lines = ["ping\n"]

            def readline(self):
                if self.lines:
                    return self.lines.pop()
                time.sleep(0.5)
                return ""

        async def run():
            server = RelayServer(save_dir=str(tmp_path))
            await server.start("127.0.0.1", 0)
            [(rb, wb)] = peers = await connect(server, 1)

            client = asyncio.create_task(
                run_client("127.0.0.1", server.port, stdin=SlowStdin(), out=out)
            )
            await asyncio.wait_for(rb.readline(), TIMEOUT)
            await send_line(wb, "pong")
            await client
            await close_all(server, peers)

        asyncio.run(run())

        assert out.getvalue().endswith(": pong\n")
