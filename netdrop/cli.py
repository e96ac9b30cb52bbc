"""Command-line entry point: scan, send, listen, relay, chat and serve."""

import argparse
import asyncio
import logging
import sys
from ipaddress import IPv4Address

from netdrop.config import (
    API_HOST,
    API_PORT,
    CHUNK_SIZE,
    DEFAULT_SAVE_DIR,
    DISCOVERY_CONCURRENCY,
    LISTEN_HOST,
    RELAY_PORT,
    TRANSFER_PORT,
)
from netdrop.discovery.service import DiscoveryService
from netdrop.errors import NoInterfaceFound, PayloadError
from netdrop.relay.client import run_client
from netdrop.relay.server import RelayServer
from netdrop.transfer.manager import TransferManager
from netdrop.transfer.models import FilePayload, TextPayload

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netdrop", description="Discover LAN peers and push files or text to them"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--buffer-size", type=int, default=CHUNK_SIZE, help="copy buffer in bytes")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="list reachable hosts on the local subnet")
    scan.add_argument("--workers", type=int, default=DISCOVERY_CONCURRENCY)

    for name, help_text in (("send", "send a file"), ("text", "send a text message")):
        p = sub.add_parser(name, help=f"{help_text} to peers")
        p.add_argument("payload", help="file path" if name == "send" else "message text")
        p.add_argument("--peer", action="append", type=IPv4Address, default=[],
                       help="target address (repeatable); discovers peers when omitted")
        p.add_argument("--port", type=int, default=TRANSFER_PORT)
        p.add_argument("--workers", type=int, default=DISCOVERY_CONCURRENCY)

    listen = sub.add_parser("listen", help="accept inbound transfers")
    listen.add_argument("--host", default=LISTEN_HOST)
    listen.add_argument("--port", type=int, default=TRANSFER_PORT)
    listen.add_argument("--save-dir", default=DEFAULT_SAVE_DIR)

    relay = sub.add_parser("relay", help="run the broadcast relay")
    relay.add_argument("--host", default=LISTEN_HOST)
    relay.add_argument("--port", type=int, default=RELAY_PORT)
    relay.add_argument("--save-dir", default=DEFAULT_SAVE_DIR)

    chat = sub.add_parser("chat", help="join a broadcast relay")
    chat.add_argument("--host", default="localhost")
    chat.add_argument("--port", type=int, default=RELAY_PORT)

    serve = sub.add_parser("serve", help="run the HTTP control API")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)
    return parser


async def _peers(args) -> list[IPv4Address]:
    if args.peer:
        return args.peer
    return sorted(await DiscoveryService(concurrency=args.workers).discover())


async def cmd_scan(args) -> int:
    peers = await DiscoveryService(concurrency=args.workers).discover()
    for ip in sorted(peers):
        print(ip)
    return 0


async def cmd_send(args) -> int:
    if args.command == "send":
        payload = FilePayload.from_path(args.payload)
    else:
        payload = TextPayload(text=args.payload)

    peers = await _peers(args)
    if not peers:
        print("No active devices found")
        return 0

    manager = TransferManager(port=args.port, buffer_size=args.buffer_size)
    report = await manager.dispatch_to_all(peers, payload)
    for outcome in report.outcomes:
        detail = f" ({outcome.error_message})" if outcome.error_message else ""
        print(f"{outcome.peer_address}: {outcome.outcome.value}, "
              f"{outcome.bytes_transferred} bytes{detail}")
    print(report.summary())
    return 1 if report.failed else 0


async def cmd_listen(args) -> int:
    manager = TransferManager(port=args.port, buffer_size=args.buffer_size, save_dir=args.save_dir)

    async def print_text(event_type: str, data: dict) -> None:
        if event_type == "text_received":
            print(data["text"], flush=True)

    manager.on_event(print_text)
    await manager.start(args.host)
    await manager.serve_forever()
    return 0


async def cmd_relay(args) -> int:
    server = RelayServer(save_dir=args.save_dir, buffer_size=args.buffer_size)
    await server.start(args.host, args.port)
    await server.serve_forever()
    return 0


async def cmd_chat(args) -> int:
    await run_client(args.host, args.port, buffer_size=args.buffer_size)
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "send": cmd_send,
    "text": cmd_send,
    "listen": cmd_listen,
    "relay": cmd_relay,
    "chat": cmd_chat,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "serve":
        from netdrop.main import run
        run(args.host, args.port)
        return 0

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except NoInterfaceFound as e:
        logger.error(f"Error getting subnet: {e}")
    except PayloadError as e:
        logger.error(str(e))
    except OSError as e:
        logger.error(f"Network error: {e}")
    except KeyboardInterrupt:
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
