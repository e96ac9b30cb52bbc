"""
Subnet scanning discovery service.

Resolves the local subnet, expands it into candidate host addresses and
probes them with a bounded pool of concurrent workers. Addresses that
answer make up the peer set.
"""

import asyncio
import logging
import time
from ipaddress import IPv4Address

from netdrop.config import DISCOVERY_CONCURRENCY, MIN_PREFIX_LENGTH
from netdrop.discovery.models import NetworkRange
from netdrop.discovery.probe import LivenessProbe, PingProbe
from netdrop.discovery.subnet import SubnetResolver, expand

logger = logging.getLogger(__name__)


class DiscoveryService:
    """Finds reachable hosts on the local IPv4 subnet."""

    def __init__(
        self,
        resolver: SubnetResolver | None = None,
        probe: LivenessProbe | None = None,
        concurrency: int = DISCOVERY_CONCURRENCY,
        min_prefix_length: int = MIN_PREFIX_LENGTH,
    ) -> None:
        self._resolver = resolver or SubnetResolver()
        self._probe = probe or PingProbe()
        self._concurrency = max(1, concurrency)
        self._min_prefix_length = min_prefix_length
        self._peers: frozenset[IPv4Address] = frozenset()
        self._last_scan: float | None = None
        self._lock = asyncio.Lock()
        self._on_peer_change: list = []  # callbacks: async def fn(event, data)

    @property
    def last_scan(self) -> float | None:
        return self._last_scan

    def on_peer_change(self, callback) -> None:
        """Register a callback for scan-complete events."""
        self._on_peer_change.append(callback)

    async def get_peers(self) -> frozenset[IPv4Address]:
        """Return the peer set of the most recent scan."""
        async with self._lock:
            return self._peers

    def scan_range(self, network_range: NetworkRange) -> NetworkRange:
        """Narrow an overly wide network to the slice around our own address."""
        host = getattr(self._resolver, "host_address", None)
        if network_range.prefix_length >= self._min_prefix_length or host is None:
            return network_range
        narrowed = NetworkRange.containing(host, self._min_prefix_length)
        logger.info(f"Network {network_range} is too wide, scanning {narrowed} instead")
        return narrowed

    async def discover(self) -> frozenset[IPv4Address]:
        """
        Run one scan of the local subnet.

        Returns the (possibly empty) set of addresses that answered.

        Raises:
            NoInterfaceFound: the local subnet could not be determined.
        """
        started = time.monotonic()
        network_range = self.scan_range(await asyncio.to_thread(self._resolver.resolve))
        own = getattr(self._resolver, "host_address", None)
        candidates = [ip for ip in expand(network_range) if ip != own]

        logger.info(f"Scanning network {network_range}: {len(candidates)} candidate addresses")
        peers = await self.probe_all(candidates)

        async with self._lock:
            self._peers = peers
            self._last_scan = time.time()

        elapsed = time.monotonic() - started
        if not peers:
            logger.warning(f"No active devices found on {network_range} ({elapsed:.2f}s)")
        else:
            logger.info(f"Active devices found: {len(peers)} ({elapsed:.2f}s)")

        for cb in self._on_peer_change:
            asyncio.ensure_future(cb("scan_complete", {"peers": sorted(str(p) for p in peers)}))
        return peers

    async def probe_all(self, addresses: list[IPv4Address]) -> frozenset[IPv4Address]:
        """Probe every address with at most ``concurrency`` probes in flight."""
        queue: asyncio.Queue[IPv4Address] = asyncio.Queue()
        for ip in addresses:
            queue.put_nowait(ip)

        found: set[IPv4Address] = set()
        found_lock = asyncio.Lock()

        async def worker() -> None:
            while True:
                try:
                    ip = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    alive = await self._probe.probe(ip)
                except Exception as e:
                    logger.debug(f"Probe of {ip} failed: {e}")
                    alive = False
                if alive:
                    logger.debug(f"{ip} is up")
                    async with found_lock:
                        found.add(ip)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self._concurrency, len(addresses)))
        ]
        await asyncio.gather(*workers)
        return frozenset(found)
