"""
Liveness probes used by the discovery service.

Any object with an ``async probe(address) -> bool`` method can be plugged
into :class:`~netdrop.discovery.service.DiscoveryService`.
"""

import asyncio
import logging
import platform
from ipaddress import IPv4Address
from typing import Protocol

from netdrop.config import PROBE_TIMEOUT

logger = logging.getLogger(__name__)


class LivenessProbe(Protocol):
    async def probe(self, address: IPv4Address) -> bool:
        ...


class PingProbe:
    """Sends a single ICMP echo request through the system ``ping`` utility."""

    def __init__(self, timeout: float = PROBE_TIMEOUT) -> None:
        self.timeout = timeout
        self._windows = platform.system().lower() == "windows"

    def command(self, address: IPv4Address) -> list[str]:
        if self._windows:
            return ["ping", "-n", "1", "-w", str(int(self.timeout * 1000)), str(address)]
        return ["ping", "-c", "1", "-W", str(max(1, round(self.timeout))), str(address)]

    async def probe(self, address: IPv4Address) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command(address),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Could not run ping for {address}: {e}")
            return False

        try:
            # ping enforces its own timeout; this is a backstop
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout + 2)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return False

        return proc.returncode == 0 and b"ttl=" in stdout.lower()
