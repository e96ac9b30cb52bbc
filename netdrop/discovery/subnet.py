"""
Local subnet resolution and host address expansion.

The resolver walks the host's network interfaces (via psutil) and picks
the IPv4 network the machine is attached to; ``expand`` turns that
network into the list of candidate host addresses to probe.
"""

import ipaddress
import logging
import socket
from ipaddress import IPv4Address

import psutil

from netdrop.config import VIRTUAL_INTERFACE_PREFIXES
from netdrop.discovery.models import NetworkRange
from netdrop.errors import InvalidRange, NoInterfaceFound

logger = logging.getLogger(__name__)

LINK_LOCAL = ipaddress.IPv4Network("169.254.0.0/16")


class SubnetResolver:
    """Finds the non-loopback IPv4 network of the local host."""

    def __init__(self, skip_prefixes: tuple[str, ...] = VIRTUAL_INTERFACE_PREFIXES) -> None:
        self._skip_prefixes = skip_prefixes
        self.host_address: IPv4Address | None = None

    def _candidates(self) -> list[tuple[str, IPv4Address, int]]:
        """(interface, address, prefix) for every usable IPv4 address, in interface order."""
        stats = psutil.net_if_stats()
        found = []
        for iface, addrs in psutil.net_if_addrs().items():
            if iface in stats and not stats[iface].isup:
                continue
            for addr in addrs:
                if addr.family != socket.AF_INET or not addr.netmask:
                    continue
                try:
                    ip = IPv4Address(addr.address)
                    prefix = ipaddress.IPv4Network(f"0.0.0.0/{addr.netmask}").prefixlen
                except ValueError:
                    logger.debug(f"Skipping unparsable address on {iface}: {addr.address}")
                    continue
                if ip.is_loopback or ip in LINK_LOCAL:
                    continue
                # first IPv4 address of the interface wins
                found.append((iface, ip, prefix))
                break
        return found

    def resolve(self) -> NetworkRange:
        """
        Return the network of the preferred interface.

        Physical adapters are preferred over virtual/bridge ones; when only
        virtual adapters exist the first of them is used.

        Raises:
            NoInterfaceFound: no interface carries a usable IPv4 address.
        """
        candidates = self._candidates()
        if not candidates:
            raise NoInterfaceFound("no valid network interface found")

        physical = [c for c in candidates if not c[0].startswith(self._skip_prefixes)]
        iface, ip, prefix = (physical or candidates)[0]
        self.host_address = ip

        network_range = NetworkRange.containing(ip, prefix)
        logger.info(f"Using interface {iface} ({ip}), network {network_range}")
        return network_range


def expand(network_range: NetworkRange | str) -> list[IPv4Address]:
    """
    List the host addresses of a network in ascending order.

    The network and broadcast addresses are dropped when the range holds
    more than two addresses; /31 and /32 ranges are returned whole.

    Raises:
        InvalidRange: ``network_range`` is CIDR text that does not parse.
    """
    if isinstance(network_range, str):
        network_range = NetworkRange.parse(network_range)

    first = int(network_range.base_address)
    ips = [IPv4Address(first + i) for i in range(network_range.num_addresses)]

    if len(ips) > 2:
        return ips[1:-1]
    return ips
