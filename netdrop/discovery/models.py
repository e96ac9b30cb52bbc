"""Pydantic models for subnet discovery."""

import ipaddress
from ipaddress import IPv4Address, IPv4Network

from pydantic import BaseModel, ConfigDict, Field, model_validator

from netdrop.errors import InvalidRange


class NetworkRange(BaseModel):
    """An IPv4 network: masked base address plus prefix length."""
    model_config = ConfigDict(frozen=True)

    base_address: IPv4Address
    prefix_length: int = Field(ge=0, le=32)

    @model_validator(mode="after")
    def _check_masked(self) -> "NetworkRange":
        network = IPv4Network((int(self.base_address), self.prefix_length), strict=False)
        if network.network_address != self.base_address:
            raise InvalidRange(
                f"{self.base_address} is not the network address of "
                f"/{self.prefix_length} (expected {network.network_address})"
            )
        return self

    @classmethod
    def parse(cls, cidr: str) -> "NetworkRange":
        """Build a range from CIDR text; host bits are masked off."""
        try:
            network = ipaddress.IPv4Network(cidr, strict=False)
        except (ValueError, TypeError) as e:
            raise InvalidRange(f"Invalid subnet {cidr!r}: {e}") from e
        return cls(base_address=network.network_address, prefix_length=network.prefixlen)

    @classmethod
    def containing(cls, address: IPv4Address, prefix_length: int) -> "NetworkRange":
        """The range of the given prefix that contains ``address``."""
        network = IPv4Network((int(address), prefix_length), strict=False)
        return cls(base_address=network.network_address, prefix_length=prefix_length)

    @property
    def network(self) -> IPv4Network:
        return IPv4Network((int(self.base_address), self.prefix_length))

    @property
    def num_addresses(self) -> int:
        return 2 ** (32 - self.prefix_length)

    def __str__(self) -> str:
        return f"{self.base_address}/{self.prefix_length}"
