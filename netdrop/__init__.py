"""netdrop: LAN peer discovery and fan-out file/text transfer."""

__version__ = "1.0.0"
