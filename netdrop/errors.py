class NetdropError(Exception):
    pass


class NoInterfaceFound(NetdropError):
    """Raised when no non-loopback IPv4 interface is available."""


class InvalidRange(NetdropError):
    """Raised for malformed CIDR text or a base address that is not masked."""


class ProtocolError(NetdropError):
    pass


class MalformedSize(ProtocolError):
    """Raised when the size field is not a run of ASCII digits."""


class MalformedHeader(ProtocolError):
    """Raised for a short header or a name that cannot be used as a file name."""


class IncompleteTransfer(ProtocolError):
    """Raised when a stream ends before the announced payload size was moved."""


class PayloadError(NetdropError):
    """Raised when a local payload cannot be opened or stat'ed."""
