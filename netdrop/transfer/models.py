"""Pydantic models and wire constants for payload transfer."""

import io
import os
import time
from enum import Enum
from ipaddress import IPv4Address
from typing import BinaryIO

from pydantic import BaseModel, Field

from netdrop.errors import MalformedHeader, MalformedSize, PayloadError

# --- Wire protocol constants ---

SIZE_FIELD_WIDTH = 10
NAME_FIELD_WIDTH = 64
HEADER_SIZE = SIZE_FIELD_WIDTH + NAME_FIELD_WIDTH  # 74
FILLER = b":"
TEXT_SENTINEL = "text"
FILE_SHARE_PREFIX = "file:"


class TransferHeader(BaseModel):
    """Fixed-width preamble announcing the payload that follows on the wire."""
    payload_size: int = Field(ge=0, lt=2**64)
    payload_name: str

    @property
    def is_text(self) -> bool:
        return self.payload_name == TEXT_SENTINEL

    def encode(self) -> bytes:
        """
        Render the 74-byte header.

        Each field is right-padded with ``:``; values at or beyond the field
        width are cut to the width instead.
        """
        size_field = str(self.payload_size).encode("ascii")[:SIZE_FIELD_WIDTH]
        name_field = self.payload_name.encode("utf-8")[:NAME_FIELD_WIDTH]
        return (
            size_field.ljust(SIZE_FIELD_WIDTH, FILLER)
            + name_field.ljust(NAME_FIELD_WIDTH, FILLER)
        )

    @classmethod
    def decode(cls, raw: bytes) -> "TransferHeader":
        if len(raw) != HEADER_SIZE:
            raise MalformedHeader(f"Header must be {HEADER_SIZE} bytes, got {len(raw)}")

        size_field = raw[:SIZE_FIELD_WIDTH].rstrip(FILLER)
        if not size_field.isdigit():
            raise MalformedSize(f"Invalid size field: {raw[:SIZE_FIELD_WIDTH]!r}")

        # a multi-byte character cut by truncation is dropped
        name = raw[SIZE_FIELD_WIDTH:].rstrip(FILLER).decode("utf-8", errors="ignore")
        return cls(payload_size=int(size_field), payload_name=name)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    CONNECT_FAILED = "connect_failed"
    PROTOCOL_ERROR = "protocol_error"


class TransferOutcome(BaseModel):
    """Result of delivering one payload to one peer."""
    peer_address: IPv4Address
    bytes_transferred: int = 0
    outcome: OutcomeKind
    error_message: str | None = None


class TransferReport(BaseModel):
    """Per-peer outcomes of one fan-out."""
    payload_name: str
    payload_size: int
    outcomes: list[TransferOutcome] = []
    finished_at: float = Field(default_factory=time.time)

    @property
    def succeeded(self) -> list[TransferOutcome]:
        return [o for o in self.outcomes if o.outcome == OutcomeKind.SUCCESS]

    @property
    def failed(self) -> list[TransferOutcome]:
        return [o for o in self.outcomes if o.outcome != OutcomeKind.SUCCESS]

    def summary(self) -> str:
        return (
            f"'{self.payload_name}' ({self.payload_size} bytes): "
            f"{len(self.succeeded)}/{len(self.outcomes)} peers succeeded"
        )


class ReceivedPayload(BaseModel):
    """A payload taken off an inbound connection."""
    name: str
    size: int
    peer_address: str
    path: str | None = None  # set for file payloads
    text: str | None = None  # set for the text sentinel
    received_at: float = Field(default_factory=time.time)

    @property
    def is_text(self) -> bool:
        return self.text is not None


# --- Payload sources ---

class FilePayload(BaseModel):
    """A file on disk, sent under its base name."""
    path: str
    name: str
    size: int

    @classmethod
    def from_path(cls, path: str) -> "FilePayload":
        try:
            size = os.stat(path).st_size
        except OSError as e:
            raise PayloadError(f"Cannot stat {path}: {e}") from e
        if not os.path.isfile(path):
            raise PayloadError(f"{path} is not a regular file")
        return cls(path=path, name=os.path.basename(path), size=size)

    def open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except OSError as e:
            raise PayloadError(f"Cannot open {self.path}: {e}") from e


class TextPayload(BaseModel):
    """An in-memory text message, sent under the reserved ``text`` name."""
    text: str

    @property
    def name(self) -> str:
        return TEXT_SENTINEL

    @property
    def data(self) -> bytes:
        return self.text.encode("utf-8")

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)
