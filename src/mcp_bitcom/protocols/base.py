"""Base protocol class for Bitcom sub-protocol records."""

from abc import ABC, abstractmethod
from typing import Callable, ClassVar, Iterable

from mcp_bitcom.envelope import ProtocolEntry
from mcp_bitcom.primitives import encode_push_data

# verify(address, signature, message) -> bool
Verifier = Callable[[str, bytes, bytes], bool]


class Protocol(ABC):
    """Base class for records decoded from an envelope entry."""

    tag: ClassVar[bytes]

    @abstractmethod
    def to_payload(self) -> bytes:
        """Convert to the push sequence carried after the tag."""
        pass  # pragma: no cover

    def to_entry(self) -> ProtocolEntry:
        """Convert to an envelope entry."""
        return ProtocolEntry(tag=self.tag, payload=self.to_payload())


def as_text(data: bytes) -> str:
    """Decode pushed data as text, replacing invalid UTF-8."""
    return data.decode("utf-8", errors="replace")


def push_all(items: Iterable[bytes]) -> bytes:
    return b"".join(encode_push_data(item) for item in items)
