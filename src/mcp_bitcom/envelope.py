"""Bitcom envelope scanning and building.

An envelope lives after the first OP_RETURN of a script:

    <prefix> OP_RETURN <tag> <payload...> | <tag> <payload...> | ...

- Prefix: everything before OP_RETURN, kept verbatim (often OP_FALSE)
- Tag: one push naming the sub-protocol of the entry
- Payload: the raw opcodes up to the next delimiter
- Delimiter: a direct one-byte push of ``|``
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple, Union

from mcp_bitcom.primitives import (
    DELIMITER,
    OP_RETURN,
    encode_push_data,
    is_delimiter,
    iter_ops,
    read_op,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtocolEntry:
    """One tagged entry of an envelope.

    ``offset`` is the script position of the entry's tag opcode.
    """

    tag: bytes
    payload: bytes
    offset: int = 0


@dataclass(frozen=True)
class Envelope:
    """Decoded envelope structure."""

    prefix: bytes = b""
    entries: Tuple[ProtocolEntry, ...] = field(default_factory=tuple)

    def find(self, tag: Union[bytes, str]) -> Tuple[ProtocolEntry, ...]:
        """Entries with exactly the given tag, in script order."""
        tag = _as_bytes(tag)
        return tuple(entry for entry in self.entries if entry.tag == tag)

    def to_script(self) -> bytes:
        """Serialize back into script bytes."""
        return build(self.prefix, self.entries)


EntryLike = Union[ProtocolEntry, Tuple[Union[bytes, str], bytes]]


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def find_marker(script: bytes) -> Optional[int]:
    """Offset of the first OP_RETURN opcode, or None.

    Bytes inside pushed data are never mistaken for the opcode.
    """
    for offset, chunk in iter_ops(script):
        if chunk.op == OP_RETURN:
            return offset
    return None


def find_delimiter(script: bytes, start: int) -> Optional[int]:
    """Offset of the next delimiter push at or after ``start``, or None."""
    for offset, chunk in iter_ops(script, start):
        if is_delimiter(chunk):
            return offset
    return None


def scan(script: bytes) -> Optional[Envelope]:
    """Split a script into its envelope entries.

    Args:
        script: Output script bytes

    Returns:
        The decoded Envelope, or None if the script has no OP_RETURN.
        Never raises for any byte input.
    """
    script = bytes(script or b"")
    marker = find_marker(script)
    if marker is None:
        return None

    entries = []
    pos = marker + 1
    while pos < len(script):
        offset = pos
        tag_chunk, pos = read_op(script, pos)
        delimiter = find_delimiter(script, pos)
        if delimiter is None:
            entries.append(ProtocolEntry(tag_chunk.data, script[pos:], offset))
            break
        entries.append(ProtocolEntry(tag_chunk.data, script[pos:delimiter], offset))
        # The delimiter is a two byte direct push
        pos = delimiter + 2

    logger.debug("Scanned envelope with %d entries", len(entries))
    return Envelope(prefix=script[:marker], entries=tuple(entries))


def build(prefix: bytes, entries: Iterable[EntryLike]) -> bytes:
    """Serialize a prefix and ordered entries into a script.

    Payloads are appended raw; they are expected to already be a sequence of
    pushes. OP_RETURN is only emitted when there is at least one entry.

    Args:
        prefix: Bytes placed before OP_RETURN
        entries: ProtocolEntry objects or (tag, payload) pairs

    Returns:
        Script bytes
    """
    script = bytearray(prefix)
    items = list(entries)
    if not items:
        return bytes(script)

    script.append(OP_RETURN)
    for i, item in enumerate(items):
        if isinstance(item, ProtocolEntry):
            tag, payload = item.tag, item.payload
        else:
            tag, payload = item
        script += encode_push_data(_as_bytes(tag))
        script += payload
        if i < len(items) - 1:
            script += encode_push_data(DELIMITER)
    return bytes(script)
