"""MAP (Magic Attribute Protocol) keyed records.

Payload layout: <command> <key> <value> <key> <value> ...

A value pushed as the single byte 0x00 reads as one space. A trailing key
with no value is dropped.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

from mcp_bitcom.primitives import ScriptError, parse_chunks
from mcp_bitcom.protocols.base import Protocol, as_text, push_all

logger = logging.getLogger(__name__)

MAP_PREFIX = b"1PuQa7K62MiKCtssSLKy1kh56WWU7MtUR5"

NULL_VALUE = b"\x00"


class MapCommand(str, Enum):
    """MAP command verbs."""

    SET = "SET"
    ADD = "ADD"
    DELETE = "DELETE"
    REMOVE = "REMOVE"
    CLEAR = "CLEAR"
    SELECT = "SELECT"


def parse_command(verb: str) -> Union[MapCommand, str]:
    """Known verbs become MapCommand; anything else is kept as-is."""
    try:
        return MapCommand(verb)
    except ValueError:
        return verb


@dataclass(frozen=True)
class KeyedRecord(Protocol):
    """Decoded MAP record."""

    tag = MAP_PREFIX

    command: Union[MapCommand, str]
    pairs: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> bytes:
        command = self.command.value if isinstance(self.command, MapCommand) else self.command
        items = [command.encode("utf-8")]
        for key, value in self.pairs.items():
            items.append(key.encode("utf-8"))
            items.append(value.encode("utf-8"))
        return push_all(items)


def decode_keyed(payload: bytes) -> Optional[KeyedRecord]:
    """Decode a MAP payload.

    Args:
        payload: Entry payload bytes

    Returns:
        KeyedRecord, or None if the payload is empty or not parseable
    """
    try:
        chunks = parse_chunks(payload)
    except ScriptError as e:
        logger.debug("MAP payload not recognized: %s", e)
        return None
    if not chunks:
        return None

    pairs: Dict[str, str] = {}
    fields = chunks[1:]
    for i in range(0, len(fields) - 1, 2):
        value = fields[i + 1].data
        pairs[as_text(fields[i].data)] = " " if value == NULL_VALUE else as_text(value)

    return KeyedRecord(command=parse_command(as_text(chunks[0].data)), pairs=pairs)
