"""Bitcoin script opcode reading and push-data encoding.

Every reader here takes an explicit position and returns the next one, so
callers own their cursor and scans are safe to run from any number of threads.

Two reading modes are provided:
- lenient: a push whose declared length runs past the end of the script is
  truncated to the bytes that are available and the cursor moves to the end.
- strict: the same condition raises ``ScriptError``.
"""

from dataclasses import dataclass
from typing import Iterator, List, Tuple

# Bitcoin script opcodes
OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_RETURN = 0x6A

# Largest length that fits in a direct push opcode
MAX_DIRECT_PUSH = 0x4B

DELIMITER = b"|"


class ScriptError(ValueError):
    """Script bytes could not be parsed as a sequence of opcodes."""


@dataclass(frozen=True)
class ScriptChunk:
    """One opcode, with its pushed data if it is a push operation."""

    op: int
    data: bytes = b""


def is_delimiter(chunk: ScriptChunk) -> bool:
    """True only for a direct one-byte push of ``|``."""
    return chunk.op == 0x01 and chunk.data == DELIMITER


def encode_push_data(data: bytes) -> bytes:
    """Encode data as a single push operation.

    Uses the smallest push form for the data size:
    - empty: OP_0
    - < 76 bytes: direct push (1 byte length)
    - 76-255 bytes: OP_PUSHDATA1 (1 byte length)
    - 256-65535 bytes: OP_PUSHDATA2 (2 byte length, little-endian)
    - larger: OP_PUSHDATA4 (4 byte length, little-endian)
    """
    length = len(data)

    if length == 0:
        return bytes([OP_0])
    elif length <= MAX_DIRECT_PUSH:
        return bytes([length]) + data
    elif length <= 255:
        return bytes([OP_PUSHDATA1, length]) + data
    elif length <= 65535:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, 'little') + data
    elif length <= 0xFFFFFFFF:
        return bytes([OP_PUSHDATA4]) + length.to_bytes(4, 'little') + data
    raise ValueError(f"Push data too large: {length} bytes")


def read_op(script: bytes, pos: int, strict: bool = False) -> Tuple[ScriptChunk, int]:
    """Read one opcode starting at ``pos``.

    Args:
        script: Script bytes
        pos: Offset of the opcode to read
        strict: Raise on truncated pushes instead of truncating them

    Returns:
        Tuple of the chunk read and the offset just past it. The returned
        offset is always greater than ``pos``.

    Raises:
        ScriptError: If ``pos`` is past the end, or (strict only) the push is
            truncated
    """
    end = len(script)
    if pos < 0 or pos >= end:
        raise ScriptError(f"Read past end of script at offset {pos}")

    op = script[pos]
    pos += 1

    if op > OP_PUSHDATA4:
        return ScriptChunk(op=op), pos

    if op <= MAX_DIRECT_PUSH:
        length = op
    else:
        size = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[op]
        if pos + size > end:
            if strict:
                raise ScriptError(f"Truncated length prefix for opcode {op:#x}")
            return ScriptChunk(op=op), end
        length = int.from_bytes(script[pos:pos + size], 'little')
        pos += size

    if pos + length > end:
        if strict:
            raise ScriptError(
                f"Script truncated: expected {length} bytes, got {end - pos}"
            )
        return ScriptChunk(op=op, data=bytes(script[pos:end])), end

    return ScriptChunk(op=op, data=bytes(script[pos:pos + length])), pos + length


def iter_ops(script: bytes, start: int = 0, strict: bool = False) -> Iterator[Tuple[int, ScriptChunk]]:
    """Yield ``(offset, chunk)`` for every opcode from ``start`` to the end."""
    pos = start
    while pos < len(script):
        offset = pos
        chunk, pos = read_op(script, pos, strict=strict)
        yield offset, chunk


def parse_chunks(script: bytes) -> List[ScriptChunk]:
    """Strictly parse a whole script into chunks.

    Raises:
        ScriptError: If any push is truncated
    """
    return [chunk for _, chunk in iter_ops(script, strict=True)]
