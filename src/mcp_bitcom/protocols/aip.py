"""AIP (Author Identity Protocol) signatures.

Payload layout: <algorithm> <address> <signature> [field index ...]

The signed message is rebuilt from the envelope entries that precede the AIP
entry: OP_RETURN, then for each entry its tag, its selected push data and a
``|``. Without field indexes every push is selected. Push indexes count
payload opcodes across all preceding entries, starting at 0; tags are not
counted. An unselected opcode above 0x43 whose byte is a printable character
contributes that single byte instead of its data.
"""

import base64
import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from mcp_bitcom.crypto import address_from_private_key, sign_message, verify_message
from mcp_bitcom.envelope import ProtocolEntry
from mcp_bitcom.primitives import DELIMITER, OP_RETURN, ScriptChunk, ScriptError, parse_chunks
from mcp_bitcom.protocols.base import Protocol, Verifier, as_text, push_all

logger = logging.getLogger(__name__)

AIP_PREFIX = b"15PciHG22SNLQJXMoSUaWVi7WSqc7hCfva"

ALGORITHM_BITCOIN_ECDSA = "BITCOIN_ECDSA"

_INDEX_RE = re.compile(rb"[+-]?[0-9]+")

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


def parse_index(data: bytes) -> Optional[int]:
    """Parse a signed decimal field index within the int64 range, or None."""
    if not _INDEX_RE.fullmatch(data):
        return None
    # Leading zeros aside, no int64 has more than 19 digits
    if len(data.lstrip(b"+-").lstrip(b"0")) > 19:
        return None
    value = int(data)
    if not INT64_MIN <= value <= INT64_MAX:
        return None
    return value


@dataclass(frozen=True)
class IdentitySignature(Protocol):
    """Decoded AIP signature.

    ``field_indexes`` is None when every field is signed.
    """

    tag = AIP_PREFIX

    algorithm: str
    address: str
    signature: bytes
    field_indexes: Optional[Tuple[int, ...]] = None
    valid: bool = False

    def to_payload(self) -> bytes:
        items = [self.algorithm.encode("utf-8"), self.address.encode("utf-8"), self.signature]
        for index in self.field_indexes or ():
            items.append(str(index).encode("ascii"))
        return push_all(items)


def parse_identity_fields(chunks: Sequence[ScriptChunk]) -> Optional[IdentitySignature]:
    """Build an unverified IdentitySignature from payload chunks.

    Indexes after the signature are read until the first non-numeric field.
    """
    if len(chunks) < 3:
        return None

    indexes: List[int] = []
    for chunk in chunks[3:]:
        index = parse_index(chunk.data)
        if index is None:
            break
        indexes.append(index)

    return IdentitySignature(
        algorithm=as_text(chunks[0].data),
        address=as_text(chunks[1].data),
        signature=chunks[2].data,
        field_indexes=tuple(indexes) if indexes else None,
    )


def _printable(op: int) -> bool:
    return chr(op).isprintable()


def canonical_message(
    entries: Sequence[ProtocolEntry],
    field_indexes: Optional[Sequence[int]] = None,
) -> bytes:
    """Rebuild the bytes an AIP signature covers.

    Args:
        entries: Envelope entries preceding the signature, in order
        field_indexes: Selected push indexes, or None for all

    Returns:
        Message bytes passed to the verifier
    """
    selected = None if field_indexes is None else set(field_indexes)
    data = bytearray([OP_RETURN])
    index = 0
    for entry in entries:
        data += entry.tag
        try:
            chunks = parse_chunks(entry.payload)
        except ScriptError:
            # Unparseable payloads contribute only their tag
            continue
        for chunk in chunks:
            if selected is None or index in selected:
                data += chunk.data
            elif chunk.op > 0x43 and _printable(chunk.op):
                data.append(chunk.op)
            index += 1
        data += DELIMITER
    return bytes(data)


def verify_identity_sig(
    sig: IdentitySignature,
    preceding_entries: Sequence[ProtocolEntry],
    verifier: Verifier = verify_message,
) -> bool:
    message = canonical_message(preceding_entries, sig.field_indexes)
    valid = verifier(sig.address, sig.signature, message)
    if not valid:
        logger.debug("AIP signature by %s did not verify", sig.address)
    return valid


def decode_identity_sig(
    payload: bytes,
    preceding_entries: Sequence[ProtocolEntry] = (),
    verifier: Verifier = verify_message,
) -> Optional[IdentitySignature]:
    """Decode and verify an AIP payload.

    Args:
        payload: Entry payload bytes
        preceding_entries: Entries before this one in the same envelope
        verifier: verify(address, signature, message) capability

    Returns:
        IdentitySignature with ``valid`` set, or None if fewer than three
        fields are present
    """
    try:
        chunks = parse_chunks(payload)
    except ScriptError as e:
        logger.debug("AIP payload not recognized: %s", e)
        return None

    sig = parse_identity_fields(chunks)
    if sig is None:
        return None
    return replace(sig, valid=verify_identity_sig(sig, preceding_entries, verifier))


def sign_identity(
    entries: Sequence[ProtocolEntry],
    private_key: bytes,
    field_indexes: Optional[Sequence[int]] = None,
    algorithm: str = ALGORITHM_BITCOIN_ECDSA,
) -> IdentitySignature:
    """Sign the given entries, producing an AIP record to append after them.

    The signature is carried as base64 text, as AIP signers publish it.
    """
    indexes = tuple(field_indexes) if field_indexes else None
    message = canonical_message(entries, indexes)
    signature = base64.b64encode(sign_message(private_key, message))
    return IdentitySignature(
        algorithm=algorithm,
        address=address_from_private_key(private_key),
        signature=signature,
        field_indexes=indexes,
        valid=True,
    )
