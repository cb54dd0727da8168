"""BAP (Bitcoin Attestation Protocol) records.

Payload layouts:
- ID <identity key> <address>
- ATTEST <txid> <sequence>
- REVOKE <txid> <sequence>
- ALIAS <alias> <profile>

Any of them may carry its own AIP signature after a ``|`` push:

    ... | <AIP tag> <algorithm> <address> <signature> [field index ...]

Payloads that cannot be split into at least two fields go through a second,
looser pass that searches the raw text for an ``ID`` or ``ATTEST`` literal.
Records from that pass have ``fallback`` set.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence

from mcp_bitcom.crypto import verify_message
from mcp_bitcom.envelope import ProtocolEntry
from mcp_bitcom.primitives import DELIMITER, ScriptChunk, ScriptError, iter_ops
from mcp_bitcom.protocols.aip import (
    AIP_PREFIX,
    IdentitySignature,
    parse_identity_fields,
    verify_identity_sig,
)
from mcp_bitcom.protocols.base import Protocol, Verifier, as_text, push_all

logger = logging.getLogger(__name__)

BAP_PREFIX = b"1BAPSuaPnfGnSBM3GLV9yhxUdYe4vGbdMT"

MAX_SEQUENCE = 2**64 - 1


class AttestationType(str, Enum):
    """BAP message kinds."""

    ID = "ID"
    ATTEST = "ATTEST"
    REVOKE = "REVOKE"
    ALIAS = "ALIAS"


@dataclass(frozen=True)
class AttestationRecord(Protocol):
    """Decoded BAP record.

    ``key_or_txid`` holds the identity key (ID), the attested or revoked txid
    (ATTEST, REVOKE) or the alias (ALIAS). ``address_or_profile`` holds the
    address (ID), the profile document (ALIAS) and is empty otherwise.
    """

    tag = BAP_PREFIX

    kind: AttestationType
    key_or_txid: str
    address_or_profile: str = ""
    sequence: Optional[int] = None
    chained_signature: Optional[IdentitySignature] = None
    fallback: bool = False

    @property
    def is_signed_by_id(self) -> bool:
        return self.kind == AttestationType.ID and self.chained_signature is not None

    def to_payload(self) -> bytes:
        items = [self.kind.value.encode("ascii"), self.key_or_txid.encode("utf-8")]
        if self.kind in (AttestationType.ATTEST, AttestationType.REVOKE):
            items.append(b"" if self.sequence is None else str(self.sequence).encode("ascii"))
        else:
            items.append(self.address_or_profile.encode("utf-8"))
        payload = push_all(items)
        if self.chained_signature is not None:
            payload += push_all([DELIMITER, AIP_PREFIX]) + self.chained_signature.to_payload()
        return payload


def parse_sequence(text: str) -> Optional[int]:
    if not text.isascii() or not text.isdigit() or len(text) > 20:
        return None
    value = int(text)
    return value if value <= MAX_SEQUENCE else None


def _chunks_with_offsets(payload: bytes):
    offsets: List[int] = []
    chunks: List[ScriptChunk] = []
    for offset, chunk in iter_ops(payload, strict=True):
        offsets.append(offset)
        chunks.append(chunk)
    return offsets, chunks


def _chained_signature(
    payload: bytes,
    offsets: Sequence[int],
    chunks: Sequence[ScriptChunk],
    preceding_entries: Sequence[ProtocolEntry],
    verifier: Verifier,
) -> Optional[IdentitySignature]:
    for i in range(3, len(chunks)):
        if chunks[i].data == DELIMITER:
            break
    else:
        return None

    # Tag, algorithm, address and signature must all follow the pipe
    if len(chunks) - (i + 1) < 4:
        return None
    sig = parse_identity_fields(chunks[i + 2:])
    if sig is None:
        return None

    signed = list(preceding_entries) + [ProtocolEntry(BAP_PREFIX, payload[:offsets[i]])]
    return replace(sig, valid=verify_identity_sig(sig, signed, verifier))


def _decode_fallback(payload: bytes) -> Optional[AttestationRecord]:
    text = payload.decode("latin-1")
    for kind in (AttestationType.ID, AttestationType.ATTEST):
        if kind.value not in text:
            continue
        fields = text.split(kind.value, 1)[1].split()
        if len(fields) < 2:
            return None
        if kind == AttestationType.ID:
            return AttestationRecord(kind, fields[0], fields[1], fallback=True)
        return AttestationRecord(kind, fields[0], sequence=parse_sequence(fields[1]), fallback=True)
    return None


def decode_attestation(
    payload: bytes,
    preceding_entries: Sequence[ProtocolEntry] = (),
    verifier: Verifier = verify_message,
) -> Optional[AttestationRecord]:
    """Decode a BAP payload.

    Args:
        payload: Entry payload bytes
        preceding_entries: Entries before this one, covered by a chained
            signature along with the BAP fields
        verifier: verify(address, signature, message) capability

    Returns:
        AttestationRecord, or None if the payload is not a BAP message
    """
    try:
        offsets, chunks = _chunks_with_offsets(payload)
    except ScriptError:
        chunks = []
    if len(chunks) < 2:
        record = _decode_fallback(payload)
        if record is not None:
            logger.debug("BAP %s decoded by text search", record.kind.value)
        return record

    try:
        kind = AttestationType(as_text(chunks[0].data))
    except ValueError:
        logger.debug("Unknown BAP type %r", chunks[0].data)
        return None
    if len(chunks) < 3:
        return None

    key = as_text(chunks[1].data)
    third = as_text(chunks[2].data)
    chained = _chained_signature(payload, offsets, chunks, preceding_entries, verifier)

    if kind in (AttestationType.ATTEST, AttestationType.REVOKE):
        return AttestationRecord(kind, key, sequence=parse_sequence(third),
                                 chained_signature=chained)
    return AttestationRecord(kind, key, third, chained_signature=chained)
