"""Bitcom sub-protocol decoders and the tag registry that dispatches to them."""

from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

from mcp_bitcom.crypto import verify_message
from mcp_bitcom.envelope import Envelope, ProtocolEntry
from mcp_bitcom.protocols.aip import (
    AIP_PREFIX,
    IdentitySignature,
    canonical_message,
    decode_identity_sig,
    sign_identity,
)
from mcp_bitcom.protocols.b import B_PREFIX, AttachmentRecord, Encoding, decode_attachment
from mcp_bitcom.protocols.bap import (
    BAP_PREFIX,
    AttestationRecord,
    AttestationType,
    decode_attestation,
)
from mcp_bitcom.protocols.base import Protocol, Verifier
from mcp_bitcom.protocols.map import MAP_PREFIX, KeyedRecord, MapCommand, decode_keyed
from mcp_bitcom.protocols.sigma import (
    SIGMA_PREFIX,
    DetachedSignature,
    SignatureAlgorithm,
    decode_detached_sig,
    decode_transaction_sigs,
    sign_detached,
    verify_detached_sig,
)
from mcp_bitcom.transaction import Transaction


@dataclass
class DecodeContext:
    """Per-call state handed to registered decoders."""

    envelope: Envelope
    index: int = 0
    transaction: Optional[Transaction] = None
    output_index: int = 0
    verifier: Verifier = verify_message
    sigma_instances: int = 0

    @property
    def preceding(self) -> Sequence[ProtocolEntry]:
        return self.envelope.entries[:self.index]


@dataclass(frozen=True)
class DecodedEntry:
    """An envelope entry and the record decoded from it, if any."""

    entry: ProtocolEntry
    record: Optional[Protocol] = None


Decoder = Callable[[bytes, DecodeContext], Optional[Protocol]]


def _decode_sigma(payload: bytes, context: DecodeContext) -> Optional[Protocol]:
    sig = decode_detached_sig(payload, context.verifier)
    instance = context.sigma_instances
    context.sigma_instances += 1
    if sig is None or context.transaction is None:
        return sig
    valid = verify_detached_sig(sig, context.transaction, context.output_index,
                                instance, context.verifier)
    return replace(sig, output_index=context.output_index,
                   instance_index=instance, valid=valid)


DECODERS: Dict[bytes, Decoder] = {
    MAP_PREFIX: lambda payload, context: decode_keyed(payload),
    B_PREFIX: lambda payload, context: decode_attachment(payload),
    AIP_PREFIX: lambda payload, context: decode_identity_sig(
        payload, context.preceding, context.verifier),
    BAP_PREFIX: lambda payload, context: decode_attestation(
        payload, context.preceding, context.verifier),
    SIGMA_PREFIX: _decode_sigma,
}


def decode_envelope(
    envelope: Envelope,
    transaction: Optional[Transaction] = None,
    output_index: int = 0,
    verifier: Verifier = verify_message,
) -> List[DecodedEntry]:
    """Decode every entry of an envelope by exact tag match.

    Args:
        envelope: Scanned envelope
        transaction: Transaction holding the envelope, for SIGMA verification
        output_index: Output of ``transaction`` the envelope came from
        verifier: verify(address, signature, message) capability

    Returns:
        One DecodedEntry per envelope entry, in order. Entries with an unknown
        tag or an unrecognized payload have ``record`` set to None.
    """
    context = DecodeContext(envelope, transaction=transaction,
                            output_index=output_index, verifier=verifier)
    decoded = []
    for index, entry in enumerate(envelope.entries):
        context.index = index
        decoder = DECODERS.get(entry.tag)
        record = decoder(entry.payload, context) if decoder else None
        decoded.append(DecodedEntry(entry, record))
    return decoded


__all__ = [
    "DECODERS",
    "DecodeContext",
    "DecodedEntry",
    "decode_envelope",
    "Protocol",
    "Verifier",
    # MAP
    "MAP_PREFIX",
    "MapCommand",
    "KeyedRecord",
    "decode_keyed",
    # B
    "B_PREFIX",
    "Encoding",
    "AttachmentRecord",
    "decode_attachment",
    # AIP
    "AIP_PREFIX",
    "IdentitySignature",
    "canonical_message",
    "decode_identity_sig",
    "sign_identity",
    # BAP
    "BAP_PREFIX",
    "AttestationType",
    "AttestationRecord",
    "decode_attestation",
    # SIGMA
    "SIGMA_PREFIX",
    "SignatureAlgorithm",
    "DetachedSignature",
    "decode_detached_sig",
    "verify_detached_sig",
    "decode_transaction_sigs",
    "sign_detached",
]
