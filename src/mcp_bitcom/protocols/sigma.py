"""SIGMA detached signatures.

Payload layout: <algorithm> <address> <signature> [<vin> | <message> [nonce]]

Without a message the signature is bound to the transaction carrying it:

    input_hash = sha256(outpoint of the referenced input)
    data_hash  = sha256(output script up to the n-th "OP_RETURN SIGMA" or
                        "| SIGMA" marker, or the whole script if there is none)
    digest     = sha256d(input_hash || data_hash)

and the digest is verified as a Bitcoin Signed Message.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional

from mcp_bitcom.crypto import (
    address_from_private_key,
    sha256,
    sha256d,
    sign_message,
    verify_message,
)
from mcp_bitcom.envelope import scan
from mcp_bitcom.primitives import (
    OP_RETURN,
    ScriptChunk,
    ScriptError,
    is_delimiter,
    read_op,
)
from mcp_bitcom.protocols.base import Protocol, Verifier, as_text, push_all
from mcp_bitcom.transaction import Transaction

logger = logging.getLogger(__name__)

SIGMA_PREFIX = b"SIGMA"


class SignatureAlgorithm(str, Enum):
    """Algorithms SIGMA signatures are verified with."""

    BSM = "BSM"
    ECDSA = "ECDSA"
    SHA256_ECDSA = "SHA256-ECDSA"


SUPPORTED_ALGORITHMS = frozenset(a.value for a in SignatureAlgorithm)


@dataclass(frozen=True)
class DetachedSignature(Protocol):
    """Decoded SIGMA signature.

    ``input_index`` defaults to 0. An index outside the transaction's inputs
    falls back to the output index.
    """

    tag = SIGMA_PREFIX

    algorithm: str
    address: str
    signature: bytes
    message: Optional[str] = None
    nonce: Optional[str] = None
    input_index: int = 0
    output_index: int = 0
    instance_index: int = 0
    valid: bool = False

    def to_payload(self) -> bytes:
        items = [self.algorithm.encode("utf-8"), self.address.encode("utf-8"), self.signature]
        if self.message is not None:
            items.append(self.message.encode("utf-8"))
            if self.nonce is not None:
                items.append(self.nonce.encode("utf-8"))
        else:
            items.append(str(self.input_index).encode("ascii"))
        return push_all(items)


def _read_tokens(payload: bytes, limit: int) -> List[ScriptChunk]:
    tokens: List[ScriptChunk] = []
    pos = 0
    while pos < len(payload) and len(tokens) < limit:
        try:
            chunk, pos = read_op(payload, pos, strict=True)
        except ScriptError:
            break
        tokens.append(chunk)
    return tokens


def _unwrap_algorithm(data: bytes) -> bytes:
    # Some signers pushed the algorithm with its own length byte inside
    if len(data) > 1 and data[0] == 0x03:
        return data[1:]
    return data


def _unwrap_address(data: bytes) -> bytes:
    if len(data) > 1 and data[:1] == b'"':
        return data[1:-1]
    return data


def decode_detached_sig(payload: bytes, verifier: Verifier = verify_message) -> Optional[DetachedSignature]:
    """Decode a SIGMA payload.

    Signatures over an explicit message are verified immediately; transaction
    bound ones stay unverified until passed to ``verify_detached_sig``.

    Returns:
        DetachedSignature, or None if fewer than three fields are readable
    """
    tokens = _read_tokens(payload, 5)
    if len(tokens) < 3:
        logger.debug("SIGMA payload not recognized: %d fields", len(tokens))
        return None

    sig = DetachedSignature(
        algorithm=as_text(_unwrap_algorithm(tokens[0].data)),
        address=as_text(_unwrap_address(tokens[1].data)),
        signature=tokens[2].data,
    )

    if len(tokens) > 3:
        data = tokens[3].data
        if len(data) == 1 and data.isdigit():
            sig = replace(sig, input_index=int(data))
        elif data:
            nonce = as_text(tokens[4].data) if len(tokens) > 4 else None
            sig = replace(sig, message=as_text(data), nonce=nonce)

    if sig.message is not None:
        sig = replace(sig, valid=_verify_digest(sig, sig.message.encode("utf-8"), verifier))
    return sig


def input_hash(transaction: Transaction, input_index: int, output_index: int) -> Optional[bytes]:
    """SHA-256 of the outpoint of the referenced input."""
    vin = input_index
    if not 0 <= vin < len(transaction.inputs):
        vin = output_index
    if not 0 <= vin < len(transaction.inputs):
        return None
    return sha256(transaction.inputs[vin].outpoint())


def data_hash(script: bytes, instance_index: int = 0) -> bytes:
    """SHA-256 of the script up to the given SIGMA marker occurrence."""
    occurrences = 0
    pos = 0
    while pos < len(script):
        start = pos
        try:
            chunk, pos = read_op(script, pos, strict=True)
            if chunk.op != OP_RETURN and not is_delimiter(chunk):
                continue
            if pos >= len(script):
                break
            following, pos = read_op(script, pos, strict=True)
        except ScriptError:
            break
        if following.data == SIGMA_PREFIX:
            if occurrences == instance_index:
                return sha256(script[:start])
            occurrences += 1
    return sha256(script)


def message_hash(
    transaction: Transaction,
    output_index: int,
    instance_index: int = 0,
    input_index: int = 0,
) -> Optional[bytes]:
    """Digest a transaction bound signature covers, or None without context."""
    if not 0 <= output_index < len(transaction.outputs):
        return None
    in_hash = input_hash(transaction, input_index, output_index)
    if in_hash is None:
        return None
    out_hash = data_hash(transaction.outputs[output_index].script, instance_index)
    return sha256d(in_hash + out_hash)


def _verify_digest(sig: DetachedSignature, message: bytes, verifier: Verifier) -> bool:
    if sig.algorithm not in SUPPORTED_ALGORITHMS:
        logger.debug("Unsupported SIGMA algorithm %r", sig.algorithm)
        return False
    valid = verifier(sig.address, sig.signature, message)
    if not valid:
        logger.debug("SIGMA signature by %s did not verify", sig.address)
    return valid


def verify_detached_sig(
    sig: DetachedSignature,
    transaction: Optional[Transaction] = None,
    output_index: int = 0,
    instance_index: int = 0,
    verifier: Verifier = verify_message,
) -> bool:
    """Verify a SIGMA signature.

    Args:
        sig: Decoded signature
        transaction: Transaction carrying the signature (transaction bound mode)
        output_index: Output holding the signature
        instance_index: Which SIGMA entry of that output this is, from 0
        verifier: verify(address, signature, message) capability

    Returns:
        True if the signature is valid
    """
    if sig.message is not None:
        return _verify_digest(sig, sig.message.encode("utf-8"), verifier)
    if transaction is None:
        return False
    digest = message_hash(transaction, output_index, instance_index, sig.input_index)
    if digest is None:
        logger.debug("No transaction context for SIGMA output %d", output_index)
        return False
    return _verify_digest(sig, digest, verifier)


def decode_transaction_sigs(
    transaction: Transaction,
    verifier: Verifier = verify_message,
) -> List[DetachedSignature]:
    """Decode and verify every SIGMA signature in a transaction's outputs."""
    signatures: List[DetachedSignature] = []
    for output_index, output in enumerate(transaction.outputs):
        envelope = scan(output.script)
        if envelope is None:
            continue
        for instance_index, entry in enumerate(envelope.find(SIGMA_PREFIX)):
            sig = decode_detached_sig(entry.payload, verifier)
            if sig is None:
                continue
            valid = verify_detached_sig(sig, transaction, output_index, instance_index, verifier)
            signatures.append(replace(
                sig,
                output_index=output_index,
                instance_index=instance_index,
                valid=valid,
            ))
    return signatures


def sign_detached(
    transaction: Transaction,
    output_index: int,
    private_key: bytes,
    input_index: int = 0,
    instance_index: int = 0,
    algorithm: str = SignatureAlgorithm.BSM.value,
) -> DetachedSignature:
    """Sign the current state of an output, bound to one of the inputs.

    The returned record is meant to be appended to that output's envelope;
    anything already in the script is covered by the signature.

    Raises:
        ValueError: If the transaction has no input or output to bind to
    """
    digest = message_hash(transaction, output_index, instance_index, input_index)
    if digest is None:
        raise ValueError(f"Transaction has no input/output pair for output {output_index}")
    return DetachedSignature(
        algorithm=algorithm,
        address=address_from_private_key(private_key),
        signature=sign_message(private_key, digest),
        input_index=input_index,
        output_index=output_index,
        instance_index=instance_index,
        valid=True,
    )
