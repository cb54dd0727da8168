"""Bitcoin Signed Message (BSM) signing and verification.

Signatures are 65-byte compact recoverable signatures:
- Header (1 byte): 27 + recovery id, plus 4 for a compressed public key
- R (32 bytes), S (32 bytes)

The signed digest is the double SHA-256 of the varint-prefixed magic string
followed by the varint-prefixed message. Verification recovers the public key
and compares its HASH160 against the one encoded in the claimed address.
"""

import base64
import binascii
import logging
from typing import Optional

from bsv import Network, PrivateKey, PublicKey
from bsv.hash import hash160, hash256, sha256
from bsv.utils import decode_address as decode_p2pkh, unsigned_to_varint
from coincurve import PublicKey as RecoverablePublicKey

logger = logging.getLogger(__name__)

MAGIC = b"Bitcoin Signed Message:\n"

# Upper bound on P2PKH address length (34 characters in practice)
MAX_ADDRESS_LENGTH = 35

sha256d = hash256


def address_from_pubkey(pubkey: bytes, network: Network = Network.MAINNET) -> str:
    """P2PKH address for a serialized public key."""
    return PublicKey(pubkey).address(network=network)


def address_from_private_key(private_key: bytes, compressed: bool = True,
                             network: Network = Network.MAINNET) -> str:
    return PrivateKey(private_key).public_key().address(compressed=compressed, network=network)


def decode_address(address: str) -> Optional[bytes]:
    """HASH160 carried by a P2PKH address, or None if it is not one."""
    # Base58 decoding is quadratic in length
    if len(address) > MAX_ADDRESS_LENGTH:
        return None
    try:
        public_key_hash, _ = decode_p2pkh(address)
    except (ValueError, KeyError):
        return None
    return public_key_hash


def _magic_preimage(message: bytes) -> bytes:
    return unsigned_to_varint(len(MAGIC)) + MAGIC + unsigned_to_varint(len(message)) + message


def magic_hash(message: bytes) -> bytes:
    """Digest signed by BSM for the given message."""
    return hash256(_magic_preimage(message))


def sign_message(private_key: bytes, message: bytes, compressed: bool = True) -> bytes:
    """Sign a message, returning the 65-byte compact signature.

    Raises:
        ValueError: If the private key is invalid
    """
    if len(private_key) != 32:
        raise ValueError(f"Private key must be 32 bytes, got {len(private_key)}")
    recoverable = PrivateKey(private_key).sign_recoverable(_magic_preimage(message), hasher=hash256)
    header = 27 + recoverable[64] + (4 if compressed else 0)
    return bytes([header]) + recoverable[:64]


def normalize_signature(signature: bytes) -> Optional[bytes]:
    """Return the raw 65-byte compact form of a signature.

    Signatures are carried either as raw bytes or as base64 text of them.
    """
    if len(signature) == 65:
        return bytes(signature)
    try:
        decoded = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(decoded) != 65:
        return None
    return decoded


def recover_pubkey(signature: bytes, message: bytes) -> Optional[bytes]:
    """Recover the serialized public key that produced a signature."""
    sig = normalize_signature(signature)
    if sig is None:
        return None

    header = sig[0]
    if not 27 <= header <= 34:
        return None
    recovery_id = (header - 27) & 3
    compressed = header >= 31

    try:
        pubkey = RecoverablePublicKey.from_signature_and_message(
            sig[1:] + bytes([recovery_id]), magic_hash(message), hasher=None
        )
    except (ValueError, TypeError):
        return None
    return pubkey.format(compressed=compressed)


def verify_message(address: str, signature: bytes, message: bytes) -> bool:
    """Check a BSM signature against a claimed signer address.

    Never raises; any malformed input is simply not valid.
    """
    public_key_hash = decode_address(address)
    if public_key_hash is None:
        logger.debug("Unparseable signer address %r", address[:MAX_ADDRESS_LENGTH])
        return False

    pubkey = recover_pubkey(signature, message)
    if pubkey is None:
        logger.debug("Could not recover public key for %s", address)
        return False

    return hash160(pubkey) == public_key_hash
