"""Bitcom envelope decoding and signature verification, served over MCP."""

__version__ = "0.1.0"

# Server entry points
from mcp_bitcom.server import create_server, main

# Configuration
from mcp_bitcom.config import Config, Network, ConnectionMethod

# Envelope scanning/building
from mcp_bitcom.envelope import (
    Envelope,
    ProtocolEntry,
    build,
    scan,
)

# Script primitives
from mcp_bitcom.primitives import (
    ScriptChunk,
    ScriptError,
    read_op,
)

# Sub-protocols
from mcp_bitcom.protocols import (
    DecodedEntry,
    decode_envelope,
    decode_keyed,
    decode_attachment,
    decode_identity_sig,
    decode_attestation,
    decode_detached_sig,
    verify_detached_sig,
)

from mcp_bitcom.transaction import Transaction

__all__ = [
    # Version
    "__version__",
    # Server
    "create_server",
    "main",
    # Config
    "Config",
    "Network",
    "ConnectionMethod",
    # Envelope
    "Envelope",
    "ProtocolEntry",
    "build",
    "scan",
    # Primitives
    "ScriptChunk",
    "ScriptError",
    "read_op",
    # Protocols
    "DecodedEntry",
    "decode_envelope",
    "decode_keyed",
    "decode_attachment",
    "decode_identity_sig",
    "decode_attestation",
    "decode_detached_sig",
    "verify_detached_sig",
    # Transactions
    "Transaction",
]
