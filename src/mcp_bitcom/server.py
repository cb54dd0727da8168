"""MCP server for Bitcom envelopes.

This server exposes tools for splitting Bitcoin output scripts into their
Bitcom protocol entries, decoding the MAP, B, AIP, BAP and SIGMA records
they carry and checking the signatures among them.
"""

import dataclasses
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from mcp_bitcom import crypto
from mcp_bitcom.config import Config, ConnectionMethod, load_config
from mcp_bitcom.envelope import Envelope, ProtocolEntry, build, scan
from mcp_bitcom.node.cli import BitcoinCLI
from mcp_bitcom.node.interface import NodeInterface
from mcp_bitcom.node.rpc import BitcoinRPC
from mcp_bitcom.protocols import (
    AIP_PREFIX,
    DecodedEntry,
    DetachedSignature,
    Protocol,
    Verifier,
    decode_attachment,
    decode_attestation,
    decode_envelope,
    decode_identity_sig,
    decode_keyed,
)
from mcp_bitcom.transaction import Transaction

logger = logging.getLogger(__name__)

CONFIG_PATHS = [
    Path("mcp-bitcom.toml"),
    Path.home() / ".config" / "mcp-bitcom" / "config.toml",
]


def _skip_verification(address: str, signature: bytes, message: bytes) -> bool:
    return False


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record_to_dict(record: Optional[Protocol]) -> Optional[dict]:
    """Render a decoded record as JSON-friendly fields.

    Byte fields are hex encoded.
    """
    if record is None:
        return None
    result = {"type": type(record).__name__}
    for field in dataclasses.fields(record):
        value = getattr(record, field.name)
        if isinstance(value, Protocol):
            result[field.name] = record_to_dict(value)
        else:
            result[field.name] = _jsonable(value)
    return result


def _text_or_none(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def entry_to_dict(decoded: DecodedEntry) -> dict:
    entry = decoded.entry
    return {
        "tag": _text_or_none(entry.tag),
        "tag_hex": entry.tag.hex(),
        "offset": entry.offset,
        "payload_hex": entry.payload.hex(),
        "record": record_to_dict(decoded.record),
    }


def create_server(config: Optional[Config] = None) -> FastMCP:
    """Create and configure the MCP server with all tools.

    Args:
        config: Optional configuration. If not provided, uses defaults.

    Returns:
        Configured FastMCP server instance.
    """
    if config is None:
        config = Config()

    mcp = FastMCP("mcp-bitcom")

    # Store config on server for access by tools
    mcp._config = config
    mcp._node: Optional[NodeInterface] = None

    verifier: Verifier = crypto.verify_message if config.verify_signatures else _skip_verification

    def get_node() -> NodeInterface:
        """Get or create the node interface."""
        if mcp._node is None:
            if config.connection_method == ConnectionMethod.CLI:
                mcp._node = BitcoinCLI(config)
            else:
                mcp._node = BitcoinRPC(config)
        return mcp._node

    def parse_hex(value: str, name: str) -> bytes:
        """Decode a hex argument, enforcing the configured size limit."""
        try:
            data = bytes.fromhex(value)
        except ValueError:
            raise ValueError(f"{name} is not valid hex")
        if len(data) > config.max_script_size:
            raise ValueError(
                f"{name} is {len(data)} bytes, limit is {config.max_script_size}"
            )
        return data

    def describe_envelope(
        envelope: Envelope,
        transaction: Optional[Transaction] = None,
        output_index: int = 0,
    ) -> dict:
        decoded = decode_envelope(envelope, transaction, output_index, verifier)
        return {
            "prefix_hex": envelope.prefix.hex(),
            "entries": [entry_to_dict(d) for d in decoded],
        }

    # =========================================================================
    # Envelope scanning and building (offline)
    # =========================================================================

    @mcp.tool()
    def decode_script(script_hex: str) -> dict:
        """Split an output script into Bitcom entries and decode each one.

        Args:
            script_hex: Output script as hex string

        Returns:
            Dictionary with 'found', 'prefix_hex' and 'entries'. Each entry has
            its tag, payload and decoded 'record' (null when unrecognized).
        """
        script = parse_hex(script_hex, "script_hex")
        envelope = scan(script)
        if envelope is None:
            return {"found": False, "prefix_hex": script.hex(), "entries": []}

        return {"found": True, **describe_envelope(envelope)}

    @mcp.tool()
    def build_script(entries: list[dict], prefix_hex: str = "") -> dict:
        """Assemble a Bitcom output script.

        Args:
            entries: List of {'tag': str, 'payload_hex': str}. The payload is
                the raw push sequence for that protocol.
            prefix_hex: Script bytes placed before OP_RETURN (e.g. '00')

        Returns:
            Dictionary with 'script_hex'.
        """
        prefix = parse_hex(prefix_hex, "prefix_hex")
        parts = []
        for item in entries:
            if "tag" not in item:
                raise ValueError("Each entry needs a 'tag'")
            payload = parse_hex(item.get("payload_hex", ""), "payload_hex")
            parts.append(ProtocolEntry(item["tag"].encode("utf-8"), payload))

        script = build(prefix, parts)
        return {"script_hex": script.hex(), "size": len(script)}

    # =========================================================================
    # Sub-protocol payloads
    # =========================================================================

    @mcp.tool()
    def decode_map(payload_hex: str) -> dict:
        """Decode a MAP payload (the bytes after the MAP tag).

        Args:
            payload_hex: MAP payload as hex string

        Returns:
            Dictionary with 'record' (null if the payload is not MAP).
        """
        record = decode_keyed(parse_hex(payload_hex, "payload_hex"))
        return {"record": record_to_dict(record)}

    @mcp.tool()
    def decode_b(payload_hex: str) -> dict:
        """Decode a B attachment payload.

        Args:
            payload_hex: B payload as hex string

        Returns:
            Dictionary with 'record' and, for text content, 'content_utf8'.
        """
        record = decode_attachment(parse_hex(payload_hex, "payload_hex"))
        result = {"record": record_to_dict(record)}
        if record is not None:
            try:
                result["content_utf8"] = _text_or_none(record.decoded_content())
            except ValueError:
                result["content_utf8"] = None
        return result

    @mcp.tool()
    def decode_bap(payload_hex: str) -> dict:
        """Decode a BAP attestation payload.

        A chained signature is reported but only verifies in the context of a
        full script; use decode_script for that.

        Args:
            payload_hex: BAP payload as hex string

        Returns:
            Dictionary with 'record' (null if the payload is not BAP).
        """
        record = decode_attestation(parse_hex(payload_hex, "payload_hex"), verifier=verifier)
        return {"record": record_to_dict(record)}

    # =========================================================================
    # Signatures
    # =========================================================================

    @mcp.tool()
    def verify_aip(script_hex: str) -> dict:
        """Verify every AIP signature in an output script.

        Each signature covers the entries before it in the same envelope.

        Args:
            script_hex: Output script as hex string

        Returns:
            Dictionary with 'signatures', each with address and 'valid'.
        """
        envelope = scan(parse_hex(script_hex, "script_hex"))
        if envelope is None:
            return {"found": False, "signatures": []}

        signatures = []
        for index, entry in enumerate(envelope.entries):
            if entry.tag != AIP_PREFIX:
                continue
            sig = decode_identity_sig(entry.payload, envelope.entries[:index], verifier)
            if sig is not None:
                signatures.append({"offset": entry.offset, **record_to_dict(sig)})
        return {"found": True, "signatures": signatures}

    @mcp.tool()
    def verify_sigma(tx_hex: str, output_index: int = 0) -> dict:
        """Verify the SIGMA signatures in one output of a raw transaction.

        Args:
            tx_hex: Raw transaction as hex string
            output_index: Output carrying the signatures

        Returns:
            Dictionary with 'signatures', each with 'instance_index' and 'valid'.
        """
        transaction = Transaction.from_hex(tx_hex)
        if not 0 <= output_index < len(transaction.outputs):
            raise ValueError(f"Transaction has no output {output_index}")

        envelope = scan(transaction.outputs[output_index].script)
        if envelope is None:
            return {"txid": transaction.txid, "signatures": []}

        decoded = decode_envelope(envelope, transaction, output_index, verifier)
        signatures = [
            record_to_dict(d.record) for d in decoded
            if isinstance(d.record, DetachedSignature)
        ]
        return {"txid": transaction.txid, "signatures": signatures}

    @mcp.tool()
    def verify_message(address: str, signature_base64: str, message: str) -> dict:
        """Check a Bitcoin Signed Message signature.

        Args:
            address: P2PKH address of the signer
            signature_base64: Compact signature, base64 encoded
            message: Signed message text

        Returns:
            Dictionary with 'valid'.
        """
        valid = crypto.verify_message(
            address,
            signature_base64.encode("ascii"),
            message.encode("utf-8"),
        )
        return {"address": address, "valid": valid}

    # =========================================================================
    # Bitcoin node
    # =========================================================================

    @mcp.tool()
    async def get_node_info() -> dict:
        """Check connection and network status.

        Returns:
            Dictionary with connection status, network, and block height.
        """
        node = get_node()
        info = await node.get_info()

        return {
            "connected": info.connected,
            "network": info.network,
            "block_height": info.block_height,
            "version": info.version,
            "errors": info.errors,
        }

    @mcp.tool()
    async def get_transaction(txid: str) -> dict:
        """Fetch transaction details.

        Args:
            txid: Transaction ID (hash)

        Returns:
            Dictionary with transaction details.
        """
        node = get_node()
        tx = await node.get_transaction(txid)

        return {
            "txid": tx.txid,
            "blockhash": tx.blockhash,
            "confirmations": tx.confirmations,
            "time": tx.time,
            "hex": tx.hex,
        }

    @mcp.tool()
    async def decode_transaction(txid: str) -> dict:
        """Fetch a transaction and decode the Bitcom envelope of every output.

        SIGMA signatures are verified against the fetched transaction.

        Args:
            txid: Transaction ID (hash)

        Returns:
            Dictionary with 'outputs', one per output carrying an envelope.
        """
        node = get_node()
        info = await node.get_transaction(txid)
        transaction = Transaction.from_hex(info.hex)

        outputs = []
        for output_index, output in enumerate(transaction.outputs):
            envelope = scan(output.script)
            if envelope is None:
                continue
            outputs.append({
                "output_index": output_index,
                "satoshis": output.satoshis,
                **describe_envelope(envelope, transaction, output_index),
            })

        logger.info("Decoded %d envelope(s) in %s", len(outputs), txid)
        return {
            "txid": transaction.txid,
            "confirmations": info.confirmations,
            "outputs": outputs,
        }

    return mcp


def setup_logging(config: Config) -> None:
    """Send log records to stderr; stdout carries the MCP stream."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main():
    """Entry point for the MCP server."""
    # Try to load config from standard locations
    config = None
    for path in CONFIG_PATHS:
        if path.exists():
            config = load_config(path)
            break

    if config is None:
        config = Config()

    setup_logging(config)
    logger.info("Starting mcp-bitcom (%s via %s)",
                config.network.value, config.connection_method.value)

    server = create_server(config)
    server.run()


if __name__ == "__main__":
    main()
