"""Tests for MCP server."""

import base64

import pytest
from unittest.mock import AsyncMock, MagicMock

from mcp_bitcom.config import Config
from mcp_bitcom.crypto import address_from_private_key, sign_message
from mcp_bitcom.envelope import ProtocolEntry, build
from mcp_bitcom.node.interface import NodeInfo, TransactionInfo
from mcp_bitcom.protocols import sign_detached, sign_identity
from mcp_bitcom.protocols.b import B_PREFIX
from mcp_bitcom.protocols.base import push_all
from mcp_bitcom.protocols.map import MAP_PREFIX
from mcp_bitcom.server import create_server, record_to_dict
from mcp_bitcom.transaction import Transaction, TxInput, TxOutput

PRIVATE_KEY = bytes.fromhex("7e" * 32)
DUMMY_TXID = "a7a2632627a7e19aef35c8110758b05c1cc14ffb9bc3df54092f5b81f9799d37"

MAP_ENTRY = ProtocolEntry(MAP_PREFIX, push_all([b"SET", b"app", b"bsocial", b"type", b"post"]))
B_ENTRY = ProtocolEntry(B_PREFIX, push_all([b"Hello", b"text/plain", b"utf-8"]))

EXPECTED_TOOLS = {
    "decode_script",
    "build_script",
    "decode_map",
    "decode_b",
    "decode_bap",
    "verify_aip",
    "verify_sigma",
    "verify_message",
    "get_node_info",
    "get_transaction",
    "decode_transaction",
}


def tool(server, name):
    return server._tool_manager._tools[name].fn


def signed_transaction():
    unsigned = Transaction((TxInput(DUMMY_TXID, 0),), (TxOutput(0, build(b"\x00", [MAP_ENTRY])),))
    sig = sign_detached(unsigned, 0, PRIVATE_KEY)
    script = build(b"\x00", [MAP_ENTRY, sig.to_entry()])
    return Transaction(unsigned.inputs, (TxOutput(0, script), TxOutput(1000, b"\x51")))


class TestServerCreation:
    """Test server initialization."""

    def test_create_server_returns_server(self):
        """create_server returns configured server."""
        server = create_server()
        assert server is not None

    @pytest.mark.asyncio
    async def test_server_has_expected_tools(self):
        """Server registers all expected tools."""
        server = create_server()

        tools = await server.list_tools()
        tool_names = {tool.name for tool in tools}

        assert tool_names == EXPECTED_TOOLS

    @pytest.mark.asyncio
    async def test_server_tool_count(self):
        """Server has expected number of tools."""
        server = create_server()

        tools = await server.list_tools()
        # 2 envelope + 3 payload + 3 signature + 3 node
        assert len(tools) == 11


class TestEnvelopeTools:
    """Test decode_script and build_script tools."""

    @pytest.fixture
    def server(self):
        """Create a fresh server for each test."""
        return create_server()

    def test_decode_script(self, server):
        """decode_script returns entries with decoded records."""
        script = build(b"\x00", [B_ENTRY, MAP_ENTRY])

        result = tool(server, "decode_script")(script.hex())

        assert result["found"] is True
        assert result["prefix_hex"] == "00"
        assert result["entries"][0]["tag"] == B_PREFIX.decode()
        assert result["entries"][0]["record"]["type"] == "AttachmentRecord"
        assert result["entries"][1]["record"]["command"] == "SET"
        assert result["entries"][1]["record"]["pairs"] == {"app": "bsocial", "type": "post"}

    def test_decode_script_without_envelope(self, server):
        """Scripts without OP_RETURN report found=False."""
        result = tool(server, "decode_script")("51")

        assert result["found"] is False
        assert result["entries"] == []

    def test_decode_script_unknown_tag(self, server):
        """Unknown tags have a null record."""
        script = build(b"", [(b"\xff\xfe", push_all([b"x"]))])

        entry = tool(server, "decode_script")(script.hex())["entries"][0]

        assert entry["tag"] is None
        assert entry["tag_hex"] == "fffe"
        assert entry["record"] is None

    def test_invalid_hex(self, server):
        """Invalid hex raises ValueError."""
        with pytest.raises(ValueError, match="not valid hex"):
            tool(server, "decode_script")("not_valid_hex")

    def test_size_limit(self):
        """Scripts over the configured limit are rejected."""
        server = create_server(Config(max_script_size=4))

        with pytest.raises(ValueError, match="limit is 4"):
            tool(server, "decode_script")("00" * 5)

    def test_build_script(self, server):
        """build_script assembles prefix and entries."""
        result = tool(server, "build_script")(
            [{"tag": MAP_PREFIX.decode(), "payload_hex": MAP_ENTRY.payload.hex()}],
            prefix_hex="00",
        )

        assert result["script_hex"] == build(b"\x00", [MAP_ENTRY]).hex()

    def test_build_script_requires_tag(self, server):
        """Entries without a tag are rejected."""
        with pytest.raises(ValueError, match="tag"):
            tool(server, "build_script")([{"payload_hex": ""}])


class TestPayloadTools:
    """Test the single-protocol decode tools."""

    @pytest.fixture
    def server(self):
        return create_server()

    def test_decode_map(self, server):
        """decode_map returns the keyed record."""
        result = tool(server, "decode_map")(MAP_ENTRY.payload.hex())

        assert result["record"]["pairs"]["app"] == "bsocial"

    def test_decode_map_not_map(self, server):
        """Unparseable payloads give a null record."""
        assert tool(server, "decode_map")("")["record"] is None

    def test_decode_b(self, server):
        """decode_b includes text content."""
        result = tool(server, "decode_b")(B_ENTRY.payload.hex())

        assert result["record"]["media_type"] == "text/plain"
        assert result["record"]["content"] == b"Hello".hex()
        assert result["content_utf8"] == "Hello"

    def test_decode_bap(self, server):
        """decode_bap returns the attestation."""
        payload = push_all([b"ATTEST", DUMMY_TXID.encode(), b"2"])

        record = tool(server, "decode_bap")(payload.hex())["record"]

        assert record["kind"] == "ATTEST"
        assert record["sequence"] == 2
        assert record["chained_signature"] is None


class TestSignatureTools:
    """Test signature verification tools."""

    @pytest.fixture
    def server(self):
        return create_server()

    def test_verify_aip(self, server):
        """verify_aip reports each signature with its validity."""
        sig = sign_identity([B_ENTRY], PRIVATE_KEY)
        script = build(b"\x00", [B_ENTRY, sig.to_entry()])

        result = tool(server, "verify_aip")(script.hex())

        assert len(result["signatures"]) == 1
        assert result["signatures"][0]["valid"] is True
        assert result["signatures"][0]["address"] == address_from_private_key(PRIVATE_KEY)

    def test_verification_disabled(self):
        """With verification off, nothing is reported valid."""
        server = create_server(Config(verify_signatures=False))
        sig = sign_identity([B_ENTRY], PRIVATE_KEY)
        script = build(b"\x00", [B_ENTRY, sig.to_entry()])

        result = tool(server, "verify_aip")(script.hex())

        assert result["signatures"][0]["valid"] is False

    def test_verify_sigma(self, server):
        """verify_sigma checks an output of a raw transaction."""
        tx = signed_transaction()

        result = tool(server, "verify_sigma")(tx.serialize().hex(), 0)

        assert result["txid"] == tx.txid
        assert len(result["signatures"]) == 1
        assert result["signatures"][0]["valid"] is True

    def test_verify_sigma_bad_output(self, server):
        """Unknown output indexes are rejected."""
        tx = signed_transaction()

        with pytest.raises(ValueError, match="no output 5"):
            tool(server, "verify_sigma")(tx.serialize().hex(), 5)

    def test_verify_message(self, server):
        """verify_message checks a base64 BSM signature."""
        signature = base64.b64encode(sign_message(PRIVATE_KEY, b"hello")).decode()
        address = address_from_private_key(PRIVATE_KEY)

        assert tool(server, "verify_message")(address, signature, "hello")["valid"] is True
        assert tool(server, "verify_message")(address, signature, "bye")["valid"] is False


class TestNodeTools:
    """Test tools that go through the node."""

    @pytest.fixture
    def server(self):
        server = create_server()
        server._node = MagicMock()
        return server

    @pytest.mark.asyncio
    async def test_get_node_info(self, server):
        """get_node_info reports node status."""
        server._node.get_info = AsyncMock(return_value=NodeInfo(True, "main", 800000, 270000))

        result = await tool(server, "get_node_info")()

        assert result["connected"] is True
        assert result["block_height"] == 800000

    @pytest.mark.asyncio
    async def test_decode_transaction(self, server):
        """decode_transaction decodes and verifies every envelope."""
        tx = signed_transaction()
        server._node.get_transaction = AsyncMock(return_value=TransactionInfo(
            txid=tx.txid, blockhash=None, confirmations=0, time=None, hex=tx.serialize().hex(),
        ))

        result = await tool(server, "decode_transaction")(tx.txid)

        assert result["txid"] == tx.txid
        assert len(result["outputs"]) == 1
        entries = result["outputs"][0]["entries"]
        assert entries[0]["record"]["type"] == "KeyedRecord"
        assert entries[1]["record"]["type"] == "DetachedSignature"
        assert entries[1]["record"]["valid"] is True


class TestRecordToDict:
    """Test record rendering."""

    def test_none(self):
        """No record renders as None."""
        assert record_to_dict(None) is None

    def test_nested_signature(self):
        """Nested records render as dicts."""
        from mcp_bitcom.protocols.bap import AttestationRecord, AttestationType

        sig = sign_identity([B_ENTRY], PRIVATE_KEY, [0])
        result = record_to_dict(AttestationRecord(AttestationType.ID, "k", "a", chained_signature=sig))

        assert result["chained_signature"]["type"] == "IdentitySignature"
        assert result["chained_signature"]["field_indexes"] == [0]
