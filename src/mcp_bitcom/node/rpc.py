"""Bitcoin node JSON-RPC interface."""

import base64
import logging
from typing import Any

import httpx

from mcp_bitcom.config import Config
from mcp_bitcom.node.interface import (
    NodeInterface,
    NodeInfo,
    TransactionInfo,
    disconnected_info,
    node_info,
    transaction_info,
)

logger = logging.getLogger(__name__)


class BitcoinRPC(NodeInterface):
    """Node interface via JSON-RPC."""

    def __init__(self, config: Config):
        self.config = config
        self.url = f"http://{config.rpc_host}:{config.get_rpc_port()}"

        # Build auth header
        credentials = f"{config.rpc_user}:{config.rpc_password}"
        auth_bytes = base64.b64encode(credentials.encode()).decode()

        self._headers = {
            "Authorization": f"Basic {auth_bytes}",
            "Content-Type": "application/json",
        }

        self._client = httpx.AsyncClient(timeout=30.0)
        self._request_id = 0

    async def _call(self, method: str, *args: Any) -> Any:
        """Execute JSON-RPC call."""
        self._request_id += 1

        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": list(args),
        }

        logger.debug("RPC %s #%d", method, self._request_id)
        response = await self._client.post(
            self.url,
            json=payload,
            headers=self._headers,
        )

        data = response.json()

        if data.get("error"):
            error = data["error"]
            raise RuntimeError(f"RPC error {error['code']}: {error['message']}")

        return data.get("result")

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def get_info(self) -> NodeInfo:
        """Get node status and network info."""
        try:
            chain_info = await self._call("getblockchaininfo")
            network_info = await self._call("getnetworkinfo")
            return node_info(chain_info, network_info)
        except (RuntimeError, httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("Node unreachable: %s", e)
            return disconnected_info(e)

    async def get_transaction(self, txid: str) -> TransactionInfo:
        """Get a transaction with its raw hex."""
        try:
            result = await self._call("getrawtransaction", txid, True)
        except RuntimeError:
            logger.debug("getrawtransaction failed for %s, trying wallet", txid)
            result = await self._call("gettransaction", txid)
        return transaction_info(result)
