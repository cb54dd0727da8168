"""Abstract interface for read-only Bitcoin node access."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NodeInfo:
    """Bitcoin node information."""
    connected: bool
    network: str
    block_height: int
    version: int
    errors: str = ""


@dataclass
class TransactionInfo:
    """Transaction fetched from the node."""
    txid: str
    blockhash: Optional[str]
    confirmations: int
    time: Optional[int]
    hex: str


class NodeInterface(ABC):
    """Abstract interface for fetching chain data from a node."""

    @abstractmethod
    async def get_info(self) -> NodeInfo:
        """Get node status and network info."""
        pass  # pragma: no cover

    @abstractmethod
    async def get_transaction(self, txid: str) -> TransactionInfo:
        """Get a transaction with its raw hex."""
        pass  # pragma: no cover

    async def close(self) -> None:
        """Release any held connection."""


def transaction_info(result: dict) -> TransactionInfo:
    """Build TransactionInfo from a getrawtransaction/gettransaction result."""
    return TransactionInfo(
        txid=result["txid"],
        blockhash=result.get("blockhash"),
        confirmations=result.get("confirmations", 0),
        time=result.get("time"),
        hex=result["hex"],
    )


def node_info(chain_info: dict, network_info: dict) -> NodeInfo:
    """Build NodeInfo from getblockchaininfo and getnetworkinfo results."""
    return NodeInfo(
        connected=True,
        network=chain_info["chain"],
        block_height=chain_info["blocks"],
        version=network_info["version"],
        errors=chain_info.get("warnings", ""),
    )


def disconnected_info(error: Exception) -> NodeInfo:
    return NodeInfo(
        connected=False,
        network="unknown",
        block_height=0,
        version=0,
        errors=str(error),
    )
