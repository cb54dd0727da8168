"""Read-only transaction records.

Raw transactions are parsed and serialized with the BSV SDK; the records here
keep only what signature checks and envelope scans read, as plain bytes.
"""

import struct
from dataclasses import dataclass, field
from typing import Tuple

from bsv import Script
from bsv import Transaction as SdkTransaction
from bsv import TransactionInput, TransactionOutput
from bsv.utils import Writer


def _script_bytes(script) -> bytes:
    return bytes.fromhex(script.hex()) if script is not None else b""


@dataclass(frozen=True)
class TxInput:
    """Transaction input (only the outpoint matters for signatures)."""

    txid: str  # Display (big-endian) hex of the spent transaction
    vout: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF

    def outpoint(self) -> bytes:
        """36-byte serialized outpoint: reversed txid + little-endian vout."""
        writer = Writer()
        writer.write_reverse(bytes.fromhex(self.txid))
        writer.write_uint32_le(self.vout)
        return writer.to_bytes()


@dataclass(frozen=True)
class TxOutput:
    """Transaction output."""

    satoshis: int
    script: bytes


@dataclass(frozen=True)
class Transaction:
    """Decoded transaction."""

    inputs: Tuple[TxInput, ...] = field(default_factory=tuple)
    outputs: Tuple[TxOutput, ...] = field(default_factory=tuple)
    version: int = 1
    locktime: int = 0

    def to_sdk(self) -> SdkTransaction:
        """Equivalent BSV SDK transaction."""
        inputs = [
            TransactionInput(
                source_txid=txin.txid,
                source_output_index=txin.vout,
                unlocking_script=Script(txin.script_sig),
                sequence=txin.sequence,
            )
            for txin in self.inputs
        ]
        outputs = [
            TransactionOutput(locking_script=Script(txout.script), satoshis=txout.satoshis)
            for txout in self.outputs
        ]
        return SdkTransaction(tx_inputs=inputs, tx_outputs=outputs, version=self.version, locktime=self.locktime)

    def serialize(self) -> bytes:
        return self.to_sdk().serialize()

    @property
    def txid(self) -> str:
        return self.to_sdk().txid()

    @classmethod
    def from_sdk(cls, tx: SdkTransaction) -> "Transaction":
        inputs = tuple(
            TxInput(
                txid=txin.source_txid,
                vout=txin.source_output_index,
                script_sig=_script_bytes(txin.unlocking_script),
                sequence=txin.sequence,
            )
            for txin in tx.inputs
        )
        outputs = tuple(
            TxOutput(txout.satoshis, _script_bytes(txout.locking_script))
            for txout in tx.outputs
        )
        return cls(inputs, outputs, tx.version, tx.locktime)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Transaction":
        """Deserialize a raw transaction.

        Raises:
            ValueError: If the bytes are not exactly one complete transaction
        """
        raw = bytes(raw)
        try:
            tx = SdkTransaction.from_hex(raw.hex())
            if tx is None:
                raise ValueError("no transaction read")
            transaction = cls.from_sdk(tx)
            reserialized = transaction.serialize()
        except (ValueError, TypeError, IndexError, AttributeError, struct.error) as e:
            raise ValueError(f"Transaction could not be deserialized: {e}") from e

        # Bytes the SDK reader accepted but did not consume exactly
        if reserialized != raw:
            raise ValueError("Transaction is truncated or has trailing data")
        return transaction

    @classmethod
    def from_hex(cls, tx_hex: str) -> "Transaction":
        return cls.from_bytes(bytes.fromhex(tx_hex.strip()))
