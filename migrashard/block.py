"""Block headers and blocks."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable

from .transactions import (
    TXann,
    TXmig1,
    TXmig2,
    TXns,
    Transaction,
    decode_transaction,
    decode_txann,
    decode_txmig1,
    decode_txmig2,
    decode_txns,
)


def _canonical(payload: Any) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def _record_payload(record: Any) -> Any:
    return json.loads(record.encode())


def _record_from(decoder: Callable[[bytes], Any], raw: Any) -> Any:
    return decoder(_canonical(raw))


@dataclass
class BlockHeader:
    """Header of a block: links, trie roots, height and timestamp."""

    parent_hash: bytes = b""
    state_root: bytes = b""
    tx_hash: bytes = b""
    mig_hash: bytes = b""
    number: int = 0
    time: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "parent_hash": self.parent_hash.hex(),
            "state_root": self.state_root.hex(),
            "tx_hash": self.tx_hash.hex(),
            "mig_hash": self.mig_hash.hex(),
            "number": self.number,
            "time": self.time,
        }

    @classmethod
    def _from_payload(cls, raw: dict) -> BlockHeader:
        return cls(
            parent_hash=bytes.fromhex(raw["parent_hash"]),
            state_root=bytes.fromhex(raw["state_root"]),
            tx_hash=bytes.fromhex(raw["tx_hash"]),
            mig_hash=bytes.fromhex(raw["mig_hash"]),
            number=int(raw["number"]),
            time=int(raw["time"]),
        )

    def encode(self) -> bytes:
        """Serialise to canonical bytes."""
        return _canonical(self._payload())

    def hash(self) -> bytes:
        """SHA-256 of the encoded header."""
        return hashlib.sha256(self.encode()).digest()

    def describe(self) -> str:
        """One line with the hashes, height and time of the header."""
        parts = [
            self.parent_hash.hex(),
            self.state_root.hex(),
            self.tx_hash.hex(),
            str(self.number),
            str(self.time),
        ]
        return "[" + " ".join(parts) + "]"


def decode_block_header(data: bytes) -> BlockHeader:
    """Rebuild a BlockHeader from bytes produced by BlockHeader.encode."""
    try:
        return BlockHeader._from_payload(json.loads(data))
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError("cannot decode block header") from exc


@dataclass
class Block:
    """A block: its header, ordinary transactions and migration messages."""

    header: BlockHeader
    transactions: list[Transaction] = field(default_factory=list)
    txmig1s: list[TXmig1] = field(default_factory=list)
    txmig2s: list[TXmig2] = field(default_factory=list)
    anns: list[TXann] = field(default_factory=list)
    nss: list[TXns] = field(default_factory=list)
    hash: bytes = b""
    fee: float = 0.0

    def compute_hash(self) -> bytes:
        """The block hash, which is the hash of its header."""
        return self.header.hash()

    def encode(self) -> bytes:
        """Serialise the whole block to canonical bytes."""
        payload = {
            "header": self.header._payload(),
            "transactions": [_record_payload(tx) for tx in self.transactions],
            "txmig1s": [_record_payload(tx) for tx in self.txmig1s],
            "txmig2s": [_record_payload(tx) for tx in self.txmig2s],
            "anns": [_record_payload(tx) for tx in self.anns],
            "nss": [_record_payload(tx) for tx in self.nss],
            "hash": self.hash.hex(),
            "fee": self.fee,
        }
        return _canonical(payload)

    def describe(self, stop_when_migrating: bool = False) -> str:
        """A readable summary of the block; migration counts only while migrating runs."""
        lines = [
            "blockHeader: ",
            self.header.describe(),
            f"# of transactions: {len(self.transactions)}",
        ]
        if not stop_when_migrating:
            lines += [
                f"# of TXmig1s: {len(self.txmig1s)}",
                f"# of In1s: {len(self.txmig2s)}",
                f"# of Anns: {len(self.anns)}",
                f"# of NSs: {len(self.nss)}",
            ]
        lines += ["blockHash: ", self.hash.hex()]
        return "\n".join(lines)


def decode_block(data: bytes) -> Block:
    """Rebuild a Block from bytes produced by Block.encode."""
    try:
        raw = json.loads(data)
        return Block(
            header=BlockHeader._from_payload(raw["header"]),
            transactions=[_record_from(decode_transaction, r) for r in raw["transactions"]],
            txmig1s=[_record_from(decode_txmig1, r) for r in raw["txmig1s"]],
            txmig2s=[_record_from(decode_txmig2, r) for r in raw["txmig2s"]],
            anns=[_record_from(decode_txann, r) for r in raw["anns"]],
            nss=[_record_from(decode_txns, r) for r in raw["nss"]],
            hash=bytes.fromhex(raw["hash"]),
            fee=float(raw["fee"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError("cannot decode block") from exc