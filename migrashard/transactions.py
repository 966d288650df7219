"""Transactions and the migration messages carried in blocks."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from .account import AccountState, decode_account_state


def _canonical(payload: Any) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def _decode(cls: Any, data: bytes, what: str) -> Any:
    try:
        return cls._from_payload(json.loads(data))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"cannot decode {what}") from exc


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _opt_payload(obj: Any) -> Any:
    return None if obj is None else obj._payload()


def _opt_from(cls: Any, raw: Any) -> Any:
    return None if raw is None else cls._from_payload(raw)


def _state_payload(state: AccountState | None) -> Any:
    return None if state is None else json.loads(state.encode())


def _state_from(raw: Any) -> AccountState | None:
    return None if raw is None else decode_account_state(_canonical(raw))


@dataclass
class ProofDB:
    """Key/value pairs collected while proving a trie entry."""

    entries: list[tuple[bytes, bytes]] = field(default_factory=list)

    def put(self, key: bytes, value: bytes) -> None:
        self.entries.append((bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        """Proofs only grow; deletions are ignored."""

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return iter(self.entries)

    def _payload(self) -> list[list[str]]:
        return [[key.hex(), value.hex()] for key, value in self.entries]

    @classmethod
    def _from_payload(cls, raw: list) -> ProofDB:
        return cls([(bytes.fromhex(key), bytes.fromhex(value)) for key, value in raw])

    def encode(self) -> bytes:
        return _canonical(self._payload())


class _FlatRecord:
    """Payload conversion shared by records whose fields are plain values."""

    _BYTES: tuple[str, ...] = ()
    _BIG: tuple[str, ...] = ()

    def _payload(self) -> dict[str, Any]:
        payload = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name in self._BYTES:
                value = value.hex()
            elif f.name in self._BIG:
                value = str(value)
            payload[f.name] = value
        return payload

    @classmethod
    def _from_payload(cls, raw: dict) -> Any:
        kwargs = {}
        for f in dataclasses.fields(cls):
            value = raw[f.name]
            if f.name in cls._BYTES:
                value = bytes.fromhex(value)
            elif f.name in cls._BIG:
                value = int(value)
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class Transaction(_FlatRecord):
    """A transfer of value between two accounts, with its bookkeeping."""

    _BYTES = ("sender", "recipient", "tx_hash", "bank_address")
    _BIG = ("value",)

    sender: bytes = b""
    recipient: bytes = b""
    tx_hash: bytes = b""
    id: int = 0
    success: bool = False
    is_relay: bool = False
    sen_lock: bool = False
    rec_lock: bool = False
    value: int = 0
    request_time: int = 0
    second_request_time: int = 0
    commit_time: int = 0
    lock_time: int = 0
    unlock_time: int = 0
    lock_time2: int = 0
    unlock_time2: int = 0
    half_lock: bool = False
    rec_suppose_on_chain: int = 0
    sen_suppose_on_chain: int = 0
    relay_lock: bool = False
    is_bank_loan: bool = False
    is_repayment: bool = False
    loan_id: str = ""
    bank_address: bytes = b""
    target_shard: int = 0

    def encode(self) -> bytes:
        return _canonical(self._payload())

    def hash(self) -> bytes:
        """SHA-256 of the encoded transaction."""
        return _sha256(self.encode())


@dataclass
class TXmig1(_FlatRecord):
    """Request that an account leave its shard for another."""

    address: str = ""
    fromshard_id: int = 0
    toshard_id: int = 0
    request_time: int = 0
    commit_time: int = 0
    id: int = 0

    def encode(self) -> bytes:
        return _canonical(self._payload())

    def hash(self) -> bytes:
        """SHA-256 of the encoded request."""
        return _sha256(self.encode())


@dataclass
class TXmig2:
    """Arrival of a migrating account in its new shard, with its proofs."""

    txmig1: TXmig1 | None = None
    mp_mig1: ProofDB | None = None
    state: AccountState | None = None
    mp_state: ProofDB | None = None
    h: int = 0
    address: str = ""
    value: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "txmig1": _opt_payload(self.txmig1),
            "mp_mig1": _opt_payload(self.mp_mig1),
            "state": _state_payload(self.state),
            "mp_state": _opt_payload(self.mp_state),
            "h": self.h,
            "address": self.address,
            "value": str(self.value),
        }

    @classmethod
    def _from_payload(cls, raw: dict) -> TXmig2:
        return cls(
            txmig1=_opt_from(TXmig1, raw["txmig1"]),
            mp_mig1=_opt_from(ProofDB, raw["mp_mig1"]),
            state=_state_from(raw["state"]),
            mp_state=_opt_from(ProofDB, raw["mp_state"]),
            h=int(raw["h"]),
            address=raw["address"],
            value=int(raw["value"]),
        )

    def encode(self) -> bytes:
        return _canonical(self._payload())

    def hash(self) -> bytes:
        return _sha256(self.encode())


@dataclass
class TXann:
    """Announcement that a migrated account now lives in another shard."""

    txmig2: TXmig2 | None = None
    mp_mig2: ProofDB | None = None
    state: AccountState | None = None
    mp_state: ProofDB | None = None
    h: int = 0
    address: str = ""
    toshard_id: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "txmig2": _opt_payload(self.txmig2),
            "mp_mig2": _opt_payload(self.mp_mig2),
            "state": _state_payload(self.state),
            "mp_state": _opt_payload(self.mp_state),
            "h": self.h,
            "address": self.address,
            "toshard_id": self.toshard_id,
        }

    @classmethod
    def _from_payload(cls, raw: dict) -> TXann:
        return cls(
            txmig2=_opt_from(TXmig2, raw["txmig2"]),
            mp_mig2=_opt_from(ProofDB, raw["mp_mig2"]),
            state=_state_from(raw["state"]),
            mp_state=_opt_from(ProofDB, raw["mp_state"]),
            h=int(raw["h"]),
            address=raw["address"],
            toshard_id=int(raw["toshard_id"]),
        )

    def encode(self) -> bytes:
        return _canonical(self._payload())

    def hash(self) -> bytes:
        return _sha256(self.encode())


@dataclass
class TXns:
    """A balance change for an account that has moved shards."""

    txann: TXann | None = None
    mp_ann: ProofDB | None = None
    state: AccountState | None = None
    mp_state: ProofDB | None = None
    h: int = 0
    address: str = ""
    change: int = 0
    is_repayment: bool = False

    def _payload(self) -> dict[str, Any]:
        return {
            "txann": _opt_payload(self.txann),
            "mp_ann": _opt_payload(self.mp_ann),
            "state": _state_payload(self.state),
            "mp_state": _opt_payload(self.mp_state),
            "h": self.h,
            "address": self.address,
            "change": str(self.change),
            "is_repayment": self.is_repayment,
        }

    @classmethod
    def _from_payload(cls, raw: dict) -> TXns:
        return cls(
            txann=_opt_from(TXann, raw["txann"]),
            mp_ann=_opt_from(ProofDB, raw["mp_ann"]),
            state=_state_from(raw["state"]),
            mp_state=_opt_from(ProofDB, raw["mp_state"]),
            h=int(raw["h"]),
            address=raw["address"],
            change=int(raw["change"]),
            is_repayment=bool(raw["is_repayment"]),
        )

    def encode(self) -> bytes:
        return _canonical(self._payload())

    def hash(self) -> bytes:
        return _sha256(self.encode())


@dataclass
class TXrelay:
    """A cross-shard transaction relayed with its proofs."""

    txcs: Transaction | None = None
    mp_cs: ProofDB | None = None
    state: AccountState | None = None
    mp_state: ProofDB | None = None
    h: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "txcs": _opt_payload(self.txcs),
            "mp_cs": _opt_payload(self.mp_cs),
            "state": _state_payload(self.state),
            "mp_state": _opt_payload(self.mp_state),
            "h": self.h,
        }

    @classmethod
    def _from_payload(cls, raw: dict) -> TXrelay:
        return cls(
            txcs=_opt_from(Transaction, raw["txcs"]),
            mp_cs=_opt_from(ProofDB, raw["mp_cs"]),
            state=_state_from(raw["state"]),
            mp_state=_opt_from(ProofDB, raw["mp_state"]),
            h=int(raw["h"]),
        )

    def encode(self) -> bytes:
        return _canonical(self._payload())


def decode_transaction(data: bytes) -> Transaction:
    return _decode(Transaction, data, "transaction")


def decode_txmig1(data: bytes) -> TXmig1:
    return _decode(TXmig1, data, "TXmig1")


def decode_txmig2(data: bytes) -> TXmig2:
    return _decode(TXmig2, data, "TXmig2")


def decode_txann(data: bytes) -> TXann:
    return _decode(TXann, data, "TXann")


def decode_txns(data: bytes) -> TXns:
    return _decode(TXns, data, "TXns")


def decode_txrelay(data: bytes) -> TXrelay:
    return _decode(TXrelay, data, "TXrelay")