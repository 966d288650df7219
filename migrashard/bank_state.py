"""The balance a shard's bank can lend from."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass


@dataclass
class BankState:
    """Lendable balance of the bank of one shard."""

    shard_id: int
    balance: int

    def encode(self) -> bytes:
        """Serialise to canonical bytes."""
        payload = {"balance": str(self.balance), "shard_id": self.shard_id}
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()

    def hash(self) -> bytes:
        """SHA-256 of the encoded state."""
        return hashlib.sha256(self.encode()).digest()

    def can_lend(self, amount: int) -> bool:
        return self.balance >= amount

    def lend(self, amount: int) -> bool:
        """Take amount out of the balance if it is covered; report whether it was."""
        if not self.can_lend(amount):
            return False
        self.balance -= amount
        return True

    def receive_repayment(self, amount: int) -> None:
        self.balance += amount


def decode_bank_state(data: bytes) -> BankState:
    """Rebuild a BankState from bytes produced by BankState.encode."""
    try:
        payload = json.loads(data)
        return BankState(shard_id=int(payload["shard_id"]), balance=int(payload["balance"]))
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError("cannot decode bank state") from exc