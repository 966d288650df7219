"""Account addresses, account state and the account-to-shard registry."""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric import ec


def _int_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def hash_pub_key(pub_key: bytes) -> bytes:
    """Return the first 20 bytes of the SHA-256 of a public key."""
    return hashlib.sha256(pub_key).digest()[:20]


def generate_address() -> bytes:
    """Create a fresh P-256 key pair and return the address derived from it."""
    private = ec.generate_private_key(ec.SECP256R1())
    numbers = private.public_key().public_numbers()
    return hash_pub_key(_int_bytes(numbers.x) + _int_bytes(numbers.y))


def address_to_shard(address: str, shard_num: int) -> int:
    """Shard of an address: its last five hex digits modulo the shard count."""
    if len(address) < 5:
        raise ValueError(f"address too short: {address!r}")
    try:
        num = int(address[-5:], 16)
    except ValueError as exc:
        raise ValueError(f"invalid hex address: {address!r}") from exc
    return num % shard_num


@dataclass
class AccountState:
    """Balance of an account and where it lives or is migrating to."""

    balance: int = 0
    migrate: int = -1
    location: int = 0

    def encode(self) -> bytes:
        """Serialise to canonical bytes."""
        payload = {
            "balance": str(self.balance),
            "migrate": self.migrate,
            "location": self.location,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()

    def hash(self) -> bytes:
        """SHA-256 of the encoded state."""
        return hashlib.sha256(self.encode()).digest()


def decode_account_state(data: bytes) -> AccountState:
    """Rebuild an AccountState from bytes produced by AccountState.encode."""
    try:
        payload = json.loads(data)
        return AccountState(
            balance=int(payload["balance"]),
            migrate=int(payload["migrate"]),
            location=int(payload["location"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError("cannot decode account state") from exc


@dataclass
class AccountRegistry:
    """Where every known account lives, and the accounts of one's own shard.

    It also holds the sets that track accounts while they migrate.
    """

    shard_num: int
    own_shard: int
    account_to_shard: dict[str, int] = field(default_factory=dict)
    in_own_shard: set[str] = field(default_factory=set)
    balance_before_out: dict[str, int] = field(default_factory=dict)
    outing_before_announce: set[str] = field(default_factory=set)
    outing_after_announce: set[str] = field(default_factory=set)
    locked: dict[str, bool] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def shard_of(self, address: str) -> int:
        """Shard of an address, computing and remembering it on first use."""
        with self.lock:
            known = self.account_to_shard.get(address)
            if known is not None:
                return known
            shard = address_to_shard(address, self.shard_num)
            self.account_to_shard[address] = shard
            if shard == self.own_shard:
                self.in_own_shard.add(address)
            return shard

    def assign(self, address: str, shard: int) -> None:
        """Place an account in a shard, updating own-shard membership."""
        with self.lock:
            self.account_to_shard[address] = shard
            if shard == self.own_shard:
                self.in_own_shard.add(address)
            else:
                self.in_own_shard.discard(address)

    def copy_mapping(self) -> dict[str, int]:
        """An independent copy of the address-to-shard mapping."""
        with self.lock:
            return dict(self.account_to_shard)