"""Queues of migration messages waiting to be packed into a block."""

from __future__ import annotations

import threading
import time
from typing import Generic, Iterable, TypeVar

from . import params
from .params import ChainConfig
from .transactions import TXann, TXmig1, TXmig2, TXns

T = TypeVar("T")


class BoundedQueue(Generic[T]):
    """A thread-safe first-in first-out queue drained in bounded batches."""

    def __init__(self) -> None:
        self._items: list[T] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def add(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.add(item)

    def take(self, quota: int) -> tuple[list[T], int]:
        """Remove up to quota items from the front; return them and the unused quota."""
        if quota < 0:
            raise ValueError(f"quota must not be negative: {quota}")
        with self._lock:
            taken = self._items[:quota]
            del self._items[: len(taken)]
        return taken, quota - len(taken)

    def _take_all(self) -> list[T]:
        with self._lock:
            taken, self._items = self._items, []
        return taken


def _cfg(config: ChainConfig | None) -> ChainConfig:
    return config if config is not None else params.CONFIG


class TXmig1Pool(BoundedQueue[TXmig1]):
    """Requests for accounts to leave this shard."""

    def fetch_to_pack(self, config: ChainConfig | None = None) -> tuple[list[TXmig1], int]:
        """Take requests for a block, with the migration quota left over.

        Without the multi-account experiment every queued request is taken and
        no quota is reported; with it, at most max_mig_size are taken.
        """
        cfg = _cfg(config)
        if not cfg.ratio_experiment_multi:
            return self._take_all(), 0
        return self.take(cfg.max_mig_size)

    def fetch_capped(self, config: ChainConfig | None = None) -> list[TXmig1]:
        """Take at most max_mig1_size requests."""
        return self.take(_cfg(config).max_mig1_size)[0]

    def inject(self, accounts: Iterable[TXmig1]) -> None:
        """Queue requests, stamping each with the current time in milliseconds."""
        for account in accounts:
            account.request_time = time.time_ns() // 1_000_000
            self.add(account)


class TXmig2Pool(BoundedQueue[TXmig2]):
    """Accounts arriving in this shard."""

    def fetch_capped(self, config: ChainConfig | None = None) -> list[TXmig2]:
        """Take at most max_mig2_size arrivals."""
        return self.take(_cfg(config).max_mig2_size)[0]


class TXannPool(BoundedQueue[TXann]):
    """Announcements of accounts that moved."""

    def fetch_capped(self, config: ChainConfig | None = None) -> list[TXann]:
        """Take at most max_ann_size announcements."""
        return self.take(_cfg(config).max_ann_size)[0]


class TXnsPool(BoundedQueue[TXns]):
    """Balance changes for accounts that moved."""

    def fetch_capped(self, config: ChainConfig | None = None) -> list[TXns]:
        """Take at most max_cap_size balance changes."""
        return self.take(_cfg(config).max_cap_size)[0]