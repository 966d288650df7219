"""The pool of ordinary transactions waiting to be packed into a block."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Iterable

from . import params
from .account import AccountRegistry
from .bank import bank_address_for_shard
from .params import ChainConfig, NetworkLayout
from .transactions import Transaction, decode_transaction

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _stamp_lock(tx: Transaction) -> None:
    """Record when a transaction was locked; a second lock gets its own field."""
    now = _now_ms()
    if tx.lock_time > 0:
        tx.lock_time2 = now
    else:
        tx.lock_time = now


class TxPool:
    """Queued transactions of one shard, and the side pools for locked ones."""

    def __init__(
        self,
        registry: AccountRegistry,
        config: ChainConfig | None = None,
        layout: NetworkLayout | None = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.layout = layout
        self.queue: list[Transaction] = []
        self.relay_pools: dict[str, list[Transaction]] = defaultdict(list)
        self.migration_pool: dict[str, int] = {}
        # Transactions of accounts that are leaving, held until the announcement.
        self.outing_before_announce: dict[str, list[Transaction]] = defaultdict(list)
        # Transactions of accounts that have left, arriving after the announcement.
        self.outing_after_announce: dict[str, list[Transaction]] = defaultdict(list)
        # Transactions touching accounts locked while they migrate.
        self.locking: dict[str, list[Transaction]] = defaultdict(list)
        # Relayed transactions for accounts arriving after the announcement.
        self.coming: dict[str, list[Transaction]] = defaultdict(list)
        self.lock = threading.RLock()
        self.relay_lock = threading.Lock()

    def _config(self) -> ChainConfig:
        return self.config if self.config is not None else params.CONFIG

    def _layout(self) -> NetworkLayout:
        return self.layout if self.layout is not None else params.LAYOUT

    def __len__(self) -> int:
        with self.lock:
            return len(self.queue)

    def add(self, tx: Transaction) -> None:
        with self.lock:
            self.queue.append(tx)

    def add_many(self, txs: Iterable[Transaction]) -> None:
        with self.lock:
            self.queue.extend(txs)

    def _admit(self, tx: Transaction, shard_id: int) -> bool:
        sender = tx.sender.hex()
        if self.registry.shard_of(sender) != shard_id:
            return False
        tx.request_time = _now_ms()
        self.add(tx)
        return True

    def inject(self, txs: Iterable[Transaction], shard_id: int) -> int:
        """Queue every transaction sent from shard_id; return how many were queued."""
        with self.lock:
            return sum(1 for tx in txs if self._admit(tx, shard_id))

    def inject_gradually(
        self,
        txs: list[Transaction],
        shard_id: int,
        speed: int | None = None,
        interval: float = 1.0,
    ) -> int:
        """Queue transactions of shard_id in batches of speed, one batch per interval.

        While migration keeps running, transactions of accounts that have
        already left are dropped.  Returns how many were queued.
        """
        cfg = self._config()
        batch = speed if speed is not None else cfg.inject_speed
        if batch <= 0:
            raise ValueError(f"speed must be positive: {batch}")
        queued = 0
        start = 0
        while True:
            time.sleep(interval)
            end = min(start + batch, len(txs))
            with self.lock:
                for tx in txs[start:end]:
                    if not cfg.stop_when_migrating:
                        with self.registry.lock:
                            gone = tx.sender.hex() in self.registry.outing_after_announce
                        if gone:
                            continue
                    if self._admit(tx, shard_id):
                        queued += 1
            start = end
            if start == len(txs):
                logger.info("injected %d transactions", queued)
                return queued

    def fetch_to_pack(
        self, left_count: int, block_number: int
    ) -> tuple[list[Transaction], int]:
        """Take transactions for the next block; return them and the queue length left.

        Transactions touching locked or leaving accounts are moved to the
        matching side pool instead.  Under the bank mechanism, transactions of
        a locked sender are packed as bank loans without using up the quota.
        """
        cfg = self._config()
        registry = self.registry
        logger.debug("left_count: %d", left_count)
        packed: list[Transaction] = []
        with self.lock:
            remaining = min(left_count, len(self.queue))
            consumed = 0
            for tx in self.queue:
                if remaining == 0:
                    break
                consumed += 1
                sender, recipient = tx.sender.hex(), tx.recipient.hex()
                relayed = tx.is_relay or tx.relay_lock
                with registry.lock:
                    foreign = (sender not in registry.in_own_shard and not relayed) or (
                        recipient not in registry.in_own_shard and relayed
                    )
                if foreign:
                    continue

                if cfg.lock_acc_when_migrating:
                    with registry.lock:
                        sender_locked = registry.locked.get(sender, False)
                        recipient_locked = registry.locked.get(recipient, False)
                        sender_shard = registry.account_to_shard.get(sender, 0)
                    if sender_locked and not relayed:
                        if cfg.enable_bank_mechanism:
                            own = self._layout().shard_table.get(cfg.shard_id, 0)
                            tx.is_bank_loan = True
                            tx.target_shard = sender_shard
                            tx.bank_address = bank_address_for_shard(own).encode()
                            tx.success = True
                            packed.append(tx)
                        else:
                            _stamp_lock(tx)
                            tx.sen_lock = True
                            if cfg.not_lock_immediately and tx.sen_suppose_on_chain == 0:
                                tx.sen_suppose_on_chain = block_number
                            self.locking[sender].append(tx)
                        continue
                    if recipient_locked:
                        if not cfg.relay_lock:
                            _stamp_lock(tx)
                            tx.rec_lock = True
                            if cfg.not_lock_immediately and tx.rec_suppose_on_chain == 0:
                                tx.rec_suppose_on_chain = block_number
                            self.locking[recipient].append(tx)
                            continue
                        held = decode_transaction(tx.encode())
                        _stamp_lock(held)
                        held.rec_lock = True
                        if cfg.not_lock_immediately and held.rec_suppose_on_chain == 0:
                            held.rec_suppose_on_chain = block_number
                        held.relay_lock = True
                        self.locking[recipient].append(held)
                elif not cfg.stop_when_migrating:
                    with registry.lock:
                        leaving = sender in registry.outing_before_announce
                    if leaving:
                        _stamp_lock(tx)
                        tx.sen_lock = True
                        if cfg.not_lock_immediately and tx.sen_suppose_on_chain == 0:
                            tx.sen_suppose_on_chain = block_number
                        self.outing_before_announce[sender].append(tx)
                        continue

                packed.append(tx)
                remaining -= 1
            del self.queue[:consumed]
            return packed, len(self.queue)

    def lock_transactions(self) -> None:
        """Move queued transactions that touch locked or leaving accounts aside."""
        cfg = self._config()
        registry = self.registry
        with self.relay_lock, self.lock, registry.lock:
            kept: list[Transaction] = []
            for tx in self.queue:
                sender, recipient = tx.sender.hex(), tx.recipient.hex()
                relayed = tx.is_relay or tx.relay_lock
                if cfg.lock_acc_when_migrating:
                    if not relayed and registry.locked.get(sender, False):
                        _stamp_lock(tx)
                        tx.sen_lock = True
                        self.locking[sender].append(tx)
                        continue
                    if registry.locked.get(recipient, False) and (
                        sender in registry.in_own_shard or relayed
                    ):
                        _stamp_lock(tx)
                        tx.rec_lock = True
                        self.locking[recipient].append(tx)
                        continue
                else:
                    if not relayed and sender in registry.outing_before_announce:
                        _stamp_lock(tx)
                        self.outing_before_announce[sender].append(tx)
                        continue
                kept.append(tx)
            self.queue = kept


def deep_copy_transactions(txs: Iterable[Transaction]) -> list[Transaction]:
    """Independent copies of the transactions' transfer and timing fields.

    Bank-loan fields are not carried over and take their defaults.
    """
    return [
        Transaction(
            sender=tx.sender,
            recipient=tx.recipient,
            tx_hash=tx.tx_hash,
            id=tx.id,
            success=tx.success,
            is_relay=tx.is_relay,
            sen_lock=tx.sen_lock,
            rec_lock=tx.rec_lock,
            value=tx.value,
            request_time=tx.request_time,
            second_request_time=tx.second_request_time,
            commit_time=tx.commit_time,
            lock_time=tx.lock_time,
            unlock_time=tx.unlock_time,
            lock_time2=tx.lock_time2,
            unlock_time2=tx.unlock_time2,
            half_lock=tx.half_lock,
            sen_suppose_on_chain=tx.sen_suppose_on_chain,
            rec_suppose_on_chain=tx.rec_suppose_on_chain,
            relay_lock=tx.relay_lock,
        )
        for tx in txs
    ]