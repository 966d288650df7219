"""Chain configuration and the static layout of shards and nodes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

BASE_IP = "127.0.0.1"
START_PORT = 32000
CLIENT_ADDR = f"{BASE_IP}:{START_PORT}"

DEFAULT_SHARDS = 2
DEFAULT_NODES = 1

# Initial balance given to every genesis account (10**40).
INIT_BALANCE = "10000000000000000000000000000000000000000"

_BANK_INITIAL_BALANCE = int.from_bytes(bytes.fromhex("88b0a4" + "00" * 19), "big")
_MAX_LOAN_PER_ACCOUNT = int.from_bytes(bytes.fromhex("3635c9" + "00" * 12), "big")


@dataclass
class ChainConfig:
    """Settings shared by every part of a shard node."""

    chain_id: int = 77
    node_id: str = ""
    shard_id: str = ""
    shard_num: int = 0
    malicious_num: int = 0
    path: str = ""
    block_interval: int = 6
    max_block_size: int = 2000
    max_mig_size: int = 1000
    max_mig2_size: int = 500
    max_mig1_size: int = 500
    max_ann_size: int = 500
    max_cap_size: int = 500
    relay_interval: int = 1000
    max_relay_block_size: int = 10
    min_relay_block_size: int = 1
    inject_speed: int = 2000
    max_commit: int = 100000
    max_commit_block: int = 50
    client_send_tx: bool = True
    stop_when_migrating: bool = False
    lock_acc_when_migrating: bool = False
    ratio_experiment: bool = False
    ratio_experiment_multi: bool = True
    timing_experiment: bool = False
    timing_experiment_interval: int = 3
    fail: bool = False
    fail_time: int = 8
    cross_chain: bool = False
    algorithm: bool = False
    pressure: bool = False
    porc: str = "CLPA"
    migrate_before_inject: bool = False
    only_once: int = 100
    not_lock_immediately: bool = True
    relay_lock: bool = True

    enable_bank_mechanism: bool = True
    bank_initial_balance: int = _BANK_INITIAL_BALANCE
    bank_interest_rate: int = 1000000000000000000
    max_loan_per_account: int | None = _MAX_LOAN_PER_ACCOUNT
    loan_repayment_period: int = 100


@dataclass
class NetworkLayout:
    """Addresses of every node, and the mapping between shard names and ids."""

    num_shards: int
    num_nodes: int
    node_table: dict[str, dict[str, str]] = field(default_factory=dict)
    shard_table: dict[str, int] = field(default_factory=dict)
    shard_names: dict[int, str] = field(default_factory=dict)


def build_layout(num_shards: int, num_nodes_per_shard: int) -> NetworkLayout:
    """Build the node and shard tables for the given network size."""
    node_table = {
        f"S{s}": {
            f"N{n}": f"{BASE_IP}:{START_PORT + 100 * (s + 1) + n}"
            for n in range(num_nodes_per_shard)
        }
        for s in range(num_shards)
    }
    shard_table = {f"S{s}": s for s in range(num_shards)}
    shard_names = {s: f"S{s}" for s in range(num_shards)}
    return NetworkLayout(
        num_shards=num_shards,
        num_nodes=num_nodes_per_shard,
        node_table=node_table,
        shard_table=shard_table,
        shard_names=shard_names,
    )


CONFIG = ChainConfig()
LAYOUT = build_layout(DEFAULT_SHARDS, DEFAULT_NODES)


def renew_shard_table(num_shards: int, num_nodes_per_shard: int) -> NetworkLayout:
    """Rebuild the shared layout in place for a new network size and return it."""
    logger.info(
        "Renewing ShardTable and NodeTable with %d shards and %d nodes per shard",
        num_shards,
        num_nodes_per_shard,
    )
    fresh = build_layout(num_shards, num_nodes_per_shard)
    LAYOUT.num_shards = fresh.num_shards
    LAYOUT.num_nodes = fresh.num_nodes
    LAYOUT.node_table = fresh.node_table
    LAYOUT.shard_table = fresh.shard_table
    LAYOUT.shard_names = fresh.shard_names
    return LAYOUT