# migrashard

Building blocks for emulating a sharded blockchain in which accounts move
between shards, and in which a per-shard bank lends to accounts while they
are migrating.

## What is in the package

- **Configuration**: `migrashard.params`
  - `ChainConfig` holds the chain and experiment settings, such as block and
    pool sizes, the migration mode flags and the bank settings. A shared
    instance is `params.CONFIG`.
  - `build_layout(num_shards, num_nodes_per_shard)` returns a `NetworkLayout`
    with the node address table, the shard name table and the shard id table.
    Addresses are `127.0.0.1:<32000 + 100 * (shard + 1) + node>`.
  - `renew_shard_table` rebuilds the shared `params.LAYOUT` in place.
- **Accounts**: `migrashard.account`
  - `generate_address()` makes a P-256 key pair and returns the first 20
    bytes of the SHA-256 of the public key.
  - `address_to_shard(address, shard_num)` takes the last five hex digits of
    an address modulo the shard count.
  - `AccountState` holds the balance, the migration target and the location.
    It has `encode`, `hash` and `decode_account_state`.
  - `AccountRegistry` records which shard every account is in and which
    accounts belong to the shard itself. It also holds the sets of accounts
    that are leaving or locked.
- **Transactions and blocks**: `migrashard.transactions`, `migrashard.block`
  - `Transaction` is an ordinary transfer. The migration messages are
    `TXmig1` (leave request), `TXmig2` (arrival), `TXann` (announcement) and
    `TXns` (balance change). `TXrelay` is a relayed cross-shard transaction.
    `ProofDB` collects proof entries.
  - `BlockHeader` and `Block` carry the header and the message lists.
  - Each of these encodes to canonical JSON bytes and has a matching
    `decode_*` function. All except `TXrelay` and `ProofDB` can also be
    hashed with SHA-256.
- **Pools**: `migrashard.pools`, `migrashard.txpool`
  - `BoundedQueue` is a thread-safe FIFO queue drained with `take(quota)`.
    `TXmig1Pool`, `TXmig2Pool`, `TXannPool` and `TXnsPool` build on it.
  - `TxPool` holds ordinary transactions for one shard and needs an
    `AccountRegistry`. `fetch_to_pack` moves transactions that touch locked
    or leaving accounts into side pools. When the bank mechanism is on, it
    packs the transactions of a locked sender as bank loans.
    `lock_transactions` moves such transactions aside without packing
    anything. `deep_copy_transactions` returns independent copies.
- **Bank mechanism**: `migrashard.loan`, `migrashard.bank_state`,
  `migrashard.bank`, `migrashard.communication`
  - `BankManager` lends from a shard's balance with `create_loan`. It refuses
    a loan when funds are short or when the amount is above
    `max_loan_per_account`. It takes repayments with `process_repayment` and
    reports `active_loans`, `available_balance` and
    `total_loans_outstanding`. Failures raise `BankError`.
  - `LoanRecord` and `LoanStatus` describe a loan.
  - `BankState` is the bank's lendable balance, with `can_lend`, `lend` and
    `receive_repayment`.
  - `bank_address_for_shard(shard_id)` gives a deterministic 40-hex-digit
    address for a shard's bank.
  - `shard_id_from_string("S3")` returns `3`.
  - `BankCommunication` builds loan notifications, repayment confirmations,
    balance reconciliations and loan transfers. It sends them through a
    `transport` callable to the leader (`N0`) of the target shard; the
    default, `send_tcp`, writes them over TCP. `handle_message` processes an
    incoming `BankMessage` and tracks pending loans. Failures raise
    `CommunicationError`.
- **Partitioning**: `migrashard.graph`, `migrashard.partition`
  - `Graph` is an account graph with adjacency lists and per-neighbour edge
    weights.
  - `transactions_to_graph` builds a weighted graph from transactions.
  - `allocate` picks the highest-scoring shard for each account.
  - `CLPAState` runs constrained label propagation.
  - `LBFState` fills shards at random up to the average load and takes an
    injectable `random.Random`.
  - `METISState` writes the graph file and runs an external METIS
    `partition` executable through `subprocess`. That executable is not part
    of this package.
  - `pagerank` scores every account for every shard.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from migrashard.bank import BankManager

bank = BankManager(shard_id=0, initial_balance=1_000_000)
loan = bank.create_loan("alice", 100, target_shard=1)
print(bank.available_balance())        # 999900
bank.process_repayment(loan.loan_id, 100)
print(bank.total_loans_outstanding())  # 0
```

```python
from migrashard.account import address_to_shard

address_to_shard("a1e4380a3b1f749673e270229993ee55f35663b4", 2)
```

```python
from migrashard.partition import CLPAState

state = CLPAState(weight_penalty=0.5, max_iterations=10, shard_num=2)
state.add_edge("00000", "00001")
state.add_edge("00001", "00003")
moved_accounts, new_shards = state.partition()
```

## What the package does not do

It is a library of parts, not a running network. It has:

- no blockchain that applies blocks to a persistent state trie;
- no block storage on disk;
- no consensus between nodes;
- no node or client command.

`BankCommunication` can send messages, but nothing in the package listens for
them. Loans record a block height of 0, because nothing ties them to a chain.