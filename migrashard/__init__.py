"""Sharded blockchain emulator parts: accounts, transactions, pools, bank loans and partitioning."""

__version__ = "0.1.0"