"""Loan records kept by a shard's bank."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class LoanStatus(IntEnum):
    ACTIVE = 0
    REPAID = 1
    DEFAULTED = 2


@dataclass
class LoanRecord:
    """A loan lent by a shard's bank to a migrating account."""

    loan_id: str
    borrower: str
    amount: int
    source_shard: int = 0
    target_shard: int = 0
    interest: int = 0
    status: LoanStatus = LoanStatus.ACTIVE
    created_block: int = 0
    due_block: int = 0
    migration_tx_id: str = ""

    def mark_repaid(self) -> None:
        self.status = LoanStatus.REPAID

    def mark_defaulted(self) -> None:
        self.status = LoanStatus.DEFAULTED

    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def is_repaid(self) -> bool:
        return self.status == LoanStatus.REPAID

    def is_defaulted(self) -> bool:
        return self.status == LoanStatus.DEFAULTED