"""The lending bank of a shard and helpers for cross-shard loans."""

from __future__ import annotations

import hashlib
import itertools
import logging
import re
import threading
import time

from . import params
from .communication import BankCommunication
from .loan import LoanRecord
from .params import ChainConfig

logger = logging.getLogger(__name__)

# Bank managers of this process, by shard id.
BANK_MANAGERS: dict[int, "BankManager"] = {}

_SHARD_NUMBER = re.compile(r"[+-]?[0-9]+")
_loan_sequence = itertools.count()


class BankError(Exception):
    """A bank operation could not be carried out."""


def _current_block_height() -> int:
    # Loans are not yet tied to the chain height.
    return 0


def _generate_bank_address(shard_id: int) -> str:
    seed = f"bank_shard_{shard_id}_{time.time_ns()}"
    return hashlib.sha256(seed.encode()).digest()[:20].hex()


def _generate_loan_id(borrower: str, source_shard: int, target_shard: int) -> str:
    seed = f"loan_{borrower}_{source_shard}_{target_shard}_{time.time_ns()}_{next(_loan_sequence)}"
    return hashlib.sha256(seed.encode()).digest()[:16].hex()


class BankManager:
    """Lends to accounts of one shard and tracks their loans."""

    def __init__(self, shard_id: int, initial_balance: int, config: ChainConfig | None = None):
        self.shard_id = shard_id
        self.bank_address = _generate_bank_address(shard_id)
        self.balance = initial_balance
        self.loans: dict[str, LoanRecord] = {}
        self.config = config
        self._lock = threading.Lock()
        self.communication = BankCommunication(shard_id, bank_manager=self, config=config)
        BANK_MANAGERS[shard_id] = self

    def _config(self) -> ChainConfig:
        return self.config if self.config is not None else params.CONFIG

    def mark_repaid(self, loan_id: str) -> None:
        """Mark an active loan as repaid without touching the balance."""
        with self._lock:
            loan = self.loans.get(loan_id)
            if loan is None:
                raise BankError(f"loan {loan_id} not found")
            if not loan.is_active():
                raise BankError(f"loan {loan_id} is not active")
            loan.mark_repaid()
        logger.info("Marked loan %s as repaid", loan_id)

    def create_loan(self, borrower: str, amount: int, target_shard: int) -> LoanRecord:
        """Lend amount to borrower, taking it out of the bank's balance."""
        with self._lock:
            if self.balance < amount:
                raise BankError(
                    f"insufficient bank funds: have {self.balance}, need {amount}"
                )
            config = self._config()
            max_loan = config.max_loan_per_account
            if max_loan is not None and amount > max_loan:
                raise BankError(
                    f"loan amount {amount} exceeds maximum per account {max_loan}"
                )
            loan_id = _generate_loan_id(borrower, self.shard_id, target_shard)
            loan = LoanRecord(
                loan_id=loan_id,
                borrower=borrower,
                amount=amount,
                source_shard=self.shard_id,
                target_shard=target_shard,
            )
            loan.created_block = _current_block_height()
            loan.due_block = loan.created_block + config.loan_repayment_period
            self.balance -= amount
            self.loans[loan_id] = loan
        logger.info(
            "Bank Shard %d: Created loan %s to %s for amount %s",
            self.shard_id, loan_id, borrower, amount,
        )
        return loan

    def process_repayment(self, loan_id: str, amount: int) -> None:
        """Credit a repayment to the bank and close the loan."""
        with self._lock:
            loan = self.loans.get(loan_id)
            if loan is None:
                raise BankError(f"loan {loan_id} not found")
            if not loan.is_active():
                raise BankError(f"loan {loan_id} is not active (status: {loan.status})")
            self.balance += amount
            loan.mark_repaid()
        logger.info(
            "Bank Shard %d: Processed repayment for loan %s, amount %s",
            self.shard_id, loan_id, amount,
        )

    def get_loan(self, loan_id: str) -> LoanRecord | None:
        with self._lock:
            return self.loans.get(loan_id)

    def active_loans(self) -> list[LoanRecord]:
        with self._lock:
            return [loan for loan in self.loans.values() if loan.is_active()]

    def available_balance(self) -> int:
        with self._lock:
            return self.balance

    def total_loans_outstanding(self) -> int:
        with self._lock:
            return sum(loan.amount for loan in self.loans.values() if loan.is_active())

    def _first_active_loan_of(self, borrower: str) -> LoanRecord | None:
        with self._lock:
            return next(
                (loan for loan in self.loans.values()
                 if loan.borrower == borrower and loan.is_active()),
                None,
            )


def shard_id_from_string(shard_str: str) -> int:
    """Shard id from a name such as "S0"."""
    if len(shard_str) < 2 or shard_str[0] != "S":
        raise BankError(f"invalid shard string format: {shard_str}")
    number = shard_str[1:]
    if not _SHARD_NUMBER.fullmatch(number):
        raise BankError(f"invalid shard number in {shard_str}")
    return int(number)


def bank_address_for_shard(shard_id: int) -> str:
    """The deterministic bank account address of a shard, as 40 hex digits."""
    seed = f"bank_shard_{shard_id}_0"
    return hashlib.sha256(seed.encode()).digest()[:20].hex()


def schedule_loan_repayments(
    migration_data: dict[str, int] | None, borrower: str, target_shard: int
) -> int:
    """Total amount to be repaid for the loans carried by a migration."""
    if migration_data is None:
        return 0
    return sum(migration_data.values())


def loan_info_for_account(
    borrower: str, source_shard: int
) -> tuple[dict[str, int], dict[str, str]]:
    """The active loan of a borrower in a shard, as amount and loan id by borrower."""
    manager = BANK_MANAGERS.get(source_shard)
    if manager is None:
        raise BankError(f"bank manager not found for shard {source_shard}")
    loan = manager._first_active_loan_of(borrower)
    if loan is None:
        return {}, {}
    return {borrower: loan.amount}, {borrower: loan.loan_id}


def record_incoming_loan(
    borrower: str, amount: int, loan_id: str, source_shard: int, target_shard: int
) -> None:
    """Note a loan taken in another shard that is to be repaid here."""
    logger.info(
        "Recording incoming loan: borrower=%s, amount=%s, loanID=%s, sourceShard=%d, targetShard=%d",
        borrower, amount, loan_id, source_shard, target_shard,
    )