"""Messages exchanged between the banks of different shards."""

from __future__ import annotations

import base64
import dataclasses
import enum
import json
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from . import params
from .params import ChainConfig, NetworkLayout

logger = logging.getLogger(__name__)

COMMAND_PREFIX_LENGTH = 12
BANK_COMMAND = "bankmessage"


class CommunicationError(Exception):
    """A bank message could not be built, sent or understood."""


class BankMessageType(str, enum.Enum):
    """Kinds of message one bank sends another."""

    LOAN_NOTIFICATION = "bank_loan_notification"
    REPAYMENT_CONFIRMATION = "bank_repayment_confirmation"
    BALANCE_RECONCILIATION = "bank_balance_reconciliation"
    LOAN_TRANSFER = "bank_loan_transfer"


class PendingLoanStatus(str, enum.Enum):
    """Where a cross-shard loan stands."""

    NOTIFIED = "notified"
    TRANSFERRED = "transferred"
    CONFIRMED = "confirmed"


@dataclass
class LoanNotification:
    """Tells a target shard about a loan taken by a migrating account."""

    borrower: str
    loan_id: str
    amount: int
    interest: int
    created_time: int
    due_time: int
    migration_tx: str


@dataclass
class RepaymentConfirmation:
    """Confirms that a repayment was received."""

    loan_id: str
    repayment_tx: str
    amount: int
    repayment_time: int
    borrower: str


@dataclass
class LoanTransfer:
    """One loan moved between the banks of two shards."""

    loan_id: str
    borrower: str
    amount: int
    from_shard: int
    to_shard: int
    time: int


@dataclass
class BalanceReconciliation:
    """Net balance between two banks over a period; positive means the target owes."""

    period_start: int
    period_end: int
    net_balance: int
    transactions: list[LoanTransfer]
    reconciliation_id: str


@dataclass
class LoanTransferContent:
    """Hands ownership of a loan to another bank."""

    loan_id: str
    borrower: str
    amount: int
    interest: int
    transfer_time: int


def _decode_content(cls: type, raw: Any) -> Any:
    if not isinstance(raw, dict):
        raise CommunicationError(f"failed to unmarshal {cls.__name__}: not an object")
    names = {f.name for f in dataclasses.fields(cls)}
    try:
        return cls(**{k: v for k, v in raw.items() if k in names})
    except TypeError as exc:
        raise CommunicationError(f"failed to unmarshal {cls.__name__}: {exc}") from exc


def _decode_reconciliation(raw: Any) -> BalanceReconciliation:
    content = _decode_content(BalanceReconciliation, raw)
    content.transactions = [
        _decode_content(LoanTransfer, item) for item in (content.transactions or [])
    ]
    return content


@dataclass
class BankMessage:
    """A message between banks; content holds the kind-specific fields."""

    type: BankMessageType | str
    timestamp: int
    sender: int
    receiver: int
    content: dict[str, Any]

    def to_json(self) -> str:
        kind = self.type.value if isinstance(self.type, BankMessageType) else self.type
        return json.dumps(
            {
                "type": kind,
                "timestamp": self.timestamp,
                "sender_shard": self.sender,
                "receiver_shard": self.receiver,
                "content": self.content,
            }
        )

    @staticmethod
    def from_json(text: str | bytes) -> BankMessage:
        """Parse a message; an unrecognised type is kept as a plain string."""
        try:
            raw = json.loads(text)
            kind = raw["type"]
            try:
                kind = BankMessageType(kind)
            except ValueError:
                pass
            return BankMessage(
                type=kind,
                timestamp=int(raw["timestamp"]),
                sender=int(raw["sender_shard"]),
                receiver=int(raw["receiver_shard"]),
                content=raw["content"],
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise CommunicationError(f"failed to unmarshal message: {exc}") from exc


@dataclass
class PendingLoan:
    """A loan awaiting confirmation between two shards."""

    loan_id: str
    borrower: str
    amount: int
    source_shard: int
    target_shard: int
    created_time: int
    status: PendingLoanStatus


def send_tcp(payload: bytes, address: str) -> None:
    """Open a TCP connection to host:port and write the payload."""
    host, _, port = address.rpartition(":")
    try:
        with socket.create_connection((host, int(port)), timeout=5) as conn:
            conn.sendall(payload)
    except (OSError, ValueError) as exc:
        raise CommunicationError(f"cannot send to {address}: {exc}") from exc


def _now() -> int:
    return int(time.time())


@dataclass
class BankCommunication:
    """Sends and receives the bank messages of one shard."""

    shard_id: int
    bank_manager: Any = None
    layout: NetworkLayout | None = None
    config: ChainConfig | None = None
    transport: Callable[[bytes, str], None] = send_tcp
    _pending: dict[str, PendingLoan] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _config(self) -> ChainConfig:
        return self.config if self.config is not None else params.CONFIG

    def _layout(self) -> NetworkLayout:
        return self.layout if self.layout is not None else params.LAYOUT

    def _record(self, loan: PendingLoan) -> None:
        with self._lock:
            self._pending[loan.loan_id] = loan

    def notify_target_shard(
        self,
        borrower: str,
        loan_id: str,
        amount: int,
        interest: int,
        target_shard: int,
        migration_tx: str,
    ) -> None:
        """Tell the target shard's bank about a loan and track it as pending."""
        now = _now()
        content = LoanNotification(
            borrower=borrower,
            loan_id=loan_id,
            amount=amount,
            interest=interest,
            created_time=now,
            due_time=now + self._config().loan_repayment_period,
            migration_tx=migration_tx,
        )
        message = BankMessage(
            BankMessageType.LOAN_NOTIFICATION, now, self.shard_id, target_shard,
            dataclasses.asdict(content),
        )
        self._record(
            PendingLoan(loan_id, borrower, amount, self.shard_id, target_shard, now,
                        PendingLoanStatus.NOTIFIED)
        )
        self._send(target_shard, message)

    def confirm_repayment(
        self, loan_id: str, repayment_tx: str, amount: int, borrower: str, source_shard: int
    ) -> None:
        """Tell the source shard's bank that a loan was repaid."""
        now = _now()
        content = RepaymentConfirmation(loan_id, repayment_tx, amount, now, borrower)
        message = BankMessage(
            BankMessageType.REPAYMENT_CONFIRMATION, now, self.shard_id, source_shard,
            dataclasses.asdict(content),
        )
        self._send(source_shard, message)

    def initiate_balance_reconciliation(
        self,
        target_shard: int,
        period_start: int,
        period_end: int,
        transactions: list[LoanTransfer],
    ) -> BalanceReconciliation:
        """Send the net balance with another shard over a period and return it."""
        net = 0
        for tx in transactions:
            if tx.from_shard == self.shard_id and tx.to_shard == target_shard:
                net -= tx.amount
            elif tx.from_shard == target_shard and tx.to_shard == self.shard_id:
                net += tx.amount
        now = _now()
        content = BalanceReconciliation(
            period_start=period_start,
            period_end=period_end,
            net_balance=net,
            transactions=list(transactions),
            reconciliation_id=f"recon-{self.shard_id}-{target_shard}-{now}",
        )
        message = BankMessage(
            BankMessageType.BALANCE_RECONCILIATION, now, self.shard_id, target_shard,
            dataclasses.asdict(content),
        )
        self._send(target_shard, message)
        return content

    def transfer_loan_ownership(
        self, loan_id: str, borrower: str, amount: int, interest: int, target_shard: int
    ) -> None:
        """Hand a loan over to another shard's bank."""
        now = _now()
        content = LoanTransferContent(loan_id, borrower, amount, interest, now)
        message = BankMessage(
            BankMessageType.LOAN_TRANSFER, now, self.shard_id, target_shard,
            dataclasses.asdict(content),
        )
        with self._lock:
            pending = self._pending.get(loan_id)
            if pending is not None:
                pending.status = PendingLoanStatus.TRANSFERRED
        self._send(target_shard, message)

    def handle_message(self, message: BankMessage) -> None:
        """Process an incoming bank message."""
        handlers = {
            BankMessageType.LOAN_NOTIFICATION: self._handle_loan_notification,
            BankMessageType.REPAYMENT_CONFIRMATION: self._handle_repayment_confirmation,
            BankMessageType.BALANCE_RECONCILIATION: self._handle_balance_reconciliation,
            BankMessageType.LOAN_TRANSFER: self._handle_loan_transfer,
        }
        handler = handlers.get(message.type) if isinstance(message.type, BankMessageType) else None
        if handler is None:
            kind = getattr(message.type, "value", message.type)
            raise CommunicationError(f"unknown message type: {kind}")
        handler(message)

    def _handle_loan_notification(self, message: BankMessage) -> None:
        content = _decode_content(LoanNotification, message.content)
        logger.info(
            "Bank shard %d received loan notification: borrower=%s, loanID=%s, amount=%s, from shard %d",
            self.shard_id, content.borrower, content.loan_id, content.amount, message.sender,
        )
        if self.bank_manager is not None:
            self._record(
                PendingLoan(content.loan_id, content.borrower, content.amount,
                            message.sender, self.shard_id, _now(), PendingLoanStatus.NOTIFIED)
            )
            logger.info("Recorded cross-shard loan %s from shard %d", content.loan_id, message.sender)

    def _handle_repayment_confirmation(self, message: BankMessage) -> None:
        content = _decode_content(RepaymentConfirmation, message.content)
        logger.info(
            "Bank shard %d received repayment confirmation: loanID=%s, amount=%s, from shard %d",
            self.shard_id, content.loan_id, content.amount, message.sender,
        )
        with self._lock:
            pending = self._pending.get(content.loan_id)
            if pending is not None:
                pending.status = PendingLoanStatus.CONFIRMED
                logger.info("Loan %s confirmed as repaid", content.loan_id)

    def _handle_balance_reconciliation(self, message: BankMessage) -> None:
        content = _decode_reconciliation(message.content)
        logger.info(
            "Bank shard %d received balance reconciliation: period=%d-%d, net balance=%s, from shard %d",
            self.shard_id, content.period_start, content.period_end, content.net_balance,
            message.sender,
        )
        logger.info(
            "Balance reconciliation %s received from shard %d",
            content.reconciliation_id, message.sender,
        )

    def _handle_loan_transfer(self, message: BankMessage) -> None:
        content = _decode_content(LoanTransferContent, message.content)
        logger.info(
            "Bank shard %d received loan transfer: loanID=%s, borrower=%s, amount=%s, from shard %d",
            self.shard_id, content.loan_id, content.borrower, content.amount, message.sender,
        )
        self._record(
            PendingLoan(content.loan_id, content.borrower, content.amount,
                        message.sender, self.shard_id, _now(), PendingLoanStatus.TRANSFERRED)
        )
        logger.info("Took ownership of loan %s from shard %d", content.loan_id, message.sender)

    def _send(self, target_shard: int, message: BankMessage) -> None:
        wrapper = {
            "Message": base64.b64encode(message.to_json().encode()).decode(),
            "ShardID": target_shard,
        }
        leader = self._layout().node_table.get(f"S{target_shard}", {}).get("N0", "")
        if not leader:
            raise CommunicationError(f"could not find leader for shard {target_shard}")
        prefix = BANK_COMMAND.encode().ljust(COMMAND_PREFIX_LENGTH, b"\0")
        self.transport(prefix + json.dumps(wrapper).encode(), leader)
        kind = getattr(message.type, "value", message.type)
        logger.info(
            "Bank shard %d sent %s message to shard %d leader %s",
            self.shard_id, kind, target_shard, leader,
        )

    def pending_loans(self) -> dict[str, PendingLoan]:
        """Independent copies of every pending loan, by loan id."""
        with self._lock:
            return {k: dataclasses.replace(v) for k, v in self._pending.items()}

    def clear_completed_loans(self) -> None:
        """Forget loans whose repayment has been confirmed."""
        with self._lock:
            self._pending = {
                k: v for k, v in self._pending.items()
                if v.status is not PendingLoanStatus.CONFIRMED
            }