import base64
import json
import socket

import pytest

from migrashard.communication import (
    BankCommunication,
    BankMessage,
    BankMessageType,
    CommunicationError,
    LoanTransfer,
    PendingLoanStatus,
    send_tcp,
)
from migrashard.params import ChainConfig, build_layout


class Recorder:
    def __init__(self):
        self.sent = []

    def __call__(self, payload, address):
        self.sent.append((payload, address))


def make_comm(shard_id=0, bank_manager=None):
    recorder = Recorder()
    comm = BankCommunication(
        shard_id,
        bank_manager=bank_manager,
        layout=build_layout(2, 1),
        config=ChainConfig(),
        transport=recorder,
    )
    return comm, recorder


def unwrap(payload):
    prefix, body = payload[:12], payload[12:]
    wrapper = json.loads(body)
    message = BankMessage.from_json(base64.b64decode(wrapper["Message"]))
    return prefix, wrapper, message


def wire_type(message):
    return json.loads(message.to_json())["type"]


def test_notify_records_pending_and_sends_to_leader():
    comm, recorder = make_comm()
    comm.notify_target_shard("alice", "loan1", 75000000000000000, 0, 1, "mig-tx")
    pending = comm.pending_loans()
    assert pending["loan1"].status is PendingLoanStatus.NOTIFIED
    assert pending["loan1"].amount == 75000000000000000
    assert pending["loan1"].target_shard == 1
    payload, address = recorder.sent[0]
    assert address == "127.0.0.1:32201"
    prefix, wrapper, message = unwrap(payload)
    assert prefix == b"bankmessage\x00"
    assert wrapper["ShardID"] == 1
    assert message.type is BankMessageType.LOAN_NOTIFICATION
    assert wire_type(message) == "bank_loan_notification"
    assert message.content["borrower"] == "alice"
    assert message.content["due_time"] - message.content["created_time"] == 100


def test_missing_leader_raises_but_keeps_pending():
    comm, recorder = make_comm()
    with pytest.raises(CommunicationError):
        comm.notify_target_shard("bob", "loan2", 10, 0, 7, "tx")
    assert "loan2" in comm.pending_loans()
    assert recorder.sent == []


def test_reconciliation_net_balance():
    comm, recorder = make_comm(shard_id=0)
    txs = [
        LoanTransfer("a", "x", 100, 0, 1, 1),
        LoanTransfer("b", "y", 30, 1, 0, 2),
        LoanTransfer("c", "z", 500, 1, 1, 3),
    ]
    content = comm.initiate_balance_reconciliation(1, 10, 20, txs)
    assert content.net_balance == -70
    assert content.reconciliation_id.startswith("recon-0-1-")
    _, _, message = unwrap(recorder.sent[0][0])
    assert wire_type(message) == "bank_balance_reconciliation"
    assert message.content["net_balance"] == -70
    assert len(message.content["transactions"]) == 3


def test_transfer_marks_pending_transferred():
    comm, recorder = make_comm()
    comm.notify_target_shard("alice", "loan1", 5, 0, 1, "tx")
    comm.transfer_loan_ownership("loan1", "alice", 5, 0, 1)
    assert comm.pending_loans()["loan1"].status is PendingLoanStatus.TRANSFERRED
    _, _, message = unwrap(recorder.sent[-1][0])
    assert wire_type(message) == "bank_loan_transfer"


def test_confirm_repayment_message():
    comm, recorder = make_comm(shard_id=1)
    comm.confirm_repayment("loan1", "rtx", 42, "alice", 0)
    _, wrapper, message = unwrap(recorder.sent[0][0])
    assert recorder.sent[0][1] == "127.0.0.1:32100"
    assert message.type is BankMessageType.REPAYMENT_CONFIRMATION
    assert wire_type(message) == "bank_repayment_confirmation"
    assert message.sender == 1 and message.receiver == 0
    assert message.content["amount"] == 42


def test_round_trip_between_two_banks():
    source, source_out = make_comm(shard_id=0, bank_manager=object())
    target, target_out = make_comm(shard_id=1, bank_manager=object())
    source.notify_target_shard("alice", "loan1", 99, 0, 1, "tx")
    _, _, message = unwrap(source_out.sent[0][0])
    target.handle_message(message)
    assert target.pending_loans()["loan1"].source_shard == 0
    target.confirm_repayment("loan1", "rtx", 99, "alice", 0)
    _, _, reply = unwrap(target_out.sent[0][0])
    source.handle_message(reply)
    assert source.pending_loans()["loan1"].status is PendingLoanStatus.CONFIRMED
    source.clear_completed_loans()
    assert source.pending_loans() == {}


def test_notification_without_bank_manager_is_not_recorded():
    comm, _ = make_comm(shard_id=1)
    message = BankMessage(
        BankMessageType.LOAN_NOTIFICATION, 0, 0, 1,
        {"borrower": "a", "loan_id": "l", "amount": 1, "interest": 0,
         "created_time": 0, "due_time": 0, "migration_tx": ""},
    )
    comm.handle_message(message)
    assert comm.pending_loans() == {}


def test_handle_loan_transfer_takes_ownership():
    comm, _ = make_comm(shard_id=1)
    message = BankMessage(
        BankMessageType.LOAN_TRANSFER, 0, 0, 1,
        {"loan_id": "l9", "borrower": "b", "amount": 7, "interest": 0, "transfer_time": 0},
    )
    comm.handle_message(message)
    loan = comm.pending_loans()["l9"]
    assert loan.status is PendingLoanStatus.TRANSFERRED
    assert loan.source_shard == 0 and loan.target_shard == 1


def test_handle_reconciliation_bad_content_raises():
    comm, _ = make_comm()
    message = BankMessage(BankMessageType.BALANCE_RECONCILIATION, 0, 1, 0, {"period_start": 1})
    with pytest.raises(CommunicationError):
        comm.handle_message(message)


def test_unknown_message_type_raises():
    comm, _ = make_comm()
    message = BankMessage.from_json(
        json.dumps({"type": "bogus", "timestamp": 0, "sender_shard": 0,
                    "receiver_shard": 1, "content": {}})
    )
    assert message.type == "bogus"
    with pytest.raises(CommunicationError, match="unknown message type"):
        comm.handle_message(message)


def test_message_json_round_trip():
    message = BankMessage(BankMessageType.LOAN_TRANSFER, 5, 0, 1, {"amount": 10 ** 30})
    back = BankMessage.from_json(message.to_json())
    assert back == message


def test_pending_loans_returns_copies():
    comm, _ = make_comm()
    comm.notify_target_shard("alice", "loan1", 5, 0, 1, "tx")
    copy = comm.pending_loans()
    copy["loan1"].status = PendingLoanStatus.CONFIRMED
    assert comm.pending_loans()["loan1"].status is PendingLoanStatus.NOTIFIED


def test_send_tcp_failure_raises():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    with pytest.raises(CommunicationError):
        send_tcp(b"x", f"127.0.0.1:{port}")