import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from clinicq.application.services.notifications import QueueNotifications
from clinicq.application.services.wallet_service import WalletService
from clinicq.enums import AppointmentStatus as S, RefundType, WalletTransactionType as T
from clinicq.exceptions import (
    AlreadyPaid,
    AlreadyRefunded,
    InsufficientBalance,
    InvalidRequest,
    InvalidTransition,
    RefundNotEligible,
)

from tests.fakes import FakeQueueRepo, FakeWalletRepo, FixedClock, RecordingNotifier

DAY = date(2025, 3, 10)
FEE = Decimal("500.00")


def build(notifier=None, wallet_repo=None):
    queue = FakeQueueRepo()
    queue.add_schedule(on_date=DAY)
    notifications = QueueNotifications(notifier) if notifier else None
    svc = WalletService(
        wallet_repo or FakeWalletRepo(),
        queue_repo=queue,
        notifications=notifications,
        clock=FixedClock(datetime(2025, 3, 10, 8, 0)),
    )
    return queue, svc


def paid_appointment(queue, svc, token, patient_id, fee=FEE, **fields):
    appt = queue.add_appointment(1, DAY, token, patient_id=patient_id, consultation_fee=fee, **fields)
    svc.pay_for_appointment(appt.id)
    return appt


def assert_ledger_conserved(svc, patient_id):
    txns = svc.repo.list_transactions(patient_id, newest_first=False)
    for txn in txns:
        assert txn.amount > 0
        delta = txn.amount if txn.transaction_type.is_credit else -txn.amount
        assert txn.new_balance == txn.previous_balance + delta
    credits = sum((t.amount for t in txns if t.transaction_type.is_credit), Decimal("0"))
    debits = sum((t.amount for t in txns if not t.transaction_type.is_credit), Decimal("0"))
    wallet = svc.repo.get_wallet(patient_id)
    assert wallet.balance == credits - debits
    assert wallet.total_earned == credits
    assert wallet.total_spent == debits
    assert svc.verify_ledger(patient_id).consistent


def test_new_wallet_opens_with_starting_balance():
    _, svc = build()
    wallet = svc.get_or_create_wallet(42)
    assert wallet.balance == Decimal("1000.00")
    assert [t.transaction_type for t in svc.get_transactions(42)] == [T.wallet_topup]
    assert svc.get_or_create_wallet(42).id == wallet.id
    assert_ledger_conserved(svc, 42)


def test_debit_beyond_balance_is_rejected_atomically():
    _, svc = build()
    with pytest.raises(InsufficientBalance):
        svc.admin_adjust(42, Decimal("1500"), is_credit=False, reason="correction")
    # the lazily opened wallet was rolled back with the failed debit
    assert svc.repo.wallets == {}
    assert svc.repo.transactions == []


def test_non_positive_amounts_rejected():
    _, svc = build()
    for amount in (0, "-5", "abc"):
        with pytest.raises(InvalidRequest):
            svc.top_up(42, amount)


def test_schedule_cancellation_refunds_paid_appointment():
    queue, svc = build()
    appt = paid_appointment(queue, svc, 1, patient_id=7)
    assert svc.repo.balance(7) == Decimal("500.00")

    summary = svc.process_schedule_cancellation_refunds(1, "Doctor unavailable", actor_id=99)

    assert summary.refunded_appointments == 1
    assert summary.total_refund_amount == FEE
    assert svc.repo.balance(7) == Decimal("1000.00")
    refunded = queue.get_appointment(appt.id)
    assert refunded.status == S.cancel
    assert refunded.has_been_refunded
    assert refunded.refund_amount == FEE
    last = svc.get_transactions(7, limit=1)[0]
    assert last.transaction_type == T.refund_full
    assert last.amount == FEE
    assert last.processed_by == 99
    assert svc.repo.refunds[0].refund_type == RefundType.full
    assert_ledger_conserved(svc, 7)


def test_refund_is_never_applied_twice():
    queue, svc = build()
    appt = paid_appointment(queue, svc, 1, patient_id=7)
    svc.refund_appointment(appt.id, "cancelled")
    with pytest.raises(AlreadyRefunded):
        svc.refund_appointment(appt.id, "cancelled again")

    again = svc.process_schedule_cancellation_refunds(1, "cancelled again")
    assert again.refunded_appointments == 0
    assert len([t for t in svc.repo.transactions if t.transaction_type == T.refund_full]) == 1
    assert svc.repo.balance(7) == Decimal("1000.00")


def test_refund_eligibility_rules():
    queue, svc = build()
    unpaid = queue.add_appointment(1, DAY, 1, patient_id=7, consultation_fee=FEE)
    with pytest.raises(RefundNotEligible):
        svc.refund_appointment(unpaid.id, "x")

    seen = paid_appointment(queue, svc, 2, patient_id=8)
    queue.update_appointment(seen.id, status=S.completed)
    with pytest.raises(RefundNotEligible):
        svc.refund_appointment(seen.id, "x")

    no_refund = paid_appointment(queue, svc, 3, patient_id=9, is_refund_eligible=False)
    with pytest.raises(RefundNotEligible):
        svc.refund_appointment(no_refund.id, "x")


def test_batch_skips_ineligible_and_walk_ins():
    queue, svc = build()
    paid_appointment(queue, svc, 1, patient_id=7)
    done = paid_appointment(queue, svc, 2, patient_id=8)
    queue.update_appointment(done.id, status=S.completed)
    missed = paid_appointment(queue, svc, 3, patient_id=9)
    svc.mark_no_show(missed.id, actor_id=1)
    queue.add_appointment(1, DAY, 4, patient_id=None, consultation_fee=FEE, is_paid=True)
    queue.add_appointment(1, DAY, 5, patient_id=10, consultation_fee=FEE)

    summary = svc.process_schedule_cancellation_refunds(1, "Clinic closed")

    assert [d.patient_id for d in summary.refund_details] == [7]
    assert summary.skipped_walk_ins == 1
    assert summary.failed == []
    assert svc.repo.balance(8) == Decimal("500.00")
    assert svc.repo.balance(9) == Decimal("500.00")


def test_batch_failure_is_isolated_per_appointment():
    class RefundRowFails(FakeWalletRepo):
        def add_refund(self, appointment_id, *args, **kwargs):
            if appointment_id == 2:
                raise AlreadyRefunded("refund row already exists")
            return super().add_refund(appointment_id, *args, **kwargs)

    queue, svc = build(wallet_repo=RefundRowFails())
    for token, patient in ((1, 7), (2, 8), (3, 9)):
        paid_appointment(queue, svc, token, patient_id=patient)

    summary = svc.process_schedule_cancellation_refunds(1, "Doctor unavailable")

    assert summary.refunded_appointments == 2
    assert [f.appointment_id for f in summary.failed] == [2]
    assert summary.failed[0].code == "already_refunded"
    # the credit for the failed refund was rolled back with it
    assert svc.repo.balance(8) == Decimal("500.00")
    assert queue.get_appointment(2).status == S.scheduled
    assert svc.repo.balance(7) == svc.repo.balance(9) == Decimal("1000.00")


def test_partial_refund_spares_completed_consultations():
    queue, svc = build()
    seen = paid_appointment(queue, svc, 1, patient_id=7)
    for token, patient in ((2, 8), (3, 9)):
        paid_appointment(queue, svc, token, patient_id=patient)

    summary = svc.process_partial_refund(1, [seen.id], "Doctor left mid-session")

    assert summary.refunded_appointments == 2
    assert all(d.refund_type == RefundType.partial for d in summary.refund_details)
    assert svc.repo.balance(7) == Decimal("500.00")
    assert svc.repo.balance(8) == Decimal("1000.00")
    assert svc.get_transactions(9, limit=1)[0].transaction_type == T.refund_partial


def test_pay_twice_rejected():
    queue, svc = build()
    appt = paid_appointment(queue, svc, 1, patient_id=7)
    with pytest.raises(AlreadyPaid):
        svc.pay_for_appointment(appt.id)
    assert svc.repo.balance(7) == Decimal("500.00")


def test_no_show_only_from_waiting_states():
    queue, svc = build()
    appt = queue.add_appointment(1, DAY, 1, patient_id=7, status=S.start)
    with pytest.raises(InvalidTransition):
        svc.mark_no_show(appt.id)
    held = queue.add_appointment(1, DAY, 2, patient_id=8, status=S.hold)
    updated = svc.mark_no_show(held.id, notes="left the clinic")
    assert updated.status == S.no_show
    assert updated.status_notes == "left the clinic"
    assert not updated.is_refund_eligible


def test_ledger_is_conserved_across_operations():
    queue, svc = build()
    paid_appointment(queue, svc, 1, patient_id=7)
    paid_appointment(queue, svc, 2, patient_id=7, fee=Decimal("120.50"))
    svc.top_up(7, "250.25", reference_id="upi-123")
    svc.admin_adjust(7, Decimal("100"), is_credit=False, reason="penalty", admin_id=1)
    svc.admin_adjust(7, Decimal("40"), is_credit=True, reason="goodwill", admin_id=1)
    svc.process_schedule_cancellation_refunds(1, "Doctor unavailable")

    assert svc.repo.balance(7) == Decimal("1190.25")
    assert_ledger_conserved(svc, 7)


def test_wallet_summary_and_pagination():
    queue, svc = build()
    paid_appointment(queue, svc, 1, patient_id=7)
    svc.refund_appointment(1, "cancelled")
    for _ in range(12):
        svc.top_up(7, 10)

    summary = svc.get_wallet_summary(7)
    assert len(summary["recent_transactions"]) == 10
    assert summary["stats"]["total_transactions"] == 15
    assert summary["stats"]["total_refunds"] == FEE
    assert summary["stats"]["total_spent"] == FEE
    assert [t.id for t in svc.get_transactions(7, limit=2, offset=1)] == [14, 13]


def test_verify_ledger_detects_tampering():
    _, svc = build()
    svc.top_up(7, 100)
    w = svc.repo.wallets[7]
    svc.repo.update_wallet(w.id, balance=Decimal("5000.00"), total_earned=w.total_earned, total_spent=w.total_spent)
    check = svc.verify_ledger(7)
    assert not check.consistent
    assert check.replayed_balance == Decimal("1100.00")


def test_refund_notification_sent():
    notifier = RecordingNotifier()
    queue, svc = build(notifier=notifier)
    appt = paid_appointment(queue, svc, 1, patient_id=7)
    svc.refund_appointment(appt.id, "Doctor unavailable")
    assert notifier.types_for(7) == ["wallet_refund"]
    assert "₹500.00" in notifier.sent[0][4]


def test_concurrent_debits_never_overdraw():
    _, svc = build()
    svc.get_or_create_wallet(7)
    workers = 10
    barrier = threading.Barrier(workers)
    posted, refused, errors = [], [], []

    def debit():
        barrier.wait()
        try:
            posted.append(svc.admin_adjust(7, "300", is_credit=False, reason="correction"))
        except InsufficientBalance:
            refused.append(True)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=debit) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert (len(posted), len(refused)) == (3, 7)
    assert svc.repo.balance(7) == Decimal("100.00")
    assert sorted(t.new_balance for t in posted) == [Decimal("100.00"), Decimal("400.00"), Decimal("700.00")]
    assert svc.verify_ledger(7).consistent
