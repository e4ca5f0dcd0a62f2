import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from clinicq.application.services.booking_service import BookingService
from clinicq.application.services.eta_service import EtaService
from clinicq.application.services.token_allocator import TokenAllocator
from clinicq.application.services.wallet_service import WalletService
from clinicq.enums import AppointmentStatus, WalletTransactionType
from clinicq.exceptions import CapacityExceeded, InsufficientBalance, InvalidRequest, NoActiveSchedule

from tests.fakes import FakeQueueRepo, FakeWalletRepo, FixedClock

DAY = date(2025, 3, 10)  # a Monday


def at(hh, mm, day=DAY):
    return datetime(day.year, day.month, day.day, hh, mm)


def build(max_tokens=None, with_wallet=False, **schedule):
    repo = FakeQueueRepo()
    repo.add_schedule(on_date=DAY, max_tokens=max_tokens, **schedule)
    clock = FixedClock(at(8, 0))
    wallet = WalletService(FakeWalletRepo(), queue_repo=repo, clock=clock) if with_wallet else None
    svc = BookingService(repo, TokenAllocator(repo), EtaService(repo, clock=clock), wallet=wallet, clock=clock)
    return repo, svc


def test_capacity_and_initial_etas():
    repo, svc = build(max_tokens=3)
    booked = [svc.book(10, 20, DAY, patient_id=100 + i).appointment for i in range(3)]

    assert [a.token_number for a in booked] == [1, 2, 3]
    assert [a.estimated_start_time for a in booked] == [at(9, 0), at(9, 15), at(9, 30)]
    with pytest.raises(CapacityExceeded):
        svc.book(10, 20, DAY, patient_id=200)
    assert len(repo.appts) == 3


def test_cancelled_tokens_are_not_reissued():
    repo, svc = build()
    first = svc.book(10, 20, DAY, patient_id=1).appointment
    repo.update_appointment(first.id, status=AppointmentStatus.cancel)
    second = svc.book(10, 20, DAY, patient_id=2).appointment
    assert second.token_number == 2


def test_walk_in_booking():
    repo, svc = build()
    booking = svc.book(10, 20, DAY, patient_name="Walk-in Ravi")
    assert booking.appointment.patient_id is None
    assert booking.payment is None
    with pytest.raises(InvalidRequest):
        svc.book(10, 20, DAY)
    with pytest.raises(InvalidRequest):
        svc.book(10, 20, DAY, patient_name="Walk-in", pay_from_wallet=True, consultation_fee=Decimal("100"))


def test_past_dates_rejected():
    repo, svc = build()
    with pytest.raises(InvalidRequest):
        svc.book(10, 20, DAY - timedelta(days=1), patient_id=1)


def test_no_schedule_for_day():
    repo, svc = build()
    with pytest.raises(NoActiveSchedule):
        svc.book(10, 20, DAY + timedelta(days=1), patient_id=1)
    with pytest.raises(NoActiveSchedule):
        svc.book(11, 20, DAY, patient_id=1)


def test_recurring_schedule_matches_weekday():
    repo = FakeQueueRepo()
    repo.add_schedule(id=5, on_date=None, day_of_week=0, start_time="17:00")
    clock = FixedClock(at(8, 0))
    svc = BookingService(repo, TokenAllocator(repo), EtaService(repo, clock=clock), clock=clock)

    next_monday = DAY + timedelta(days=7)
    booking = svc.book(10, 20, next_monday, patient_id=1)
    assert booking.appointment.schedule_id == 5
    assert booking.appointment.estimated_start_time == at(17, 0, next_monday)
    # each day numbers its own tokens
    assert svc.book(10, 20, DAY, patient_id=2).appointment.token_number == 1


def test_earliest_schedule_wins_unless_named():
    repo, svc = build(start_time="14:00")
    repo.add_schedule(id=2, on_date=DAY, start_time="09:00")
    assert svc.book(10, 20, DAY, patient_id=1).appointment.schedule_id == 2
    assert svc.book(10, 20, DAY, patient_id=2, schedule_id=1).appointment.schedule_id == 1


def test_each_session_numbers_its_own_tokens():
    repo, svc = build()
    repo.add_schedule(id=2, on_date=DAY, start_time="18:00")
    morning = [svc.book(10, 20, DAY, patient_id=p).appointment for p in (1, 2)]

    evening = svc.book(10, 20, DAY, patient_id=3, schedule_id=2).appointment

    assert [a.token_number for a in morning] == [1, 2]
    assert evening.token_number == 1
    assert evening.estimated_start_time == at(18, 0)
    assert svc.book(10, 20, DAY, patient_id=4).appointment.token_number == 3


def test_paid_booking_debits_wallet():
    repo, svc = build(with_wallet=True)
    booking = svc.book(10, 20, DAY, patient_id=7, consultation_fee=Decimal("500"), pay_from_wallet=True)

    assert booking.appointment.is_paid
    assert booking.payment.transaction_type == WalletTransactionType.appointment_payment
    assert booking.payment.appointment_id == booking.appointment.id
    assert svc.wallet.repo.balance(7) == Decimal("500.00")


def test_failed_payment_releases_the_token():
    repo, svc = build(with_wallet=True)
    with pytest.raises(InsufficientBalance):
        svc.book(10, 20, DAY, patient_id=7, consultation_fee=Decimal("1500"), pay_from_wallet=True)
    assert repo.appts == {}
    assert svc.book(10, 20, DAY, patient_id=7).appointment.token_number == 1


def test_concurrent_bookings_get_distinct_consecutive_tokens():
    repo, svc = build()
    workers = 20
    barrier = threading.Barrier(workers)
    tokens, errors = [], []

    def book(patient_id):
        barrier.wait()
        try:
            tokens.append(svc.book(10, 20, DAY, patient_id=patient_id).appointment.token_number)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=book, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(tokens) == list(range(1, workers + 1))
