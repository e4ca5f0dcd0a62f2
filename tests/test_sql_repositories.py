from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

import clinicq.db  # noqa: F401  registers the tables
from clinicq.application.services.booking_service import BookingService
from clinicq.application.services.eta_service import EtaService
from clinicq.application.services.schedule_service import ScheduleService
from clinicq.application.services.status_service import StatusService
from clinicq.application.services.token_allocator import TokenAllocator
from clinicq.application.services.wallet_service import WalletService
from clinicq.db.models import Appointment, DoctorSchedule, Notification
from clinicq.enums import AppointmentStatus as S, WalletTransactionType as T
from clinicq.exceptions import InsufficientBalance, TransientStorageError
from clinicq.infrastructure.notifications.db_notifier import DbNotifier
from clinicq.infrastructure.persistence.sqlalchemy.repositories.queue_repository_sql import SqlQueueRepository
from clinicq.infrastructure.persistence.sqlalchemy.repositories.wallet_repository_sql import SqlWalletRepository

from tests.fakes import FixedClock

DAY = date(2025, 3, 10)  # a Monday


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def add_schedule(session, **fields):
    values = dict(doctor_id=10, clinic_id=20, day_of_week=DAY.weekday(), schedule_date=DAY, start_time="09:00", end_time="13:00")
    values.update(fields)
    s = DoctorSchedule(**values)
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


def services(session, clock):
    queue = SqlQueueRepository(session)
    wallet = WalletService(SqlWalletRepository(session), queue_repo=queue, clock=clock)
    eta = EtaService(queue, clock=clock)
    return (
        queue,
        wallet,
        BookingService(queue, TokenAllocator(queue), eta, wallet=wallet, clock=clock),
        StatusService(queue, eta, wallet=wallet, clock=clock),
        ScheduleService(queue, wallet, eta, clock=clock),
    )


def test_find_schedules_dated_and_recurring(session):
    dated = add_schedule(session)
    recurring = add_schedule(session, schedule_date=None, start_time="17:00")
    add_schedule(session, schedule_date=None, day_of_week=(DAY.weekday() + 1) % 7)
    add_schedule(session, is_cancelled=True)
    repo = SqlQueueRepository(session)

    assert [s.id for s in repo.find_schedules(10, 20, DAY)] == [dated.id, recurring.id]
    assert [s.id for s in repo.find_schedules(10, 20, DAY + timedelta(days=7))] == [recurring.id]


def test_booking_payment_and_cancellation_round_trip(session):
    schedule = add_schedule(session, max_tokens=2)
    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    queue, wallet, booking, _, schedules = services(session, clock)

    first = booking.book(10, 20, DAY, patient_id=7, consultation_fee=Decimal("500"), pay_from_wallet=True)
    second = booking.book(10, 20, DAY, patient_name="Walk-in")

    assert (first.appointment.token_number, second.appointment.token_number) == (1, 2)
    assert second.appointment.estimated_start_time == datetime(2025, 3, 10, 9, 15)
    assert first.appointment.is_paid
    assert wallet.repo.get_wallet(7).balance == Decimal("500.00")

    result = schedules.cancel_schedule(schedule.id, "Doctor unavailable")

    assert result.refunds.refunded_appointments == 1
    assert result.cancelled_appointments == 2
    assert wallet.repo.get_wallet(7).balance == Decimal("1000.00")
    types = [t.transaction_type for t in wallet.get_transactions(7)]
    assert types == [T.refund_full, T.appointment_payment, T.wallet_topup]
    assert wallet.verify_ledger(7).consistent
    assert wallet.repo.get_refund_for_appointment(first.appointment.id).refund_amount == Decimal("500.00")
    stored = session.exec(select(Appointment).where(Appointment.id == first.appointment.id)).one()
    assert stored.status == S.cancel
    assert stored.has_been_refunded


def test_supersession_persists_synthesized_times(session):
    schedule = add_schedule(session)
    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    queue, _, booking, status, _ = services(session, clock)
    ids = [booking.book(10, 20, DAY, patient_id=p).appointment.id for p in (1, 2, 3)]

    clock.now = datetime(2025, 3, 10, 9, 0)
    status.set_status(ids[0], "start")
    clock.now = datetime(2025, 3, 10, 9, 20)
    change = status.set_status(ids[2], "start")

    assert change.auto_completed == ids[:2]
    rows = queue.list_schedule_appointments(schedule.id, DAY)
    assert [r.status for r in rows] == [S.completed, S.completed, S.start]
    assert rows[1].times_estimated
    assert queue.get_schedule(schedule.id).average_consultation_time == 5


def test_cancelling_one_week_of_a_weekly_schedule(session):
    weekly = add_schedule(session, schedule_date=None)
    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    queue, wallet, booking, _, schedules = services(session, clock)
    next_week = DAY + timedelta(days=7)
    today = booking.book(10, 20, DAY, patient_id=7, consultation_fee=Decimal("400"), pay_from_wallet=True).appointment
    later = booking.book(10, 20, next_week, patient_id=8, consultation_fee=Decimal("400"), pay_from_wallet=True).appointment

    result = schedules.cancel_schedule(weekly.id, "Doctor unavailable", on_date=DAY)
    schedules.cancel_schedule(weekly.id, "Doctor unavailable", on_date=DAY)

    assert result.refunds.refunded_appointments == 1
    assert queue.get_appointment(today.id).status == S.cancel
    assert queue.get_appointment(later.id).status == S.scheduled
    assert wallet.repo.get_wallet(8).balance == Decimal("600.00")
    assert not queue.get_schedule(weekly.id).is_cancelled
    assert queue.find_schedules(10, 20, DAY) == []
    assert [s.id for s in queue.find_schedules(10, 20, next_week)] == [weekly.id]


def test_create_wallet_skips_an_existing_wallet(session):
    repo = SqlWalletRepository(session)

    first = repo.create_wallet(7)

    assert first.balance == Decimal("0.00")
    assert repo.create_wallet(7) is None
    assert repo.get_wallet(7).id == first.id


def test_wallet_opened_concurrently_is_reused(session):
    class LateReader(SqlWalletRepository):
        """Misses a wallet another transaction opened after the first lookup."""

        missed = False

        def get_wallet(self, patient_id, for_update=False):
            if not self.missed:
                self.missed = True
                return None
            return super().get_wallet(patient_id, for_update=for_update)

    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    WalletService(SqlWalletRepository(session), clock=clock).get_or_create_wallet(7)
    wallet = WalletService(LateReader(session), clock=clock)

    wallet.top_up(7, "10")

    assert wallet.repo.get_wallet(7).balance == Decimal("1010.00")
    types = [t.transaction_type for t in wallet.get_transactions(7)]
    assert types == [T.wallet_topup, T.wallet_topup]
    assert wallet.verify_ledger(7).consistent


def test_two_sessions_on_one_day_both_start_at_token_one(session):
    add_schedule(session)
    evening = add_schedule(session, start_time="18:00")
    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    _, _, booking, _, _ = services(session, clock)

    booking.book(10, 20, DAY, patient_id=1)
    booking.book(10, 20, DAY, patient_id=2)
    late = booking.book(10, 20, DAY, patient_id=3, schedule_id=evening.id).appointment

    assert late.token_number == 1
    assert late.estimated_start_time == datetime(2025, 3, 10, 18, 0)


def test_token_uniqueness_is_enforced_by_the_database(session):
    schedule = add_schedule(session)
    for _ in range(2):
        session.add(Appointment(schedule_id=schedule.id, doctor_id=10, clinic_id=20, appointment_date=DAY, token_number=1))
    with pytest.raises(IntegrityError):
        session.commit()
    session.rollback()


def test_failed_unit_rolls_back_every_repository(session):
    add_schedule(session)
    clock = FixedClock(datetime(2025, 3, 10, 8, 0))
    queue, wallet, booking, _, _ = services(session, clock)

    with pytest.raises(InsufficientBalance):
        booking.book(10, 20, DAY, patient_id=7, consultation_fee=Decimal("5000"), pay_from_wallet=True)

    assert session.exec(select(Appointment)).all() == []
    assert wallet.repo.get_wallet(7) is None


def test_operational_errors_become_transient(session, monkeypatch):
    repo = SqlQueueRepository(session)

    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "exec", broken)
    with pytest.raises(TransientStorageError):
        repo.list_day_appointments(10, 20, DAY)


def test_db_notifier_writes_in_its_own_session(engine):
    DbNotifier(engine).notify(7, None, "wallet_refund", "Refund Processed", "done")
    with Session(engine) as session:
        rows = session.exec(select(Notification)).all()
    assert [(n.user_id, n.type, n.read) for n in rows] == [(7, "wallet_refund", False)]
