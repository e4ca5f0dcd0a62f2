from datetime import date, datetime

import pytest

from clinicq.application.retry import with_retries
from clinicq.application.services.eta_service import EtaService
from clinicq.application.services.progress_service import ProgressService
from clinicq.enums import AppointmentStatus as S
from clinicq.exceptions import AppointmentNotFound, InvalidRequest, TransientStorageError

from tests.fakes import FakeQueueRepo, FixedClock, FlakyQueueRepo

DAY = date(2025, 3, 10)


def build(repo=None, sleeps=None):
    repo = repo or FakeQueueRepo()
    repo.add_schedule(on_date=DAY, average=12)
    clock = FixedClock(datetime(2025, 3, 10, 9, 0))
    sleep = sleeps.append if sleeps is not None else (lambda _: None)
    svc = ProgressService(repo, EtaService(repo, clock=clock), clock=clock, sleep=sleep)
    return repo, svc


def progress_for(*statuses):
    repo, svc = build()
    for token, status in enumerate(statuses, start=1):
        repo.add_appointment(1, DAY, token, status=status)
    return svc.token_progress(10, 20, DAY)


def test_no_appointments():
    _, svc = build()
    progress = svc.token_progress(10, 20)
    assert (progress.current_token, progress.status, progress.appointment) == (0, "no_appointments", None)


def test_progress_status_precedence():
    p = progress_for(S.completed, S.start, S.scheduled)
    assert (p.current_token, p.status) == (2, "in_progress")

    p = progress_for(S.completed, S.hold, S.pause)
    assert (p.current_token, p.status) == (3, "pause")

    p = progress_for(S.completed, S.hold, S.scheduled)
    assert (p.current_token, p.status) == (2, "hold")

    p = progress_for(S.completed, S.completed, S.scheduled)
    assert (p.current_token, p.status) == (2, "completed")
    assert p.appointment.token_number == 2

    p = progress_for(S.scheduled, S.cancel)
    assert (p.current_token, p.status) == (0, "not_started")


def test_transient_failures_are_retried_with_backoff():
    sleeps = []
    repo, svc = build(FlakyQueueRepo(failures=2), sleeps)
    repo.add_appointment(1, DAY, 1, status=S.start)

    progress = svc.token_progress(10, 20, DAY)

    assert progress.status == "in_progress"
    assert repo.calls == 3
    assert sleeps == [0.2, 0.4]


def test_retries_give_up_after_configured_attempts():
    sleeps = []
    repo, svc = build(FlakyQueueRepo(failures=5), sleeps)
    with pytest.raises(TransientStorageError):
        svc.token_progress(10, 20, DAY)
    assert repo.calls == 3
    assert len(sleeps) == 2


def test_non_transient_errors_are_not_retried():
    calls = []

    def operation():
        calls.append(1)
        raise InvalidRequest("bad input")

    with pytest.raises(InvalidRequest):
        with_retries(operation, attempts=3, sleep=lambda _: None)
    assert len(calls) == 1


def test_appointment_eta():
    repo, svc = build()
    repo.add_appointment(1, DAY, 1, status=S.completed)
    target = repo.add_appointment(1, DAY, 2, estimated_start_time=datetime(2025, 3, 10, 9, 12))

    eta = svc.appointment_eta(target.id)

    assert eta["token_number"] == 2
    assert eta["current_consulting_token"] == 2
    assert eta["avg_consultation_time"] == 12
    assert eta["estimated_start_time"] == datetime(2025, 3, 10, 9, 12)
    with pytest.raises(AppointmentNotFound):
        svc.appointment_eta(999)


def test_progress_follows_session_order():
    repo, svc = build()
    repo.add_schedule(id=2, on_date=DAY, start_time="18:00")
    for token in (1, 2, 3):
        repo.add_appointment(1, DAY, token, status=S.completed)
    repo.add_appointment(2, DAY, 1, status=S.completed)
    repo.add_appointment(2, DAY, 2)

    progress = svc.token_progress(10, 20, DAY)

    assert (progress.current_token, progress.status) == (1, "completed")
    assert progress.appointment.schedule_id == 2
