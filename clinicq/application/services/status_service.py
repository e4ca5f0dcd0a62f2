import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Union

from ...config import settings
from ...enums import ACTIVE_QUEUE_STATUSES, AppointmentStatus
from ...exceptions import APIException, AppointmentNotFound, ConsultationInProgress, ScheduleNotFound
from ..ports.queue_repo import AppointmentDto, QueueRepository
from ..ports.unit_of_work import atomic
from .eta_service import EtaService, slot_start
from .notifications import QueueNotifications
from .state_machine import ensure_transition, parse_status
from .wallet_service import RefundDetail, WalletService

logger = logging.getLogger(__name__)

S = AppointmentStatus


def synthesize_superseded_times(
    superseded: List[AppointmentDto], now: datetime, default_minutes: int
) -> Dict[int, Tuple[datetime, datetime, bool]]:
    """Estimate (start, end, estimated) for appointments closed implicitly.

    Walks back from ``now`` in token order: each appointment ends where
    the next one began. A recorded start is kept, otherwise the start is
    ``default_minutes`` before the end and flagged as estimated.
    """
    times = {}
    cursor = now
    for appt in sorted(superseded, key=lambda a: a.token_number, reverse=True):
        end = cursor
        if appt.actual_start_time and appt.actual_start_time <= end:
            start, estimated = appt.actual_start_time, False
        else:
            start, estimated = end - timedelta(minutes=default_minutes), True
        times[appt.id] = (start, end, estimated)
        cursor = start
    return times


@dataclass
class StatusChange:
    appointment: AppointmentDto
    previous_status: AppointmentStatus
    auto_completed: List[int] = field(default_factory=list)
    refund: Optional[RefundDetail] = None
    refund_error: Optional[str] = None


@dataclass
class StatusService:
    repo: QueueRepository
    eta: EtaService
    wallet: Optional[WalletService] = None
    notifications: Optional[QueueNotifications] = None
    clock: Callable[[], datetime] = datetime.now
    default_minutes: int = settings.DEFAULT_CONSULTATION_MINUTES

    def set_status(
        self,
        appointment_id: int,
        new_status: Union[str, AppointmentStatus],
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> StatusChange:
        target = parse_status(new_status)
        existing = self.repo.get_appointment(appointment_id)
        if not existing:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")

        auto_completed: List[int] = []
        with atomic(self.repo):
            # per-schedule serialization: every status change holds the schedule row
            if not self.repo.get_schedule(existing.schedule_id, for_update=True):
                raise ScheduleNotFound(f"Schedule {existing.schedule_id} not found")
            appt = self.repo.get_appointment(appointment_id, for_update=True)
            previous = appt.status
            ensure_transition(previous, target)
            now = self.clock()

            if target == S.start:
                auto_completed = self._start(appt, now, notes)
            elif target == S.completed:
                self._complete(appt, now, notes)
            elif target == S.no_show:
                self.repo.update_appointment(appt.id, status=S.no_show, is_refund_eligible=False, status_notes=notes or "Patient did not show up for appointment", updated_at=now)
            else:
                self._update(appt.id, target, notes, now)
                if target == S.scheduled:
                    self.eta.apply_progress(appt.schedule_id, appt.appointment_date)

        updated = self.repo.get_appointment(appointment_id)
        logger.info(f"Appointment {appointment_id} (token {updated.token_number}): {previous.value} -> {target.value}")
        change = StatusChange(appointment=updated, previous_status=previous, auto_completed=auto_completed)

        if target == S.cancel:
            self._settle_cancellation(change, notes, actor_id)

        self._notify(change, target, notes)
        return change

    def _update(self, appointment_id: int, status: AppointmentStatus, notes: Optional[str], now: datetime, **extra) -> None:
        fields = dict(status=status, updated_at=now, **extra)
        if notes is not None:
            fields["status_notes"] = notes
        self.repo.update_appointment(appointment_id, **fields)

    def _start(self, appt: AppointmentDto, now: datetime, notes: Optional[str]) -> List[int]:
        day = self.repo.list_schedule_appointments(appt.schedule_id, on_date=appt.appointment_date)
        later_started = [a for a in day if a.status == S.start and a.token_number > appt.token_number]
        if later_started:
            raise ConsultationInProgress(
                f"Token {later_started[0].token_number} is already in consultation"
            )

        superseded = [
            a for a in day
            if a.id != appt.id and a.token_number < appt.token_number and a.status in ACTIVE_QUEUE_STATUSES
        ]
        times = synthesize_superseded_times(superseded, now, self.default_minutes)
        for prev in superseded:
            start, end, estimated = times[prev.id]
            logger.warning(f"Auto-completing token {prev.token_number} before starting token {appt.token_number}")
            self.repo.update_appointment(
                prev.id,
                status=S.completed,
                actual_start_time=start,
                actual_end_time=end,
                times_estimated=estimated,
                status_notes=f"Auto-completed when token {appt.token_number} started",
                updated_at=now,
            )

        self._update(appt.id, S.start, notes, now, actual_start_time=appt.actual_start_time or now)
        if superseded:
            self.eta.apply_average(appt.schedule_id)
        self.eta.apply_progress(appt.schedule_id, appt.appointment_date)
        return [a.id for a in sorted(superseded, key=lambda a: a.token_number)]

    def _complete(self, appt: AppointmentDto, now: datetime, notes: Optional[str]) -> None:
        start, estimated = appt.actual_start_time, appt.times_estimated
        if start is None:
            logger.warning(f"Token {appt.token_number} completed without a start time - estimating")
            start, estimated = self._estimate_start(appt, now), True
        self._update(appt.id, S.completed, notes, now, actual_start_time=start, actual_end_time=now, times_estimated=estimated)
        self.eta.apply_average(appt.schedule_id)
        self.eta.apply_progress(appt.schedule_id, appt.appointment_date)

    def _estimate_start(self, appt: AppointmentDto, now: datetime) -> datetime:
        day = self.repo.list_schedule_appointments(appt.schedule_id, on_date=appt.appointment_date)
        previous = [
            a for a in day
            if a.status == S.completed and a.token_number < appt.token_number and a.actual_end_time
        ]
        if previous:
            estimate = max(previous, key=lambda a: a.token_number).actual_end_time
        else:
            schedule = self.repo.get_schedule(appt.schedule_id)
            estimate = slot_start(appt.appointment_date, schedule.start_time) + timedelta(
                minutes=(appt.token_number - 1) * self.default_minutes
            )
        if estimate > now:
            estimate = now - timedelta(minutes=self.default_minutes)
        return estimate

    def _settle_cancellation(self, change: StatusChange, notes: Optional[str], actor_id: Optional[int]) -> None:
        appt = change.appointment
        if not self.wallet or not (appt.is_paid and appt.is_refund_eligible and not appt.has_been_refunded):
            return
        try:
            change.refund = self.wallet.refund_appointment(appt.id, reason=notes or "Appointment cancelled", actor_id=actor_id)
        except APIException as e:
            # the cancellation itself is committed; report the refund outcome separately
            logger.error(f"Refund for cancelled appointment {appt.id} failed: {e.detail}")
            change.refund_error = e.code
            return
        change.appointment = self.repo.get_appointment(appt.id)

    def _notify(self, change: StatusChange, status: AppointmentStatus, notes: Optional[str]) -> None:
        if not self.notifications:
            return
        self.notifications.status_changed(change.appointment, status, notes)
        if status == S.start:
            appt = change.appointment
            waiting = [
                a for a in self.repo.list_schedule_appointments(appt.schedule_id, on_date=appt.appointment_date)
                if a.status == S.scheduled and a.token_number > appt.token_number
            ]
            self.notifications.next_in_line(waiting)
