import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Collection, List, Optional

from ...enums import AppointmentStatus
from ...exceptions import InvalidRequest, ScheduleNotFound
from ..ports.queue_repo import AppointmentDto, QueueRepository, ScheduleDto
from ..ports.unit_of_work import atomic
from .eta_service import EtaService
from .notifications import QueueNotifications
from .wallet_service import RefundSummary, WalletService

logger = logging.getLogger(__name__)

S = AppointmentStatus


@dataclass
class ScheduleCancellation:
    schedule_id: int
    refunds: RefundSummary
    cancelled_appointments: int
    on_date: Optional[date] = None


@dataclass
class ScheduleService:
    """Disruptions that affect a whole doctor session at once."""

    repo: QueueRepository
    wallet: WalletService
    eta: EtaService
    notifications: Optional[QueueNotifications] = None
    clock: Callable[[], datetime] = datetime.now

    def _locked_schedule(self, schedule_id: int) -> ScheduleDto:
        schedule = self.repo.get_schedule(schedule_id, for_update=True)
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        return schedule

    def _move_all(self, schedule_id: int, from_statuses, to_status: AppointmentStatus, notes: str, on_date: Optional[date] = None) -> List[AppointmentDto]:
        now = self.clock()
        moved = []
        for appt in self.repo.list_schedule_appointments(schedule_id, on_date=on_date):
            if appt.status not in from_statuses:
                continue
            self.repo.update_appointment(appt.id, status=to_status, status_notes=notes, updated_at=now)
            moved.append(replace(appt, status=to_status, status_notes=notes))
        return moved

    def _session_date(self, schedule_id: int, on_date: Optional[date]) -> date:
        schedule = self.repo.get_schedule(schedule_id)
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        if schedule.schedule_date is None:
            return on_date or self.clock().date()
        if on_date and on_date != schedule.schedule_date:
            raise InvalidRequest(f"Schedule {schedule_id} only runs on {schedule.schedule_date}")
        return schedule.schedule_date

    def cancel_schedule(
        self,
        schedule_id: int,
        reason: str,
        actor_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> ScheduleCancellation:
        """Call off one session and refund everyone who paid for it.

        A one-off schedule is flagged cancelled. A weekly schedule only loses
        the occurrence on ``on_date`` (today by default) and stays bookable on
        the other weeks.
        """
        if not reason:
            raise InvalidRequest("A cancellation reason is required")
        on_date = self._session_date(schedule_id, on_date)
        # refunds first: each one is its own unit and cancels the appointment it settles
        refunds = self.wallet.process_schedule_cancellation_refunds(schedule_id, reason, actor_id, on_date=on_date)

        with atomic(self.repo):
            schedule = self._locked_schedule(schedule_id)
            if schedule.schedule_date is None:
                self.repo.cancel_schedule_day(schedule_id, on_date, reason, actor_id)
            else:
                self.repo.update_schedule(
                    schedule_id,
                    is_cancelled=True,
                    cancel_reason=reason,
                    cancelled_at=self.clock(),
                )
            moved = self._move_all(
                schedule_id, {S.scheduled, S.start, S.hold, S.pause}, S.cancel, f"Schedule cancelled: {reason}", on_date
            )

        logger.info(
            f"Cancelled schedule {schedule_id} on {on_date}: {refunds.refunded_appointments} refunded, "
            f"{len(moved)} further appointments cancelled"
        )
        if self.notifications:
            for appt in moved:
                self.notifications.status_changed(appt, S.cancel, reason)
        return ScheduleCancellation(
            schedule_id=schedule_id,
            refunds=refunds,
            cancelled_appointments=refunds.refunded_appointments + len(moved),
            on_date=on_date,
        )

    def partial_cancel(
        self,
        schedule_id: int,
        completed_appointment_ids: Collection[int],
        reason: str,
        actor_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> RefundSummary:
        if not reason:
            raise InvalidRequest("A cancellation reason is required")
        on_date = self._session_date(schedule_id, on_date)
        return self.wallet.process_partial_refund(schedule_id, completed_appointment_ids, reason, actor_id, on_date=on_date)

    def pause_schedule(self, schedule_id: int, reason: Optional[str] = None, on_date: Optional[date] = None) -> List[AppointmentDto]:
        on_date = on_date or self.clock().date()
        with atomic(self.repo):
            self._locked_schedule(schedule_id)
            self.repo.update_schedule(schedule_id, is_paused=True, pause_reason=reason)
            paused = self._move_all(schedule_id, {S.scheduled, S.start}, S.pause, f"Schedule paused: {reason or 'not given'}", on_date)
        logger.info(f"Paused schedule {schedule_id} on {on_date}: {len(paused)} appointments paused")
        if self.notifications:
            self.notifications.schedule_paused(paused, reason)
        return paused

    def resume_schedule(self, schedule_id: int, on_date: Optional[date] = None) -> List[AppointmentDto]:
        on_date = on_date or self.clock().date()
        with atomic(self.repo):
            self._locked_schedule(schedule_id)
            self.repo.update_schedule(schedule_id, is_paused=False, pause_reason=None)
            resumed = self._move_all(schedule_id, {S.pause}, S.scheduled, "Schedule resumed", on_date)
            self.eta.apply_progress(schedule_id, on_date)
        logger.info(f"Resumed schedule {schedule_id} on {on_date}: {len(resumed)} appointments back in queue")
        if self.notifications:
            self.notifications.schedule_resumed(resumed)
        return resumed
