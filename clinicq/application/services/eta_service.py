"""Queue position and time-of-service estimation.

The pure functions at the top of this module operate on appointment
DTOs only, so the current consulting token and the average consultation
time are always derived from appointment rows rather than cached.
``EtaService`` wraps them with the locking and persistence needed to
keep a schedule's projections consistent.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, Optional

from ...config import settings
from ...enums import ACTIVE_QUEUE_STATUSES, AppointmentStatus
from ...exceptions import ArrivalAlreadyRecorded, InvalidRequest, ScheduleNotFound
from ..ports.queue_repo import AppointmentDto, QueueRepository, ScheduleDto
from ..ports.unit_of_work import atomic
from .notifications import QueueNotifications

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.scheduled, AppointmentStatus.start, AppointmentStatus.hold, AppointmentStatus.pause}
)


def parse_clock_time(value: str) -> time:
    try:
        return datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid time '{value}'. Use HH:MM")


def slot_start(on_date: date, start_time: str) -> datetime:
    return datetime.combine(on_date, parse_clock_time(start_time))


def current_consulting_token(appointments: Iterable[AppointmentDto]) -> int:
    """Token in consultation, else the one after the last completed, else 1."""
    appointments = list(appointments)
    started = [a.token_number for a in appointments if a.status == AppointmentStatus.start]
    if started:
        return min(started)
    completed = [a.token_number for a in appointments if a.status == AppointmentStatus.completed]
    if completed:
        return max(completed) + 1
    return 1


def consultation_minutes(appointment: AppointmentDto) -> Optional[int]:
    if not appointment.actual_start_time or not appointment.actual_end_time:
        return None
    seconds = (appointment.actual_end_time - appointment.actual_start_time).total_seconds()
    if seconds < 0:
        return None
    return int(seconds // 60)


def average_consultation_minutes(
    appointments: Iterable[AppointmentDto],
    default_minutes: int,
    min_minutes: int,
    max_minutes: int,
    exclude_estimated: bool = True,
) -> int:
    durations = []
    for appt in appointments:
        if appt.status != AppointmentStatus.completed:
            continue
        if exclude_estimated and appt.times_estimated:
            continue
        minutes = consultation_minutes(appt)
        if minutes is None:
            continue
        # outliers stay completed, they just do not feed the average
        if min_minutes <= minutes <= max_minutes:
            durations.append(minutes)
    if not durations:
        return default_minutes
    return max(1, math.floor(sum(durations) / len(durations) + 0.5))


def project_from_progress(appointments: Iterable[AppointmentDto], average_minutes: int, now: datetime) -> Dict[int, datetime]:
    """ETA for every scheduled/started appointment, anchored at ``now``."""
    appointments = list(appointments)
    current = current_consulting_token(appointments)
    etas = {}
    for appt in sorted(appointments, key=lambda a: a.token_number):
        if appt.status not in ACTIVE_QUEUE_STATUSES:
            continue
        if appt.status == AppointmentStatus.start:
            etas[appt.id] = now
            continue
        tokens_before = appt.token_number - current
        etas[appt.id] = now + timedelta(minutes=max(0, tokens_before) * average_minutes)
    return etas


def project_from_base(appointments: Iterable[AppointmentDto], base: datetime, average_minutes: int, statuses=ACTIVE_QUEUE_STATUSES) -> Dict[int, datetime]:
    return {
        appt.id: base + timedelta(minutes=(appt.token_number - 1) * average_minutes)
        for appt in appointments
        if appt.status in statuses
    }


@dataclass
class EtaService:
    repo: QueueRepository
    notifications: Optional[QueueNotifications] = None
    clock: Callable[[], datetime] = datetime.now
    default_minutes: int = settings.DEFAULT_CONSULTATION_MINUTES
    min_valid_minutes: int = settings.MIN_VALID_CONSULTATION_MINUTES
    max_valid_minutes: int = settings.MAX_VALID_CONSULTATION_MINUTES
    exclude_estimated: bool = settings.EXCLUDE_ESTIMATED_FROM_AVERAGE

    def get_schedule(self, schedule_id: int, for_update: bool = False) -> ScheduleDto:
        schedule = self.repo.get_schedule(schedule_id, for_update=for_update)
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        return schedule

    def average_for(self, schedule: ScheduleDto) -> int:
        return schedule.average_consultation_time or self.default_minutes

    def estimate_for(self, schedule: ScheduleDto, token_number: int, on_date: date) -> datetime:
        if token_number < 1:
            raise InvalidRequest("Token numbers start at 1")
        base = slot_start(on_date, schedule.start_time)
        return base + timedelta(minutes=(token_number - 1) * self.average_for(schedule))

    def initial_eta(self, schedule_id: int, token_number: int, on_date: date) -> datetime:
        """Booking-time estimate: schedule start + (token - 1) x average."""
        return self.estimate_for(self.get_schedule(schedule_id), token_number, on_date)

    # -- operations that expect the caller to hold the schedule lock --

    def apply_average(self, schedule_id: int) -> int:
        appointments = self.repo.list_schedule_appointments(schedule_id)
        average = average_consultation_minutes(
            appointments,
            self.default_minutes,
            self.min_valid_minutes,
            self.max_valid_minutes,
            self.exclude_estimated,
        )
        self.repo.update_schedule(schedule_id, average_consultation_time=average)
        logger.info(f"Schedule {schedule_id}: average consultation time now {average} min")
        return average

    def apply_progress(self, schedule_id: int, on_date: date) -> Dict[int, datetime]:
        schedule = self.get_schedule(schedule_id)
        appointments = self.repo.list_schedule_appointments(schedule_id, on_date=on_date)
        average = self.average_for(schedule)
        etas = project_from_progress(appointments, average, self.clock())
        self.repo.set_estimated_start_times(etas)
        logger.info(
            f"Schedule {schedule_id} on {on_date}: current token {current_consulting_token(appointments)}, "
            f"re-anchored {len(etas)} ETAs at {average} min/consultation"
        )
        return etas

    # -- public, self-contained operations --

    def on_doctor_arrival(self, schedule_id: int, arrival_time: datetime) -> Dict[int, datetime]:
        with atomic(self.repo):
            schedule = self.get_schedule(schedule_id, for_update=True)
            previous = schedule.actual_arrival_time
            if previous and previous.date() == arrival_time.date():
                raise ArrivalAlreadyRecorded(
                    f"Doctor arrival for schedule {schedule_id} was already recorded at {previous.strftime('%H:%M')}"
                )
            self.repo.update_schedule(schedule_id, actual_arrival_time=arrival_time)
            waiting = [
                a for a in self.repo.list_schedule_appointments(schedule_id, on_date=arrival_time.date())
                if a.status == AppointmentStatus.scheduled
            ]
            etas = project_from_base(waiting, arrival_time, self.average_for(schedule))
            self.repo.set_estimated_start_times(etas)
        logger.info(f"Doctor arrived for schedule {schedule_id} at {arrival_time.strftime('%H:%M')}; updated {len(etas)} ETAs")

        if self.notifications:
            for appt in waiting:
                appt.estimated_start_time = etas.get(appt.id, appt.estimated_start_time)
            self.notifications.doctor_arrived(waiting)
        return etas

    def on_progress_changed(self, schedule_id: int, on_date: Optional[date] = None) -> Dict[int, datetime]:
        on_date = on_date or self.clock().date()
        with atomic(self.repo):
            self.get_schedule(schedule_id, for_update=True)
            etas = self.apply_progress(schedule_id, on_date)
        return etas

    def refresh_average(self, schedule_id: int, on_date: Optional[date] = None) -> Dict[int, datetime]:
        """Recompute the average from history, then re-anchor the day's ETAs."""
        on_date = on_date or self.clock().date()
        with atomic(self.repo):
            self.get_schedule(schedule_id, for_update=True)
            self.apply_average(schedule_id)
            etas = self.apply_progress(schedule_id, on_date)
        return etas

    def recalculate_from_arrival(self, schedule_id: int, on_date: Optional[date] = None) -> Dict[int, datetime]:
        """Full recompute from the arrival time, or the scheduled start."""
        on_date = on_date or self.clock().date()
        with atomic(self.repo):
            schedule = self.get_schedule(schedule_id, for_update=True)
            arrival = schedule.actual_arrival_time
            if arrival and arrival.date() == on_date:
                base = arrival
            else:
                base = slot_start(on_date, schedule.start_time)
            appointments = self.repo.list_schedule_appointments(schedule_id, on_date=on_date)
            etas = project_from_base(appointments, base, self.average_for(schedule), statuses=NON_TERMINAL_STATUSES)
            self.repo.set_estimated_start_times(etas)
        logger.info(f"Recalculated {len(etas)} ETAs for schedule {schedule_id} from {base.strftime('%H:%M')}")
        return etas
