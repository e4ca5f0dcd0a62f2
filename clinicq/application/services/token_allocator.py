import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ...exceptions import CapacityExceeded, NoActiveSchedule
from ..ports.queue_repo import QueueRepository, ScheduleDto

logger = logging.getLogger(__name__)


@dataclass
class TokenAllocator:
    repo: QueueRepository

    def resolve_schedule(self, doctor_id: int, clinic_id: int, on_date: date, schedule_id: Optional[int] = None) -> ScheduleDto:
        candidates = self.repo.find_schedules(doctor_id, clinic_id, on_date)
        if schedule_id is not None:
            candidates = [s for s in candidates if s.id == schedule_id]
        if not candidates:
            raise NoActiveSchedule(
                f"No active schedule for doctor {doctor_id} at clinic {clinic_id} on {on_date.isoformat()}"
            )
        return sorted(candidates, key=lambda s: s.start_time)[0]

    def next_token(self, schedule: ScheduleDto, on_date: date) -> int:
        """Next token for the schedule on the given day.

        Must run while the schedule row is locked so that concurrent
        bookings cannot read the same maximum.
        """
        if schedule.max_tokens is not None:
            issued = self.repo.count_appointments(schedule.id, on_date)
            if issued >= schedule.max_tokens:
                raise CapacityExceeded(
                    f"Maximum number of tokens ({schedule.max_tokens}) has been reached for this schedule"
                )
        # cancelled tokens still count, so numbers are never reissued
        token = self.repo.max_token_number(schedule.id, on_date) + 1
        logger.info(f"Next token for schedule {schedule.id} (doctor {schedule.doctor_id}, clinic {schedule.clinic_id}) on {on_date}: {token}")
        return token

    def allocate_token(self, doctor_id: int, clinic_id: int, on_date: date, schedule_id: Optional[int] = None) -> int:
        schedule = self.resolve_schedule(doctor_id, clinic_id, on_date, schedule_id)
        return self.next_token(schedule, on_date)
