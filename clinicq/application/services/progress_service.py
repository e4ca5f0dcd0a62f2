import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Optional

from ...config import settings
from ...enums import AppointmentStatus
from ...exceptions import AppointmentNotFound
from ..ports.queue_repo import AppointmentDto, QueueRepository
from ..retry import with_retries
from .eta_service import EtaService, current_consulting_token

logger = logging.getLogger(__name__)

S = AppointmentStatus


@dataclass
class TokenProgress:
    current_token: int
    status: str
    appointment: Optional[AppointmentDto] = None


def summarize_progress(appointments) -> TokenProgress:
    """Progress of a doctor's day as seen from the waiting room.

    ``appointments`` must be in queue order: session start, then token.
    """
    appointments = list(appointments)
    if not appointments:
        return TokenProgress(current_token=0, status="no_appointments")

    by_status: Dict[AppointmentStatus, list] = {}
    for appt in appointments:
        by_status.setdefault(appt.status, []).append(appt)

    for status, label in ((S.start, "in_progress"), (S.pause, "pause"), (S.hold, "hold")):
        if status in by_status:
            appt = by_status[status][0]
            return TokenProgress(current_token=appt.token_number, status=label, appointment=appt)

    if S.completed in by_status:
        last = by_status[S.completed][-1]
        return TokenProgress(current_token=last.token_number, status="completed", appointment=last)
    return TokenProgress(current_token=0, status="not_started")


@dataclass
class ProgressService:
    repo: QueueRepository
    eta: EtaService
    clock: Callable[[], datetime] = datetime.now
    attempts: int = settings.PROGRESS_READ_ATTEMPTS
    backoff_seconds: float = settings.PROGRESS_RETRY_BACKOFF_SECONDS
    sleep: Optional[Callable[[float], None]] = None

    def _read(self, operation):
        kwargs = {"sleep": self.sleep} if self.sleep else {}
        return with_retries(operation, attempts=self.attempts, backoff_seconds=self.backoff_seconds, **kwargs)

    def token_progress(self, doctor_id: int, clinic_id: int, on_date: Optional[date] = None) -> TokenProgress:
        on_date = on_date or self.clock().date()
        return self._read(lambda: summarize_progress(self.repo.list_day_appointments(doctor_id, clinic_id, on_date)))

    def appointment_eta(self, appointment_id: int) -> Dict:
        def read():
            appt = self.repo.get_appointment(appointment_id)
            if not appt:
                raise AppointmentNotFound(f"Appointment {appointment_id} not found")
            schedule = self.eta.get_schedule(appt.schedule_id)
            day = self.repo.list_schedule_appointments(appt.schedule_id, on_date=appt.appointment_date)
            return {
                "appointment_id": appt.id,
                "token_number": appt.token_number,
                "status": appt.status.value,
                "estimated_start_time": appt.estimated_start_time,
                "current_consulting_token": current_consulting_token(day),
                "avg_consultation_time": self.eta.average_for(schedule),
            }

        return self._read(read)
