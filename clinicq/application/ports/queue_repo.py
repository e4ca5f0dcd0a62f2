from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from ...enums import AppointmentStatus


@dataclass
class ScheduleDto:
    id: int
    doctor_id: int
    clinic_id: int
    day_of_week: int
    schedule_date: Optional[date]
    start_time: str
    end_time: str
    max_tokens: Optional[int]
    average_consultation_time: int
    actual_arrival_time: Optional[datetime]
    is_active: bool = True
    is_paused: bool = False
    is_cancelled: bool = False
    cancel_reason: Optional[str] = None


@dataclass
class AppointmentDto:
    id: int
    schedule_id: int
    doctor_id: int
    clinic_id: int
    patient_id: Optional[int]
    patient_name: Optional[str]
    appointment_date: date
    token_number: int
    status: AppointmentStatus
    status_notes: Optional[str] = None
    estimated_start_time: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    times_estimated: bool = False
    consultation_fee: Decimal = Decimal("0.00")
    is_paid: bool = False
    is_refund_eligible: bool = True
    has_been_refunded: bool = False
    refund_amount: Optional[Decimal] = None


class QueueRepository(Protocol):
    """Schedules and their appointments.

    Writes are staged on the current unit of work and only become visible
    to other sessions after ``commit``. ``for_update`` reads take a row
    lock held until the unit of work ends.
    """

    def get_schedule(self, schedule_id: int, for_update: bool = False) -> Optional[ScheduleDto]:
        ...

    def find_schedules(self, doctor_id: int, clinic_id: int, on_date: date) -> List[ScheduleDto]:
        ...

    def update_schedule(self, schedule_id: int, **fields) -> None:
        ...

    def cancel_schedule_day(self, schedule_id: int, on_date: date, reason: str, cancelled_by: Optional[int] = None) -> None:
        """Drop one occurrence of a weekly schedule. Repeating a cancellation is a no-op."""
        ...

    def max_token_number(self, schedule_id: int, on_date: date) -> int:
        ...

    def count_appointments(self, schedule_id: int, on_date: date) -> int:
        ...

    def create_appointment(self, schedule_id: int, doctor_id: int, clinic_id: int, patient_id: Optional[int], patient_name: Optional[str], appointment_date: date, token_number: int, estimated_start_time: datetime, consultation_fee: Decimal, is_refund_eligible: bool) -> AppointmentDto:
        ...

    def get_appointment(self, appointment_id: int, for_update: bool = False) -> Optional[AppointmentDto]:
        ...

    def list_schedule_appointments(self, schedule_id: int, on_date: Optional[date] = None) -> List[AppointmentDto]:
        ...

    def list_day_appointments(self, doctor_id: int, clinic_id: int, on_date: date) -> List[AppointmentDto]:
        """Every session of the day, in session start order, then token order."""
        ...

    def update_appointment(self, appointment_id: int, **fields) -> None:
        ...

    def set_estimated_start_times(self, etas: Dict[int, datetime]) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
