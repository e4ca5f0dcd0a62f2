# clinicq/schemas/queue/queue.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from ...enums import AppointmentStatus


class BookingCreate(BaseModel):
    doctor_id: int
    clinic_id: int
    appointment_date: date
    patient_id: Optional[int] = None  # None for walk-ins
    patient_name: Optional[str] = Field(default=None, max_length=100)
    schedule_id: Optional[int] = None
    consultation_fee: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    pay_from_wallet: bool = False
    is_refund_eligible: bool = True
    actor_id: Optional[int] = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    schedule_id: int
    doctor_id: int
    clinic_id: int
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None
    appointment_date: date
    token_number: int
    status: AppointmentStatus
    status_notes: Optional[str] = None
    estimated_start_time: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    times_estimated: bool = False
    consultation_fee: Decimal
    is_paid: bool
    is_refund_eligible: bool
    has_been_refunded: bool
    refund_amount: Optional[Decimal] = None


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    payment_transaction_id: Optional[int] = None


class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    actor_id: Optional[int] = None


class StatusUpdateResponse(BaseModel):
    appointment: AppointmentResponse
    previous_status: AppointmentStatus
    auto_completed: List[int] = []
    refund_transaction_id: Optional[int] = None
    refund_amount: Optional[Decimal] = None
    refund_error: Optional[str] = None


class NoShowRequest(BaseModel):
    notes: Optional[str] = None
    actor_id: Optional[int] = None


class PaymentRequest(BaseModel):
    actor_id: Optional[int] = None


class ArrivalRequest(BaseModel):
    arrival_time: Optional[datetime] = None  # defaults to now


class PauseRequest(BaseModel):
    reason: Optional[str] = None
    on_date: Optional[date] = None


class ResumeRequest(BaseModel):
    on_date: Optional[date] = None


class EtaUpdateResponse(BaseModel):
    schedule_id: int
    updated: int
    estimated_start_times: dict


class TokenProgressResponse(BaseModel):
    current_token: int
    status: str
    appointment: Optional[AppointmentResponse] = None


class AppointmentEtaResponse(BaseModel):
    appointment_id: int
    token_number: int
    status: AppointmentStatus
    estimated_start_time: Optional[datetime] = None
    current_consulting_token: int
    avg_consultation_time: int


class ScheduleAppointmentsResponse(BaseModel):
    schedule_id: int
    appointments: List[AppointmentResponse]
