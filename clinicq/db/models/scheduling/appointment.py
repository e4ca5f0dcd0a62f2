# clinicq/db/models/scheduling/appointment.py
from typing import Optional
from decimal import Decimal
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date

from ....enums import AppointmentStatus


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint(
            "schedule_id", "appointment_date", "token_number",
            name="uq_appointment_token_per_schedule_day",
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="doctor_schedules.id", index=True)
    doctor_id: int = Field(index=True)
    clinic_id: int = Field(index=True)
    patient_id: Optional[int] = Field(default=None, index=True)  # None for walk-ins
    patient_name: Optional[str] = Field(default=None, max_length=100)
    appointment_date: date
    token_number: int
    status: AppointmentStatus = Field(default=AppointmentStatus.scheduled)
    status_notes: Optional[str] = Field(default=None)
    estimated_start_time: Optional[datetime] = Field(default=None)
    actual_start_time: Optional[datetime] = Field(default=None)
    actual_end_time: Optional[datetime] = Field(default=None)
    times_estimated: bool = Field(default=False)
    consultation_fee: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    is_paid: bool = Field(default=False)
    is_refund_eligible: bool = Field(default=True)
    has_been_refunded: bool = Field(default=False)
    refund_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    schedule: Optional["DoctorSchedule"] = Relationship(back_populates="appointments")
