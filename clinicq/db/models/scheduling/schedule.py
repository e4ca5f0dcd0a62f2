# clinicq/db/models/scheduling/schedule.py
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date


class DoctorSchedule(SQLModel, table=True):
    __tablename__ = "doctor_schedules"
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(index=True)
    clinic_id: int = Field(index=True)
    day_of_week: int = Field(ge=0, le=6)  # 0 = Monday
    schedule_date: Optional[date] = Field(default=None, index=True)
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    max_tokens: Optional[int] = Field(default=None)
    average_consultation_time: int = Field(default=15)
    actual_arrival_time: Optional[datetime] = Field(default=None)
    is_active: bool = Field(default=True)
    is_paused: bool = Field(default=False)
    pause_reason: Optional[str] = Field(default=None)
    is_cancelled: bool = Field(default=False)
    cancel_reason: Optional[str] = Field(default=None)
    cancelled_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    appointments: List["Appointment"] = Relationship(back_populates="schedule")
