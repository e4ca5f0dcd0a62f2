# clinicq/db/models/scheduling/day_cancellation.py
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
from datetime import datetime, date


class ScheduleDayCancellation(SQLModel, table=True):
    """One cancelled occurrence of a weekly schedule."""

    __tablename__ = "schedule_day_cancellations"
    __table_args__ = (
        UniqueConstraint("schedule_id", "cancel_date", name="uq_schedule_day_cancellation"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="doctor_schedules.id", index=True)
    cancel_date: date
    reason: str
    cancelled_by: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
