# clinicq/db/models/wallet/refund.py
from typing import Optional
from decimal import Decimal
from sqlmodel import SQLModel, Field
from datetime import datetime

from ....enums import RefundType


class AppointmentRefund(SQLModel, table=True):
    __tablename__ = "appointment_refunds"
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", unique=True)
    patient_id: int = Field(index=True)
    schedule_id: int = Field(foreign_key="doctor_schedules.id", index=True)
    doctor_id: int
    clinic_id: int
    original_amount: Decimal = Field(max_digits=10, decimal_places=2)
    refund_amount: Decimal = Field(max_digits=10, decimal_places=2)
    refund_reason: str
    refund_type: RefundType = Field(default=RefundType.full)
    wallet_transaction_id: int = Field(foreign_key="wallet_transactions.id")
    processed_by: Optional[int] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
