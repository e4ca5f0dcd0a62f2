# clinicq/db/models/wallet/transaction.py
from typing import Optional
from decimal import Decimal
from sqlmodel import SQLModel, Field
from datetime import datetime

from ....enums import WalletTransactionType


class WalletTransaction(SQLModel, table=True):
    """Ledger row. Inserted once, never updated."""

    __tablename__ = "wallet_transactions"
    id: Optional[int] = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key="patient_wallets.id", index=True)
    patient_id: int = Field(index=True)
    appointment_id: Optional[int] = Field(default=None, foreign_key="appointments.id")
    schedule_id: Optional[int] = Field(default=None, foreign_key="doctor_schedules.id")
    transaction_type: WalletTransactionType
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    previous_balance: Decimal = Field(max_digits=10, decimal_places=2)
    new_balance: Decimal = Field(max_digits=10, decimal_places=2)
    description: str
    reference_id: Optional[str] = Field(default=None, max_length=100)
    processed_by: Optional[int] = Field(default=None)
    status: str = Field(default="completed")
    metadata_json: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
