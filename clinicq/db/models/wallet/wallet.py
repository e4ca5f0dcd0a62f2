# clinicq/db/models/wallet/wallet.py
from typing import Optional
from decimal import Decimal
from sqlmodel import SQLModel, Field
from datetime import datetime


class PatientWallet(SQLModel, table=True):
    __tablename__ = "patient_wallets"
    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(unique=True, index=True)
    balance: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total_earned: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    total_spent: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
