# clinicq/schemas/wallet/wallet.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from ...enums import RefundType, WalletTransactionType


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    balance: Decimal
    total_earned: Decimal
    total_spent: Decimal


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_id: int
    patient_id: int
    transaction_type: WalletTransactionType
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    description: str
    appointment_id: Optional[int] = None
    schedule_id: Optional[int] = None
    reference_id: Optional[str] = None
    processed_by: Optional[int] = None
    status: str
    created_at: Optional[datetime] = None


class WalletStats(BaseModel):
    total_transactions: int
    total_refunds: Decimal
    total_spent: Decimal


class WalletSummaryResponse(BaseModel):
    wallet: WalletResponse
    recent_transactions: List[TransactionResponse]
    stats: WalletStats


class TopUpRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    reference_id: Optional[str] = Field(default=None, max_length=100)


class AdminAdjustRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    is_credit: bool
    reason: str = Field(min_length=1)
    admin_id: Optional[int] = None


class ScheduleCancelRequest(BaseModel):
    reason: str = Field(min_length=1)
    actor_id: Optional[int] = None
    on_date: Optional[date] = None


class PartialCancelRequest(ScheduleCancelRequest):
    completed_appointment_ids: List[int] = []


class RefundDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: int
    patient_id: int
    refund_amount: Decimal
    wallet_transaction_id: int
    refund_type: RefundType


class RefundFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: int
    code: str
    message: str


class RefundSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    refunded_appointments: int
    total_refund_amount: Decimal
    refund_details: List[RefundDetailResponse]
    failed: List[RefundFailureResponse]
    skipped_walk_ins: int


class ScheduleCancelResponse(BaseModel):
    schedule_id: int
    on_date: Optional[date] = None
    cancelled_appointments: int
    refunds: RefundSummaryResponse


class LedgerCheckResponse(BaseModel):
    patient_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    broken_links: List[int]
    consistent: bool
