from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from ...enums import RefundType, WalletTransactionType


@dataclass
class WalletDto:
    id: int
    patient_id: int
    balance: Decimal
    total_earned: Decimal
    total_spent: Decimal


@dataclass
class TransactionDto:
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
    status: str = "completed"
    metadata_json: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class RefundDto:
    id: int
    appointment_id: int
    patient_id: int
    schedule_id: int
    original_amount: Decimal
    refund_amount: Decimal
    refund_reason: str
    refund_type: RefundType
    wallet_transaction_id: int
    processed_by: Optional[int] = None


class WalletRepository(Protocol):
    def get_wallet(self, patient_id: int, for_update: bool = False) -> Optional[WalletDto]:
        ...

    def create_wallet(self, patient_id: int) -> Optional[WalletDto]:
        """Open an empty wallet. None when another transaction opened it first."""
        ...

    def update_wallet(self, wallet_id: int, balance: Decimal, total_earned: Decimal, total_spent: Decimal) -> None:
        ...

    def add_transaction(self, wallet_id: int, patient_id: int, transaction_type: WalletTransactionType, amount: Decimal, previous_balance: Decimal, new_balance: Decimal, description: str, appointment_id: Optional[int] = None, schedule_id: Optional[int] = None, reference_id: Optional[str] = None, processed_by: Optional[int] = None, metadata_json: Optional[str] = None) -> TransactionDto:
        ...

    def list_transactions(self, patient_id: int, limit: Optional[int] = None, offset: int = 0, newest_first: bool = True) -> List[TransactionDto]:
        ...

    def add_refund(self, appointment_id: int, patient_id: int, schedule_id: int, doctor_id: int, clinic_id: int, original_amount: Decimal, refund_amount: Decimal, refund_reason: str, refund_type: RefundType, wallet_transaction_id: int, processed_by: Optional[int], notes: Optional[str]) -> RefundDto:
        ...

    def get_refund_for_appointment(self, appointment_id: int) -> Optional[RefundDto]:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
