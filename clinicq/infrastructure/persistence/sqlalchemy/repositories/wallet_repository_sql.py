from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from .....application.ports.wallet_repo import RefundDto, TransactionDto, WalletDto, WalletRepository
from .....db.models import AppointmentRefund, PatientWallet, WalletTransaction
from .....enums import RefundType, WalletTransactionType
from ..errors import translate_storage_errors


@translate_storage_errors
class SqlWalletRepository(WalletRepository):
    def __init__(self, session: Session):
        self.session = session

    def _wallet_to_dto(self, w: PatientWallet) -> WalletDto:
        return WalletDto(
            id=w.id,
            patient_id=w.patient_id,
            balance=w.balance,
            total_earned=w.total_earned,
            total_spent=w.total_spent,
        )

    def _txn_to_dto(self, t: WalletTransaction) -> TransactionDto:
        return TransactionDto(
            id=t.id,
            wallet_id=t.wallet_id,
            patient_id=t.patient_id,
            transaction_type=t.transaction_type,
            amount=t.amount,
            previous_balance=t.previous_balance,
            new_balance=t.new_balance,
            description=t.description,
            appointment_id=t.appointment_id,
            schedule_id=t.schedule_id,
            reference_id=t.reference_id,
            processed_by=t.processed_by,
            status=t.status,
            metadata_json=t.metadata_json,
            created_at=t.created_at,
        )

    def _refund_to_dto(self, r: AppointmentRefund) -> RefundDto:
        return RefundDto(
            id=r.id,
            appointment_id=r.appointment_id,
            patient_id=r.patient_id,
            schedule_id=r.schedule_id,
            original_amount=r.original_amount,
            refund_amount=r.refund_amount,
            refund_reason=r.refund_reason,
            refund_type=r.refund_type,
            wallet_transaction_id=r.wallet_transaction_id,
            processed_by=r.processed_by,
        )

    # Wallets

    def get_wallet(self, patient_id: int, for_update: bool = False) -> Optional[WalletDto]:
        stmt = select(PatientWallet).where(PatientWallet.patient_id == patient_id)
        if for_update:
            stmt = stmt.with_for_update()
        w = self.session.exec(stmt).first()
        return self._wallet_to_dto(w) if w else None

    def create_wallet(self, patient_id: int) -> Optional[WalletDto]:
        dialect = self.session.get_bind().dialect.name
        # a concurrent first use inserts nothing here instead of failing on patient_id
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
            values = PatientWallet(patient_id=patient_id).model_dump(exclude={"id"})
            stmt = insert(PatientWallet.__table__).values(**values).on_conflict_do_nothing(index_elements=["patient_id"])
            result = self.session.connection().execute(stmt)
            if result.rowcount == 0:
                return None
            return self.get_wallet(patient_id)
        w = PatientWallet(patient_id=patient_id)
        self.session.add(w)
        self.session.flush()
        self.session.refresh(w)
        return self._wallet_to_dto(w)

    def update_wallet(self, wallet_id: int, balance: Decimal, total_earned: Decimal, total_spent: Decimal) -> None:
        w = self.session.get(PatientWallet, wallet_id)
        if not w:
            return
        w.balance = balance
        w.total_earned = total_earned
        w.total_spent = total_spent
        w.updated_at = datetime.utcnow()
        self.session.add(w)
        self.session.flush()

    # Ledger

    def add_transaction(self, wallet_id: int, patient_id: int, transaction_type: WalletTransactionType, amount: Decimal, previous_balance: Decimal, new_balance: Decimal, description: str, appointment_id: Optional[int] = None, schedule_id: Optional[int] = None, reference_id: Optional[str] = None, processed_by: Optional[int] = None, metadata_json: Optional[str] = None) -> TransactionDto:
        t = WalletTransaction(
            wallet_id=wallet_id,
            patient_id=patient_id,
            transaction_type=transaction_type,
            amount=amount,
            previous_balance=previous_balance,
            new_balance=new_balance,
            description=description,
            appointment_id=appointment_id,
            schedule_id=schedule_id,
            reference_id=reference_id,
            processed_by=processed_by,
            metadata_json=metadata_json,
        )
        self.session.add(t)
        self.session.flush()
        self.session.refresh(t)
        return self._txn_to_dto(t)

    def list_transactions(self, patient_id: int, limit: Optional[int] = None, offset: int = 0, newest_first: bool = True) -> List[TransactionDto]:
        stmt = select(WalletTransaction).where(WalletTransaction.patient_id == patient_id)
        if newest_first:
            stmt = stmt.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        else:
            stmt = stmt.order_by(WalletTransaction.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [self._txn_to_dto(t) for t in self.session.exec(stmt).all()]

    # Refunds

    def add_refund(self, appointment_id: int, patient_id: int, schedule_id: int, doctor_id: int, clinic_id: int, original_amount: Decimal, refund_amount: Decimal, refund_reason: str, refund_type: RefundType, wallet_transaction_id: int, processed_by: Optional[int], notes: Optional[str]) -> RefundDto:
        r = AppointmentRefund(
            appointment_id=appointment_id,
            patient_id=patient_id,
            schedule_id=schedule_id,
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            original_amount=original_amount,
            refund_amount=refund_amount,
            refund_reason=refund_reason,
            refund_type=refund_type,
            wallet_transaction_id=wallet_transaction_id,
            processed_by=processed_by,
            notes=notes,
        )
        self.session.add(r)
        self.session.flush()
        self.session.refresh(r)
        return self._refund_to_dto(r)

    def get_refund_for_appointment(self, appointment_id: int) -> Optional[RefundDto]:
        r = self.session.exec(select(AppointmentRefund).where(AppointmentRefund.appointment_id == appointment_id)).first()
        return self._refund_to_dto(r) if r else None

    # Unit of work

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
