"""Patient wallet ledger and appointment refunds.

Every balance change is a ``WalletTransaction`` row written in the same
unit of work as the wallet update, under a row lock on the wallet, so
replaying a wallet's transactions always reproduces its balance.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Collection, Dict, List, Optional, Union

from ...config import settings
from ...enums import AppointmentStatus, RefundType, WalletTransactionType
from ...exceptions import (
    APIException,
    AlreadyPaid,
    AlreadyRefunded,
    AppointmentNotFound,
    InsufficientBalance,
    InvalidRequest,
    RefundNotEligible,
    ScheduleNotFound,
)
from ..ports.queue_repo import AppointmentDto, QueueRepository
from ..ports.unit_of_work import CombinedUnitOfWork, atomic
from ..ports.wallet_repo import TransactionDto, WalletDto, WalletRepository
from .notifications import QueueNotifications
from .state_machine import ensure_transition

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
NOT_REFUNDABLE_STATUSES = frozenset({AppointmentStatus.completed, AppointmentStatus.no_show})


def to_amount(value: Union[Decimal, int, float, str]) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f"Invalid amount '{value}'")
    if amount <= 0:
        raise InvalidRequest("Transaction amount must be greater than zero")
    return amount


@dataclass
class RefundDetail:
    appointment_id: int
    patient_id: int
    refund_amount: Decimal
    wallet_transaction_id: int
    refund_type: RefundType = RefundType.full


@dataclass
class RefundFailure:
    appointment_id: int
    code: str
    message: str


@dataclass
class RefundSummary:
    refunded_appointments: int = 0
    total_refund_amount: Decimal = Decimal("0.00")
    refund_details: List[RefundDetail] = field(default_factory=list)
    failed: List[RefundFailure] = field(default_factory=list)
    skipped_walk_ins: int = 0

    def add(self, detail: RefundDetail) -> None:
        self.refund_details.append(detail)
        self.refunded_appointments += 1
        self.total_refund_amount += detail.refund_amount


@dataclass
class LedgerCheck:
    patient_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    broken_links: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.broken_links


@dataclass
class WalletService:
    repo: WalletRepository
    queue_repo: Optional[QueueRepository] = None
    notifications: Optional[QueueNotifications] = None
    starting_balance: Decimal = settings.WALLET_STARTING_BALANCE
    currency_symbol: str = settings.CURRENCY_SYMBOL
    clock: Callable[[], datetime] = datetime.now

    def _unit(self) -> CombinedUnitOfWork:
        return CombinedUnitOfWork(self.repo, self.queue_repo)

    def _appointment(self, appointment_id: int, for_update: bool = False) -> AppointmentDto:
        appt = self.queue_repo.get_appointment(appointment_id, for_update=for_update)
        if not appt:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")
        return appt

    # -- wallet and ledger --

    def _ensure_wallet(self, patient_id: int, for_update: bool = False) -> WalletDto:
        """Wallet for the patient, opened with the starting balance on first use.

        Caller owns the unit of work.
        """
        wallet = self.repo.get_wallet(patient_id, for_update=for_update)
        if wallet:
            return wallet
        wallet = self.repo.create_wallet(patient_id)
        if wallet is None:
            return self.repo.get_wallet(patient_id, for_update=for_update)
        opening = Decimal(self.starting_balance).quantize(CENT)
        if opening > 0:
            self.repo.add_transaction(
                wallet_id=wallet.id,
                patient_id=patient_id,
                transaction_type=WalletTransactionType.wallet_topup,
                amount=opening,
                previous_balance=Decimal("0.00"),
                new_balance=opening,
                description="Opening balance",
            )
            self.repo.update_wallet(wallet.id, balance=opening, total_earned=opening, total_spent=Decimal("0.00"))
        logger.info(f"Created wallet for patient {patient_id} with balance {self.currency_symbol}{opening}")
        return self.repo.get_wallet(patient_id, for_update=for_update)

    def get_or_create_wallet(self, patient_id: int) -> WalletDto:
        with atomic(self.repo):
            wallet = self._ensure_wallet(patient_id)
        return wallet

    def post_transaction(
        self,
        patient_id: int,
        amount: Union[Decimal, int, float, str],
        transaction_type: Union[str, WalletTransactionType],
        description: str,
        appointment_id: Optional[int] = None,
        schedule_id: Optional[int] = None,
        reference_id: Optional[str] = None,
        processed_by: Optional[int] = None,
        metadata: Optional[Dict] = None,
    ) -> TransactionDto:
        """Lock the wallet, check the balance, write the ledger row and the wallet.

        Does not commit; the caller's unit of work decides.
        """
        amount = to_amount(amount)
        try:
            transaction_type = WalletTransactionType(transaction_type)
        except ValueError:
            raise InvalidRequest(f"Unknown transaction type '{transaction_type}'")

        wallet = self._ensure_wallet(patient_id, for_update=True)
        previous = wallet.balance
        earned, spent = wallet.total_earned, wallet.total_spent
        if transaction_type.is_credit:
            new_balance = previous + amount
            earned += amount
        else:
            if previous < amount:
                raise InsufficientBalance(
                    f"Insufficient wallet balance: {self.currency_symbol}{previous} available, {self.currency_symbol}{amount} required"
                )
            new_balance = previous - amount
            spent += amount

        txn = self.repo.add_transaction(
            wallet_id=wallet.id,
            patient_id=patient_id,
            transaction_type=transaction_type,
            amount=amount,
            previous_balance=previous,
            new_balance=new_balance,
            description=description,
            appointment_id=appointment_id,
            schedule_id=schedule_id,
            reference_id=reference_id,
            processed_by=processed_by,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
        )
        self.repo.update_wallet(wallet.id, balance=new_balance, total_earned=earned, total_spent=spent)
        logger.info(
            f"Wallet {wallet.id} ({transaction_type.value}): {self.currency_symbol}{previous} -> {self.currency_symbol}{new_balance}"
        )
        return txn

    def process_transaction(
        self,
        patient_id: int,
        amount: Union[Decimal, int, float, str],
        transaction_type: Union[str, WalletTransactionType],
        description: str,
        **kwargs,
    ) -> TransactionDto:
        with atomic(self.repo):
            txn = self.post_transaction(patient_id, amount, transaction_type, description, **kwargs)
        return txn

    # -- appointment payments and refunds --

    def pay_for_appointment(self, appointment_id: int, actor_id: Optional[int] = None) -> TransactionDto:
        with atomic(self._unit()):
            appt = self._appointment(appointment_id, for_update=True)
            if appt.is_paid:
                raise AlreadyPaid(f"Appointment {appointment_id} is already paid")
            if appt.patient_id is None:
                raise InvalidRequest("Walk-in appointments cannot be paid from a wallet")
            if appt.status.is_terminal:
                raise InvalidRequest(f"Cannot pay for an appointment that is {appt.status.value}")
            txn = self.post_transaction(
                appt.patient_id,
                appt.consultation_fee,
                WalletTransactionType.appointment_payment,
                f"Payment for token {appt.token_number} on {appt.appointment_date.isoformat()}",
                appointment_id=appt.id,
                schedule_id=appt.schedule_id,
                processed_by=actor_id,
            )
            self.queue_repo.update_appointment(appt.id, is_paid=True, updated_at=self.clock())
        return txn

    def refund_appointment(
        self,
        appointment_id: int,
        reason: str,
        actor_id: Optional[int] = None,
        refund_type: RefundType = RefundType.full,
    ) -> RefundDetail:
        """Credit the fee back, record the refund and cancel the appointment, atomically."""
        with atomic(self._unit()):
            appt = self._appointment(appointment_id, for_update=True)
            if appt.has_been_refunded or self.repo.get_refund_for_appointment(appt.id):
                raise AlreadyRefunded(f"Appointment {appointment_id} has already been refunded")
            if not appt.is_paid:
                raise RefundNotEligible(f"Appointment {appointment_id} was not paid")
            if not appt.is_refund_eligible:
                raise RefundNotEligible(f"Appointment {appointment_id} is not eligible for a refund")
            if appt.status in NOT_REFUNDABLE_STATUSES:
                raise RefundNotEligible(f"Appointment {appointment_id} is {appt.status.value} and cannot be refunded")
            if appt.patient_id is None:
                raise RefundNotEligible(f"Appointment {appointment_id} is a walk-in with no wallet")

            fee = Decimal(appt.consultation_fee).quantize(CENT)
            txn_type = WalletTransactionType.refund_full if refund_type == RefundType.full else WalletTransactionType.refund_partial
            txn = self.post_transaction(
                appt.patient_id,
                fee,
                txn_type,
                f"Refund for cancelled appointment (token {appt.token_number}) - {reason}",
                appointment_id=appt.id,
                schedule_id=appt.schedule_id,
                processed_by=actor_id,
                metadata={"original_appointment_id": appt.id, "cancel_reason": reason, "refund_type": refund_type.value},
            )
            session_note = "Schedule cancelled - full refund processed" if refund_type == RefundType.full else "Doctor left mid-session - partial refund processed"
            self.repo.add_refund(
                appointment_id=appt.id,
                patient_id=appt.patient_id,
                schedule_id=appt.schedule_id,
                doctor_id=appt.doctor_id,
                clinic_id=appt.clinic_id,
                original_amount=fee,
                refund_amount=fee,
                refund_reason=reason,
                refund_type=refund_type,
                wallet_transaction_id=txn.id,
                processed_by=actor_id,
                notes=session_note,
            )
            self.queue_repo.update_appointment(
                appt.id,
                has_been_refunded=True,
                refund_amount=fee,
                status=AppointmentStatus.cancel,
                updated_at=self.clock(),
            )

        logger.info(f"Refunded {self.currency_symbol}{fee} for appointment {appt.id} to patient {appt.patient_id}")
        if self.notifications:
            self.notifications.refund_processed(appt, fee, reason)
        return RefundDetail(
            appointment_id=appt.id,
            patient_id=appt.patient_id,
            refund_amount=fee,
            wallet_transaction_id=txn.id,
            refund_type=refund_type,
        )

    def _refund_batch(self, candidates: List[AppointmentDto], reason: str, actor_id: Optional[int], refund_type: RefundType) -> RefundSummary:
        summary = RefundSummary()
        for appt in candidates:
            if appt.patient_id is None:
                summary.skipped_walk_ins += 1
                continue
            try:
                summary.add(self.refund_appointment(appt.id, reason, actor_id, refund_type))
            except APIException as e:
                logger.error(f"Error processing refund for appointment {appt.id}: {e.detail}")
                summary.failed.append(RefundFailure(appointment_id=appt.id, code=e.code, message=str(e.detail)))
        logger.info(
            f"Processed {summary.refunded_appointments} {refund_type.value} refunds totaling "
            f"{self.currency_symbol}{summary.total_refund_amount} ({len(summary.failed)} failed)"
        )
        return summary

    def _refund_candidates(self, schedule_id: int, on_date: Optional[date] = None) -> List[AppointmentDto]:
        """Paid, still refundable bookings of one session.

        A weekly schedule runs on many days, so only the given day (today by
        default) is considered. A one-off schedule only ever has its own date.
        """
        schedule = self.queue_repo.get_schedule(schedule_id)
        if not schedule:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        on_date = on_date or schedule.schedule_date or self.clock().date()
        return [
            a for a in self.queue_repo.list_schedule_appointments(schedule_id, on_date=on_date)
            if a.is_paid and a.is_refund_eligible and not a.has_been_refunded and a.status not in NOT_REFUNDABLE_STATUSES
        ]

    def process_schedule_cancellation_refunds(
        self,
        schedule_id: int,
        reason: str,
        actor_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> RefundSummary:
        candidates = self._refund_candidates(schedule_id, on_date)
        logger.info(f"Found {len(candidates)} eligible appointments for refund on schedule {schedule_id}")
        return self._refund_batch(candidates, reason, actor_id, RefundType.full)

    def process_partial_refund(
        self,
        schedule_id: int,
        completed_appointment_ids: Collection[int],
        reason: str,
        actor_id: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> RefundSummary:
        """Refund everyone the doctor did not see before leaving mid-session."""
        seen = set(completed_appointment_ids)
        candidates = [a for a in self._refund_candidates(schedule_id, on_date) if a.id not in seen]
        logger.info(f"Found {len(candidates)} eligible appointments for partial refund on schedule {schedule_id}")
        return self._refund_batch(candidates, reason, actor_id, RefundType.partial)

    def mark_no_show(self, appointment_id: int, actor_id: Optional[int] = None, notes: Optional[str] = None) -> AppointmentDto:
        with atomic(self._unit()):
            appt = self._appointment(appointment_id)
            self.queue_repo.get_schedule(appt.schedule_id, for_update=True)
            appt = self._appointment(appointment_id, for_update=True)
            ensure_transition(appt.status, AppointmentStatus.no_show)
            self.queue_repo.update_appointment(
                appt.id,
                status=AppointmentStatus.no_show,
                is_refund_eligible=False,
                status_notes=notes or "Patient did not show up for appointment",
                updated_at=self.clock(),
            )
        logger.info(f"Marked appointment {appointment_id} as no-show by {actor_id} - no refund")
        return self._appointment(appointment_id)

    # -- admin and reporting --

    def admin_adjust(self, patient_id: int, amount, is_credit: bool, reason: str, admin_id: Optional[int] = None) -> TransactionDto:
        return self.process_transaction(
            patient_id,
            amount,
            WalletTransactionType.admin_credit if is_credit else WalletTransactionType.admin_debit,
            f"Admin {'credit' if is_credit else 'debit'}: {reason}",
            processed_by=admin_id,
            metadata={"admin_action": True, "reason": reason, "admin_id": admin_id},
        )

    def top_up(self, patient_id: int, amount, reference_id: Optional[str] = None) -> TransactionDto:
        return self.process_transaction(
            patient_id,
            amount,
            WalletTransactionType.wallet_topup,
            "Wallet top-up",
            reference_id=reference_id,
        )

    def get_transactions(self, patient_id: int, limit: int = 50, offset: int = 0) -> List[TransactionDto]:
        return self.repo.list_transactions(patient_id, limit=limit, offset=offset)

    def get_wallet_summary(self, patient_id: int) -> Dict:
        wallet = self.get_or_create_wallet(patient_id)
        transactions = self.repo.list_transactions(patient_id)
        total_refunds = sum(
            (t.amount for t in transactions if t.transaction_type in (WalletTransactionType.refund_full, WalletTransactionType.refund_partial)),
            Decimal("0.00"),
        )
        total_payments = sum(
            (t.amount for t in transactions if t.transaction_type == WalletTransactionType.appointment_payment),
            Decimal("0.00"),
        )
        return {
            "wallet": wallet,
            "recent_transactions": transactions[:10],
            "stats": {
                "total_transactions": len(transactions),
                "total_refunds": total_refunds,
                "total_spent": total_payments,
            },
        }

    def verify_ledger(self, patient_id: int) -> LedgerCheck:
        """Replay the ledger oldest-first and compare it with the stored balance."""
        wallet = self.repo.get_wallet(patient_id)
        transactions = self.repo.list_transactions(patient_id, newest_first=False)
        balance = Decimal("0.00")
        broken = []
        for txn in transactions:
            if txn.previous_balance != balance:
                broken.append(txn.id)
            balance = balance + txn.amount if txn.transaction_type.is_credit else balance - txn.amount
            if txn.new_balance != balance:
                broken.append(txn.id)
        check = LedgerCheck(
            patient_id=patient_id,
            stored_balance=wallet.balance if wallet else Decimal("0.00"),
            replayed_balance=balance,
            transaction_count=len(transactions),
            broken_links=sorted(set(broken)),
        )
        if not check.consistent:
            logger.error(f"Ledger mismatch for patient {patient_id}: stored {check.stored_balance}, replayed {check.replayed_balance}")
        return check
