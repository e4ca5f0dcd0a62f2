import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from ...enums import WalletTransactionType
from ...exceptions import InvalidRequest
from ..ports.queue_repo import AppointmentDto, QueueRepository
from ..ports.unit_of_work import CombinedUnitOfWork, atomic
from ..ports.wallet_repo import TransactionDto
from .eta_service import EtaService
from .token_allocator import TokenAllocator
from .wallet_service import WalletService, to_amount

logger = logging.getLogger(__name__)


@dataclass
class Booking:
    appointment: AppointmentDto
    payment: Optional[TransactionDto] = None


@dataclass
class BookingService:
    repo: QueueRepository
    allocator: TokenAllocator
    eta: EtaService
    wallet: Optional[WalletService] = None
    clock: Callable[[], datetime] = datetime.now

    def book(
        self,
        doctor_id: int,
        clinic_id: int,
        appointment_date: date,
        patient_id: Optional[int] = None,
        patient_name: Optional[str] = None,
        schedule_id: Optional[int] = None,
        consultation_fee: Decimal = Decimal("0.00"),
        pay_from_wallet: bool = False,
        is_refund_eligible: bool = True,
        actor_id: Optional[int] = None,
    ) -> Booking:
        """Issue the next token with its initial ETA, optionally paid from the wallet.

        Token allocation, the appointment insert and the wallet debit
        commit together, so a failed payment releases the token.
        """
        if appointment_date < self.clock().date():
            raise InvalidRequest("Cannot book an appointment for a past date")
        if patient_id is None and not patient_name:
            raise InvalidRequest("Walk-in bookings need a patient name")
        if pay_from_wallet:
            if patient_id is None:
                raise InvalidRequest("Walk-in patients cannot pay from a wallet")
            if not self.wallet:
                raise InvalidRequest("Wallet payments are not available")
            consultation_fee = to_amount(consultation_fee)
        if consultation_fee < 0:
            raise InvalidRequest("Consultation fee cannot be negative")

        payment = None
        with atomic(CombinedUnitOfWork(self.repo, self.wallet.repo if self.wallet else None)):
            schedule = self.allocator.resolve_schedule(doctor_id, clinic_id, appointment_date, schedule_id)
            schedule = self.repo.get_schedule(schedule.id, for_update=True)
            if schedule.is_paused:
                logger.warning(f"Booking into paused schedule {schedule.id}")
            token = self.allocator.next_token(schedule, appointment_date)
            eta = self.eta.estimate_for(schedule, token, appointment_date)
            appt = self.repo.create_appointment(
                schedule_id=schedule.id,
                doctor_id=doctor_id,
                clinic_id=clinic_id,
                patient_id=patient_id,
                patient_name=patient_name,
                appointment_date=appointment_date,
                token_number=token,
                estimated_start_time=eta,
                consultation_fee=consultation_fee,
                is_refund_eligible=is_refund_eligible,
            )
            if pay_from_wallet:
                payment = self.wallet.post_transaction(
                    patient_id,
                    consultation_fee,
                    WalletTransactionType.appointment_payment,
                    f"Payment for token {token} on {appointment_date.isoformat()}",
                    appointment_id=appt.id,
                    schedule_id=schedule.id,
                    processed_by=actor_id,
                )
                self.repo.update_appointment(appt.id, is_paid=True)

        appt = self.repo.get_appointment(appt.id)
        logger.info(
            f"Booked token {token} for doctor {doctor_id} at clinic {clinic_id} on {appointment_date}, "
            f"ETA {eta.strftime('%H:%M')}{' (paid)' if payment else ''}"
        )
        return Booking(appointment=appt, payment=payment)
