from datetime import date, datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
import logging

from ..application.services.booking_service import BookingService
from ..application.services.eta_service import EtaService
from ..application.services.progress_service import ProgressService
from ..application.services.schedule_service import ScheduleService
from ..application.services.status_service import StatusService
from ..application.services.wallet_service import WalletService
from ..dependencies import (
    get_booking_service,
    get_eta_service,
    get_progress_service,
    get_schedule_service,
    get_status_service,
    get_wallet_service,
)
from ..schemas.common.common import ErrorResponse
from ..schemas.queue.queue import (
    AppointmentEtaResponse,
    AppointmentResponse,
    ArrivalRequest,
    BookingCreate,
    BookingResponse,
    EtaUpdateResponse,
    NoShowRequest,
    PauseRequest,
    PaymentRequest,
    ResumeRequest,
    ScheduleAppointmentsResponse,
    StatusUpdate,
    StatusUpdateResponse,
    TokenProgressResponse,
)
from ..schemas.wallet.wallet import TransactionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Queue"], responses={code: {"model": ErrorResponse} for code in (400, 402, 404, 409, 503)})


def _eta_response(schedule_id: int, etas: dict) -> EtaUpdateResponse:
    return EtaUpdateResponse(
        schedule_id=schedule_id,
        updated=len(etas),
        estimated_start_times={str(k): v.isoformat() for k, v in etas.items()},
    )


@router.post("/bookings", response_model=BookingResponse, status_code=201)
def create_booking(
    booking: BookingCreate,
    booking_service: BookingService = Depends(get_booking_service),
):
    result = booking_service.book(
        doctor_id=booking.doctor_id,
        clinic_id=booking.clinic_id,
        appointment_date=booking.appointment_date,
        patient_id=booking.patient_id,
        patient_name=booking.patient_name,
        schedule_id=booking.schedule_id,
        consultation_fee=booking.consultation_fee,
        pay_from_wallet=booking.pay_from_wallet,
        is_refund_eligible=booking.is_refund_eligible,
        actor_id=booking.actor_id,
    )
    return BookingResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        payment_transaction_id=result.payment.id if result.payment else None,
    )


@router.put("/appointments/{appointment_id}/status", response_model=StatusUpdateResponse)
def update_appointment_status(
    appointment_id: int,
    update: StatusUpdate,
    status_service: StatusService = Depends(get_status_service),
):
    change = status_service.set_status(appointment_id, update.status, notes=update.notes, actor_id=update.actor_id)
    return StatusUpdateResponse(
        appointment=AppointmentResponse.model_validate(change.appointment),
        previous_status=change.previous_status,
        auto_completed=change.auto_completed,
        refund_transaction_id=change.refund.wallet_transaction_id if change.refund else None,
        refund_amount=change.refund.refund_amount if change.refund else None,
        refund_error=change.refund_error,
    )


@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    request: NoShowRequest,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    return AppointmentResponse.model_validate(
        wallet_service.mark_no_show(appointment_id, actor_id=request.actor_id, notes=request.notes)
    )


@router.post("/appointments/{appointment_id}/pay", response_model=TransactionResponse)
def pay_for_appointment(
    appointment_id: int,
    request: PaymentRequest,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    return TransactionResponse.model_validate(wallet_service.pay_for_appointment(appointment_id, actor_id=request.actor_id))


@router.get("/appointments/{appointment_id}/eta", response_model=AppointmentEtaResponse)
def get_appointment_eta(
    appointment_id: int,
    progress_service: ProgressService = Depends(get_progress_service),
):
    return AppointmentEtaResponse(**progress_service.appointment_eta(appointment_id))


@router.get("/progress", response_model=TokenProgressResponse)
def get_token_progress(
    doctor_id: int = Query(...),
    clinic_id: int = Query(...),
    on_date: Optional[date] = Query(default=None, alias="date"),
    progress_service: ProgressService = Depends(get_progress_service),
):
    progress = progress_service.token_progress(doctor_id, clinic_id, on_date)
    return TokenProgressResponse(
        current_token=progress.current_token,
        status=progress.status,
        appointment=AppointmentResponse.model_validate(progress.appointment) if progress.appointment else None,
    )


@router.post("/schedules/{schedule_id}/arrival", response_model=EtaUpdateResponse)
def record_doctor_arrival(
    schedule_id: int,
    request: ArrivalRequest,
    eta_service: EtaService = Depends(get_eta_service),
):
    arrival = request.arrival_time or datetime.now()
    logger.info(f"Doctor arrival reported for schedule {schedule_id} at {arrival.isoformat()}")
    return _eta_response(schedule_id, eta_service.on_doctor_arrival(schedule_id, arrival))


@router.post("/schedules/{schedule_id}/recalculate", response_model=EtaUpdateResponse)
def recalculate_etas(
    schedule_id: int,
    on_date: Optional[date] = Query(default=None, alias="date"),
    eta_service: EtaService = Depends(get_eta_service),
):
    return _eta_response(schedule_id, eta_service.recalculate_from_arrival(schedule_id, on_date))


@router.post("/schedules/{schedule_id}/refresh-average", response_model=EtaUpdateResponse)
def refresh_average(
    schedule_id: int,
    on_date: Optional[date] = Query(default=None, alias="date"),
    eta_service: EtaService = Depends(get_eta_service),
):
    return _eta_response(schedule_id, eta_service.refresh_average(schedule_id, on_date))


@router.post("/schedules/{schedule_id}/pause", response_model=ScheduleAppointmentsResponse)
def pause_schedule(
    schedule_id: int,
    request: PauseRequest,
    schedule_service: ScheduleService = Depends(get_schedule_service),
):
    paused = schedule_service.pause_schedule(schedule_id, reason=request.reason, on_date=request.on_date)
    return ScheduleAppointmentsResponse(
        schedule_id=schedule_id,
        appointments=[AppointmentResponse.model_validate(a) for a in paused],
    )


@router.post("/schedules/{schedule_id}/resume", response_model=ScheduleAppointmentsResponse)
def resume_schedule(
    schedule_id: int,
    request: ResumeRequest,
    schedule_service: ScheduleService = Depends(get_schedule_service),
):
    resumed = schedule_service.resume_schedule(schedule_id, on_date=request.on_date)
    return ScheduleAppointmentsResponse(
        schedule_id=schedule_id,
        appointments=[AppointmentResponse.model_validate(a) for a in resumed],
    )
