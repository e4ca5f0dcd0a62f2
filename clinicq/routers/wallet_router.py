from typing import List
from fastapi import APIRouter, Depends, Query
import logging

from ..application.services.schedule_service import ScheduleService
from ..application.services.wallet_service import RefundSummary, WalletService
from ..dependencies import get_schedule_service, get_wallet_service
from ..schemas.common.common import ErrorResponse
from ..schemas.wallet.wallet import (
    AdminAdjustRequest,
    LedgerCheckResponse,
    PartialCancelRequest,
    RefundSummaryResponse,
    ScheduleCancelRequest,
    ScheduleCancelResponse,
    TopUpRequest,
    TransactionResponse,
    WalletResponse,
    WalletStats,
    WalletSummaryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"], responses={code: {"model": ErrorResponse} for code in (400, 402, 404, 409, 503)})


def _summary_response(summary: RefundSummary) -> RefundSummaryResponse:
    return RefundSummaryResponse.model_validate(summary)


@router.post("/schedules/{schedule_id}/cancel", response_model=ScheduleCancelResponse)
def cancel_schedule(
    schedule_id: int,
    request: ScheduleCancelRequest,
    schedule_service: ScheduleService = Depends(get_schedule_service),
):
    result = schedule_service.cancel_schedule(
        schedule_id, request.reason, actor_id=request.actor_id, on_date=request.on_date
    )
    return ScheduleCancelResponse(
        schedule_id=result.schedule_id,
        on_date=result.on_date,
        cancelled_appointments=result.cancelled_appointments,
        refunds=_summary_response(result.refunds),
    )


@router.post("/schedules/{schedule_id}/partial-cancel", response_model=RefundSummaryResponse)
def partial_cancel_schedule(
    schedule_id: int,
    request: PartialCancelRequest,
    schedule_service: ScheduleService = Depends(get_schedule_service),
):
    summary = schedule_service.partial_cancel(
        schedule_id,
        request.completed_appointment_ids,
        request.reason,
        actor_id=request.actor_id,
        on_date=request.on_date,
    )
    return _summary_response(summary)


@router.get("/{patient_id}", response_model=WalletSummaryResponse)
def get_wallet_summary(
    patient_id: int,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    summary = wallet_service.get_wallet_summary(patient_id)
    return WalletSummaryResponse(
        wallet=WalletResponse.model_validate(summary["wallet"]),
        recent_transactions=[TransactionResponse.model_validate(t) for t in summary["recent_transactions"]],
        stats=WalletStats(**summary["stats"]),
    )


@router.get("/{patient_id}/transactions", response_model=List[TransactionResponse])
def get_wallet_transactions(
    patient_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    wallet_service: WalletService = Depends(get_wallet_service),
):
    return [TransactionResponse.model_validate(t) for t in wallet_service.get_transactions(patient_id, limit, offset)]


@router.get("/{patient_id}/verify", response_model=LedgerCheckResponse)
def verify_wallet_ledger(
    patient_id: int,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    check = wallet_service.verify_ledger(patient_id)
    return LedgerCheckResponse(
        patient_id=check.patient_id,
        stored_balance=check.stored_balance,
        replayed_balance=check.replayed_balance,
        transaction_count=check.transaction_count,
        broken_links=check.broken_links,
        consistent=check.consistent,
    )


@router.post("/{patient_id}/top-up", response_model=TransactionResponse)
def top_up_wallet(
    patient_id: int,
    request: TopUpRequest,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    return TransactionResponse.model_validate(wallet_service.top_up(patient_id, request.amount, reference_id=request.reference_id))


@router.post("/{patient_id}/admin-adjust", response_model=TransactionResponse)
def admin_adjust_wallet(
    patient_id: int,
    request: AdminAdjustRequest,
    wallet_service: WalletService = Depends(get_wallet_service),
):
    logger.info(f"Admin {request.admin_id} {'credit' if request.is_credit else 'debit'} of {request.amount} for patient {patient_id}")
    txn = wallet_service.admin_adjust(patient_id, request.amount, request.is_credit, request.reason, admin_id=request.admin_id)
    return TransactionResponse.model_validate(txn)
