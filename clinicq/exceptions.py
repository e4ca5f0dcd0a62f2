from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class APIException(HTTPException):
    """HTTP error carrying a stable machine-readable code."""

    status_code_default = 400
    code = "error"

    def __init__(self, detail: str, status_code: int = None, code: str = None):
        super().__init__(status_code=status_code or self.status_code_default, detail=detail)
        if code:
            self.code = code


# Validation errors
class InvalidRequest(APIException):
    code = "invalid_request"


class InvalidStatus(APIException):
    code = "invalid_status"


# Missing records
class ScheduleNotFound(APIException):
    status_code_default = 404
    code = "schedule_not_found"


class AppointmentNotFound(APIException):
    status_code_default = 404
    code = "appointment_not_found"


class NoActiveSchedule(APIException):
    status_code_default = 404
    code = "no_active_schedule"


# Capacity / eligibility errors
class CapacityExceeded(APIException):
    status_code_default = 409
    code = "capacity_exceeded"


class InvalidTransition(APIException):
    status_code_default = 409
    code = "invalid_transition"


class ConsultationInProgress(APIException):
    status_code_default = 409
    code = "consultation_in_progress"


class ArrivalAlreadyRecorded(APIException):
    status_code_default = 409
    code = "arrival_already_recorded"


class InsufficientBalance(APIException):
    status_code_default = 402
    code = "insufficient_balance"


class AlreadyRefunded(APIException):
    status_code_default = 409
    code = "already_refunded"


class AlreadyPaid(APIException):
    status_code_default = 409
    code = "already_paid"


class RefundNotEligible(APIException):
    status_code_default = 409
    code = "refund_not_eligible"


# Storage
class TransientStorageError(APIException):
    status_code_default = 503
    code = "storage_unavailable"


def create_error_response(error_message: str, code: str = "error") -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": {"code": code, "message": error_message},
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    code = getattr(exc, "code", None) or f"http_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), code),
    )
