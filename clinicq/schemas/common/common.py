# clinicq/schemas/common/common.py
from pydantic import BaseModel
from typing import Any, Optional


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: ErrorDetail
