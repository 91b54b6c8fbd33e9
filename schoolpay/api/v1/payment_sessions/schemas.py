"""Payment session request and response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolpay.core.enums import PaymentSessionState, WidgetOutcome


class PaymentSessionCreate(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=255)


class ReferenceRequest(BaseModel):
    """Omit amount to pay the full outstanding balance of every student in the session."""

    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)


class WidgetCallback(BaseModel):
    outcome: WidgetOutcome
    payload: Optional[Dict[str, Any]] = None


class ReferenceInfo(BaseModel):
    rrr: str
    order_id: str
    amount: Decimal
    issued_at: datetime


class AllocationInfo(BaseModel):
    student_id: UUID
    student_name: str
    class_name: str
    session: str
    term: str
    amount: Decimal
    outstanding: Decimal


class SessionErrorInfo(BaseModel):
    kind: str
    message: str
    correlation_id: Optional[str] = None


class WidgetInfo(BaseModel):
    id: int
    config: Dict[str, Any]
    outcome: Optional[WidgetOutcome] = None


class PaymentSessionResponse(BaseModel):
    id: str
    state: PaymentSessionState
    is_bulk: bool
    total_amount: Decimal
    description: str
    reference: Optional[ReferenceInfo] = None
    verification_attempts: int
    verification_active: bool
    last_error: Optional[SessionErrorInfo] = None
    allocations: List[AllocationInfo]
    payment_ids: List[UUID] = []
    widget: Optional[WidgetInfo] = None
    created_at: datetime


class WidgetCallbackResponse(BaseModel):
    accepted: bool
    session: PaymentSessionResponse
