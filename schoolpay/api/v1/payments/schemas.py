"""Payment record schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from schoolpay.core.enums import PaymentRecordStatus


class PaymentRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    payer_id: Optional[str] = None
    amount: Decimal
    payment_method: str
    transaction_id: str
    order_id: Optional[str] = None
    session: str
    term: str
    status: PaymentRecordStatus
    receipt_number: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
