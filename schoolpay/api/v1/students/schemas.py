"""Student account schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from schoolpay.core.enums import StudentFeeStatus


class StudentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    class_name: str = Field(..., max_length=50)
    session: str = Field(..., max_length=20, description="e.g. 2024/2025")
    term: str = Field(..., max_length=30, description="e.g. First Term")
    parent_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    total_fees: Decimal = Field(..., ge=0)


class StudentUpdate(BaseModel):
    """Profile and fee fields. amount_paid is owned by the payment ledger and cannot be set here."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    class_name: Optional[str] = Field(None, max_length=50)
    session: Optional[str] = Field(None, max_length=20)
    term: Optional[str] = Field(None, max_length=30)
    parent_id: Optional[UUID] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    total_fees: Optional[Decimal] = Field(None, ge=0)


class StudentResponse(BaseModel):
    id: UUID
    name: str
    class_name: str
    session: str
    term: str
    parent_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    total_fees: Decimal
    amount_paid: Decimal
    balance: Decimal
    payment_status: StudentFeeStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StudentSummary(BaseModel):
    total_students: int
    total_fees: Decimal
    total_paid: Decimal
    outstanding: Decimal
    paid_count: int
    partial_count: int
    unpaid_count: int
