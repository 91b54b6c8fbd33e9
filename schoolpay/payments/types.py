"""Value types passed between the gateway client, the session and the ledger."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from schoolpay.core.enums import VerificationStatus


@dataclass(frozen=True)
class PaymentReference:
    """Single-use reference (RRR) issued by the gateway for one payment intent."""

    rrr: str
    amount: Decimal
    order_id: str
    issued_at: datetime
    status_code: str = "00"
    message: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    status: VerificationStatus
    code: str
    message: str
    amount: Optional[Decimal] = None
    payment_date: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def confirmed(self) -> bool:
        return self.status == VerificationStatus.CONFIRMED

    @property
    def pending(self) -> bool:
        return self.status == VerificationStatus.PENDING


@dataclass(frozen=True)
class Payer:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    payer_id: Optional[str] = None


@dataclass(frozen=True)
class Allocation:
    """Share of a session's amount applied to one student on confirmation."""

    student_id: UUID
    student_name: str
    class_name: str
    session: str
    term: str
    amount: Decimal
    outstanding: Decimal
