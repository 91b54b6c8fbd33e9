"""Payment sessions service: opens sessions for visible students and drives them on the caller's behalf."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.api.v1.students.service import load_student
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.enums import WidgetOutcome
from schoolpay.core.exceptions import ServiceError, ValidationError
from schoolpay.core.models import Student
from schoolpay.payments.registry import PaymentRuntime
from schoolpay.payments.session import PaymentSession
from schoolpay.payments.types import Allocation, Payer

from .schemas import (
    AllocationInfo,
    PaymentSessionCreate,
    PaymentSessionResponse,
    ReferenceInfo,
    SessionErrorInfo,
    WidgetCallbackResponse,
    WidgetInfo,
)

logger = logging.getLogger(__name__)


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _allocation_for(student: Student) -> Allocation:
    outstanding = _to_decimal(student.total_fees) - _to_decimal(student.amount_paid)
    if outstanding <= 0:
        raise ValidationError(f"{student.name} has no outstanding balance")
    return Allocation(
        student_id=student.id,
        student_name=student.name,
        class_name=student.class_name,
        session=student.session,
        term=student.term,
        amount=outstanding,
        outstanding=outstanding,
    )


def _payer_for(user: CurrentUser, students: List[Student]) -> Payer:
    first = students[0]
    return Payer(
        name=user.name or first.name,
        email=user.email or first.email,
        phone=user.phone or first.phone,
        payer_id=str(user.id),
    )


def to_response(session: PaymentSession) -> PaymentSessionResponse:
    ref = session.reference
    err = session.last_error
    widget = session.widget
    return PaymentSessionResponse(
        id=session.id,
        state=session.state,
        is_bulk=session.is_bulk,
        total_amount=session.total_amount,
        description=session.description,
        reference=(
            ReferenceInfo(rrr=ref.rrr, order_id=ref.order_id, amount=ref.amount, issued_at=ref.issued_at)
            if ref
            else None
        ),
        verification_attempts=session.verification_attempts,
        verification_active=session.verification_active,
        last_error=(
            SessionErrorInfo(kind=err.kind, message=err.message, correlation_id=err.correlation_id)
            if err
            else None
        ),
        allocations=[
            AllocationInfo(
                student_id=a.student_id,
                student_name=a.student_name,
                class_name=a.class_name,
                session=a.session,
                term=a.term,
                amount=a.amount,
                outstanding=a.outstanding,
            )
            for a in session.allocations
        ],
        payment_ids=[r.id for r in session.records],
        widget=WidgetInfo(id=widget.id, config=widget.config, outcome=widget.outcome) if widget else None,
        created_at=session.created_at,
    )


async def create_session(
    db: AsyncSession,
    runtime: PaymentRuntime,
    user: CurrentUser,
    payload: PaymentSessionCreate,
) -> PaymentSessionResponse:
    """Open a session over the outstanding balances of the selected students."""
    await runtime.registry.sweep()
    student_ids = list(dict.fromkeys(payload.student_ids))
    students = [await load_student(db, user, sid) for sid in student_ids]
    allocations = [_allocation_for(s) for s in students]
    session = runtime.open_session(
        allocations,
        _payer_for(user, students),
        description=payload.description,
        owner_id=str(user.id),
    )
    return to_response(session)


def get_owned_session(runtime: PaymentRuntime, user: CurrentUser, session_id: str) -> PaymentSession:
    session = runtime.registry.get(session_id)
    if session.owner_id != str(user.id):
        raise ServiceError("Payment session not found", status.HTTP_404_NOT_FOUND)
    return session


async def get_session(runtime: PaymentRuntime, user: CurrentUser, session_id: str) -> PaymentSessionResponse:
    return to_response(get_owned_session(runtime, user, session_id))


async def request_reference(
    runtime: PaymentRuntime,
    user: CurrentUser,
    session_id: str,
    amount: Optional[Decimal] = None,
) -> PaymentSessionResponse:
    session = get_owned_session(runtime, user, session_id)
    await session.generate(amount)
    return to_response(session)


async def launch_widget(runtime: PaymentRuntime, user: CurrentUser, session_id: str) -> PaymentSessionResponse:
    session = get_owned_session(runtime, user, session_id)
    session.launch_widget()
    return to_response(session)


async def widget_callback(
    runtime: PaymentRuntime,
    user: CurrentUser,
    session_id: str,
    invocation_id: int,
    outcome: WidgetOutcome,
    payload: Optional[Dict[str, Any]] = None,
) -> WidgetCallbackResponse:
    session = get_owned_session(runtime, user, session_id)
    if outcome == WidgetOutcome.SUCCESS:
        accepted = session.on_widget_success(invocation_id, payload)
    elif outcome == WidgetOutcome.ERROR:
        accepted = session.on_widget_error(invocation_id, payload)
    else:
        accepted = session.on_widget_closed(invocation_id)
    return WidgetCallbackResponse(accepted=accepted, session=to_response(session))


async def verify(runtime: PaymentRuntime, user: CurrentUser, session_id: str) -> PaymentSessionResponse:
    session = get_owned_session(runtime, user, session_id)
    await session.verify_now()
    return to_response(session)


async def discard(runtime: PaymentRuntime, user: CurrentUser, session_id: str) -> None:
    get_owned_session(runtime, user, session_id)
    session = await runtime.registry.discard(session_id)
    logger.info("Payment session %s discarded in state %s", session.id, session.state.value)
