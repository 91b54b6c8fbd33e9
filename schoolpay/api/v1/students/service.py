"""Students service: visibility-scoped listing, admin maintenance, fee summary."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.auth.capabilities import CAN_MANAGE
from schoolpay.auth.rbac import can_view_student
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.exceptions import ServiceError
from schoolpay.core.models import PaymentRecord, Student
from schoolpay.payments.ledger import derive_payment_status

from .schemas import StudentCreate, StudentResponse, StudentSummary, StudentUpdate


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _to_response(s: Student) -> StudentResponse:
    total = _to_decimal(s.total_fees)
    paid = _to_decimal(s.amount_paid)
    return StudentResponse(
        id=s.id,
        name=s.name,
        class_name=s.class_name,
        session=s.session,
        term=s.term,
        parent_id=s.parent_id,
        user_id=s.user_id,
        email=s.email,
        phone=s.phone,
        total_fees=total,
        amount_paid=paid,
        balance=max(Decimal("0"), total - paid),
        payment_status=s.payment_status,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def _visible_to(stmt, user: CurrentUser):
    if user.can(CAN_MANAGE):
        return stmt
    return stmt.where(
        or_(Student.parent_id == user.id, Student.user_id == user.id, Student.id == user.id)
    )


async def load_student(db: AsyncSession, user: CurrentUser, student_id: UUID) -> Student:
    """Fetch a student the caller may see. Invisible students are reported as not found."""
    student = await db.get(Student, student_id)
    if not student or not can_view_student(user, student):
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


async def list_students(
    db: AsyncSession,
    user: CurrentUser,
    search: Optional[str] = None,
    payment_status: Optional[str] = None,
    session: Optional[str] = None,
    term: Optional[str] = None,
    class_name: Optional[str] = None,
) -> List[StudentResponse]:
    stmt = _visible_to(select(Student), user)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(Student.name).like(pattern), func.lower(Student.class_name).like(pattern)))
    if payment_status:
        stmt = stmt.where(Student.payment_status == payment_status)
    if session:
        stmt = stmt.where(Student.session == session)
    if term:
        stmt = stmt.where(Student.term == term)
    if class_name:
        stmt = stmt.where(Student.class_name == class_name)
    stmt = stmt.order_by(Student.class_name, Student.name)
    result = await db.execute(stmt)
    return [_to_response(s) for s in result.scalars().all()]


async def get_student(db: AsyncSession, user: CurrentUser, student_id: UUID) -> StudentResponse:
    return _to_response(await load_student(db, user, student_id))


async def create_student(db: AsyncSession, payload: StudentCreate) -> StudentResponse:
    student = Student(
        name=payload.name.strip(),
        class_name=payload.class_name.strip(),
        session=payload.session.strip(),
        term=payload.term.strip(),
        parent_id=payload.parent_id,
        user_id=payload.user_id,
        email=payload.email,
        phone=(payload.phone or "").strip() or None,
        total_fees=payload.total_fees,
        amount_paid=Decimal("0"),
        payment_status=derive_payment_status(payload.total_fees, Decimal("0")),
    )
    db.add(student)
    await db.commit()
    await db.refresh(student)
    return _to_response(student)


async def update_student(
    db: AsyncSession, user: CurrentUser, student_id: UUID, payload: StudentUpdate
) -> StudentResponse:
    student = await load_student(db, user, student_id)
    data = payload.model_dump(exclude_unset=True)
    for field, value in data.items():
        if isinstance(value, str):
            value = value.strip()
        setattr(student, field, value)
    if "total_fees" in data:
        student.payment_status = derive_payment_status(
            _to_decimal(student.total_fees), _to_decimal(student.amount_paid)
        )
    await db.commit()
    await db.refresh(student)
    return _to_response(student)


async def delete_student(db: AsyncSession, user: CurrentUser, student_id: UUID) -> None:
    """Payment records are never cascade-deleted; students with payments cannot be removed."""
    student = await load_student(db, user, student_id)
    payments = (
        await db.execute(select(func.count(PaymentRecord.id)).where(PaymentRecord.student_id == student_id))
    ).scalar()
    if payments:
        raise ServiceError(
            "Student has payment records and cannot be deleted",
            status.HTTP_409_CONFLICT,
        )
    await db.delete(student)
    await db.commit()


async def get_summary(db: AsyncSession, user: CurrentUser) -> StudentSummary:
    students = await list_students(db, user)
    total_fees = sum((s.total_fees for s in students), Decimal("0"))
    total_paid = sum((s.amount_paid for s in students), Decimal("0"))
    return StudentSummary(
        total_students=len(students),
        total_fees=total_fees,
        total_paid=total_paid,
        outstanding=sum((s.balance for s in students), Decimal("0")),
        paid_count=sum(1 for s in students if s.payment_status == "paid"),
        partial_count=sum(1 for s in students if s.payment_status == "partial"),
        unpaid_count=sum(1 for s in students if s.payment_status == "unpaid"),
    )
