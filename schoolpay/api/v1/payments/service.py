"""Payments service: ledger history, receipts and report exports. Read-only over payment records."""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.auth.capabilities import CAN_MANAGE
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.enums import ReportFormat
from schoolpay.core.exceptions import ServiceError
from schoolpay.core.models import PaymentRecord, Student
from schoolpay.payments.receipts import render_bulk_receipt, render_receipt
from schoolpay.payments.reports import build_csv_report, build_xlsx_report

from .schemas import PaymentRecordResponse

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _to_response(pr: PaymentRecord, student_name: Optional[str]) -> PaymentRecordResponse:
    return PaymentRecordResponse(
        id=pr.id,
        student_id=pr.student_id,
        student_name=student_name,
        payer_id=pr.payer_id,
        amount=_to_decimal(pr.amount),
        payment_method=pr.payment_method,
        transaction_id=pr.transaction_id,
        order_id=pr.order_id,
        session=pr.session,
        term=pr.term,
        status=pr.status,
        receipt_number=pr.receipt_number,
        receipt_url=pr.receipt_url,
        created_at=pr.created_at,
    )


def _visible_payments(user: CurrentUser):
    stmt = select(PaymentRecord, Student).outerjoin(Student, PaymentRecord.student_id == Student.id)
    if user.can(CAN_MANAGE):
        return stmt
    return stmt.where(
        or_(
            Student.parent_id == user.id,
            Student.user_id == user.id,
            Student.id == user.id,
            PaymentRecord.payer_id == str(user.id),
        )
    )


async def _query_payments(
    db: AsyncSession,
    user: CurrentUser,
    search: Optional[str] = None,
    status_filter: Optional[str] = None,
    session: Optional[str] = None,
    term: Optional[str] = None,
) -> List[Tuple[PaymentRecord, Optional[Student]]]:
    stmt = _visible_payments(user)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(func.lower(Student.name).like(pattern), func.lower(PaymentRecord.transaction_id).like(pattern))
        )
    if status_filter:
        stmt = stmt.where(PaymentRecord.status == status_filter)
    if session:
        stmt = stmt.where(PaymentRecord.session == session)
    if term:
        stmt = stmt.where(PaymentRecord.term == term)
    stmt = stmt.order_by(PaymentRecord.created_at.desc())
    result = await db.execute(stmt)
    return [(pr, st) for pr, st in result.all()]


async def list_payments(
    db: AsyncSession,
    user: CurrentUser,
    search: Optional[str] = None,
    status_filter: Optional[str] = None,
    session: Optional[str] = None,
    term: Optional[str] = None,
) -> List[PaymentRecordResponse]:
    rows = await _query_payments(db, user, search, status_filter, session, term)
    return [_to_response(pr, st.name if st else None) for pr, st in rows]


async def _load_visible(db: AsyncSession, user: CurrentUser, payment_id: UUID) -> Tuple[PaymentRecord, Student]:
    row = (await db.execute(_visible_payments(user).where(PaymentRecord.id == payment_id))).first()
    if not row:
        raise ServiceError("Payment not found", status.HTTP_404_NOT_FOUND)
    return row[0], row[1]


async def get_payment(db: AsyncSession, user: CurrentUser, payment_id: UUID) -> PaymentRecordResponse:
    pr, st = await _load_visible(db, user, payment_id)
    return _to_response(pr, st.name if st else None)


async def get_receipt(db: AsyncSession, user: CurrentUser, payment_id: UUID, school_name: str) -> str:
    pr, st = await _load_visible(db, user, payment_id)
    return render_receipt(pr, st, school_name)


async def get_reference_receipt(db: AsyncSession, user: CurrentUser, rrr: str, school_name: str) -> str:
    """Receipt covering every visible record paid under one gateway reference."""
    result = await db.execute(
        _visible_payments(user).where(PaymentRecord.transaction_id == rrr).order_by(Student.name)
    )
    items = [(pr, st) for pr, st in result.all()]
    if not items:
        raise ServiceError("Payment not found", status.HTTP_404_NOT_FOUND)
    if len(items) == 1:
        return render_receipt(items[0][0], items[0][1], school_name)
    return render_bulk_receipt(items, school_name)


async def export_report(
    db: AsyncSession,
    user: CurrentUser,
    report_format: ReportFormat,
    status_filter: Optional[str] = None,
    session: Optional[str] = None,
    term: Optional[str] = None,
) -> Tuple[bytes, str, str]:
    """Returns (content, media_type, filename)."""
    rows = await _query_payments(db, user, None, status_filter, session, term)
    stamp = date.today().isoformat()
    if report_format == ReportFormat.XLSX:
        return build_xlsx_report(rows), XLSX_MEDIA_TYPE, f"payment_report_{stamp}.xlsx"
    return build_csv_report(rows), "text/csv; charset=utf-8", f"payment_report_{stamp}.csv"
