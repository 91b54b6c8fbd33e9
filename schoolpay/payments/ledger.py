"""Ledger reconciler: applies confirmed gateway payments to student accounts exactly once."""

import asyncio
import logging
import secrets
import time
import uuid
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.enums import PaymentRecordStatus, StudentFeeStatus
from schoolpay.core.exceptions import ServiceError, ValidationError
from schoolpay.core.models import PaymentRecord, Student

from .types import Allocation, PaymentReference

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "Remita"
RECEIPT_URL = "/api/v1/payments/{payment_id}/receipt"


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def derive_payment_status(total_fees: Decimal, amount_paid: Decimal) -> str:
    if _to_decimal(amount_paid) >= _to_decimal(total_fees):
        return StudentFeeStatus.paid.value
    if _to_decimal(amount_paid) > 0:
        return StudentFeeStatus.partial.value
    return StudentFeeStatus.unpaid.value


def new_receipt_number() -> str:
    return f"RCP-{int(time.time() * 1000) % 100_000_000:08d}{secrets.token_hex(2).upper()}"


class LedgerStore:
    """Student/payment persistence used by the reconciler, bound to one AsyncSession."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_student(self, student_id: UUID) -> Optional[Student]:
        return await self.db.get(Student, student_id)

    async def find_payment(self, transaction_id: str, student_id: UUID) -> Optional[PaymentRecord]:
        result = await self.db.execute(
            select(PaymentRecord).where(
                PaymentRecord.transaction_id == transaction_id,
                PaymentRecord.student_id == student_id,
            )
        )
        return result.scalar_one_or_none()

    async def completed_total(self, student_id: UUID) -> Decimal:
        total = (
            await self.db.execute(
                select(func.coalesce(func.sum(PaymentRecord.amount), 0)).where(
                    PaymentRecord.student_id == student_id,
                    PaymentRecord.status == PaymentRecordStatus.completed.value,
                )
            )
        ).scalar()
        return _to_decimal(total)

    async def append_payment(self, record: PaymentRecord) -> PaymentRecord:
        self.db.add(record)
        await self.db.flush()
        return record

    async def update_student_totals(self, student: Student, amount_paid: Decimal) -> None:
        student.amount_paid = amount_paid
        student.payment_status = derive_payment_status(_to_decimal(student.total_fees), amount_paid)
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


class LedgerReconciler:
    """
    Applies confirmed payments to the ledger.

    Updates for one student are serialized with a per-student lock, and the
    (reference, student) pair is the idempotency key: applying the same
    reference twice returns the first record and leaves totals untouched.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        payment_method: str = PAYMENT_METHOD,
    ) -> None:
        self._session_factory = session_factory
        self.payment_method = payment_method
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, student_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(student_id, asyncio.Lock())

    async def apply_confirmed_payment(
        self,
        student_id: UUID,
        amount: Decimal,
        reference: PaymentReference,
        payer_id: Optional[str] = None,
    ) -> PaymentRecord:
        amount = _to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Confirmed amount must be greater than 0", correlation_id=reference.rrr)

        async with self._lock_for(student_id):
            async with self._session_factory() as db:
                store = LedgerStore(db)
                existing = await store.find_payment(reference.rrr, student_id)
                if existing:
                    logger.info("Payment already applied rrr=%s student_id=%s", reference.rrr, student_id)
                    return existing

                student = await store.get_student(student_id)
                if not student:
                    raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)

                record_id = uuid.uuid4()
                record = PaymentRecord(
                    id=record_id,
                    student_id=student_id,
                    payer_id=payer_id,
                    amount=amount,
                    payment_method=self.payment_method,
                    transaction_id=reference.rrr,
                    order_id=reference.order_id,
                    session=student.session,
                    term=student.term,
                    status=PaymentRecordStatus.completed.value,
                    receipt_number=new_receipt_number(),
                    receipt_url=RECEIPT_URL.format(payment_id=record_id),
                )
                old_paid = _to_decimal(student.amount_paid)
                try:
                    await store.append_payment(record)
                    await store.update_student_totals(student, old_paid + amount)
                    await store.commit()
                except IntegrityError:
                    await store.rollback()
                    existing = await store.find_payment(reference.rrr, student_id)
                    if existing:
                        return existing
                    raise

                logger.info(
                    "Applied payment rrr=%s student_id=%s amount=%s amount_paid=%s->%s status=%s",
                    reference.rrr,
                    student_id,
                    amount,
                    old_paid,
                    student.amount_paid,
                    student.payment_status,
                )
                return record

    async def apply_allocations(
        self,
        allocations: Sequence[Allocation],
        reference: PaymentReference,
        settled_amount: Optional[Decimal] = None,
        payer_id: Optional[str] = None,
    ) -> List[PaymentRecord]:
        """
        Apply one confirmed reference across the students it paid for.

        A single-student payment is credited with the settled amount when the
        gateway reports one. For several students the settled amount caps the
        allocations in order.
        """
        amounts = split_settled_amount(allocations, reference.amount, settled_amount)
        records = []
        for allocation, amount in zip(allocations, amounts):
            if amount <= 0:
                logger.warning(
                    "Nothing left to apply rrr=%s student_id=%s", reference.rrr, allocation.student_id
                )
                continue
            records.append(
                await self.apply_confirmed_payment(allocation.student_id, amount, reference, payer_id=payer_id)
            )
        return records


def split_settled_amount(
    allocations: Sequence[Allocation],
    requested: Decimal,
    settled: Optional[Decimal],
) -> List[Decimal]:
    if settled is None or _to_decimal(settled) == _to_decimal(requested):
        return [a.amount for a in allocations]
    settled = _to_decimal(settled)
    if len(allocations) == 1:
        return [settled]
    logger.warning("Settled amount %s differs from requested %s", settled, requested)
    remaining = settled
    amounts = []
    for allocation in allocations:
        share = min(allocation.amount, max(remaining, Decimal("0")))
        amounts.append(share)
        remaining -= share
    return amounts
