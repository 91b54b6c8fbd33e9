"""Student fee account: total owed, cumulative paid, derived status."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, Uuid

from schoolpay.core.enums import StudentFeeStatus
from schoolpay.db.session import Base


class Student(Base):
    """
    Student account mutated by the ledger reconciler.
    amount_paid only grows, and only through confirmed payment records.
    """

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('unpaid','partial','paid')",
            name="chk_student_payment_status",
        ),
        CheckConstraint("amount_paid >= 0", name="chk_student_amount_paid_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    class_name = Column(String(50), nullable=False)
    session = Column(String(20), nullable=False)  # e.g. 2024/2025
    term = Column(String(30), nullable=False)  # e.g. First Term
    parent_id = Column(Uuid, nullable=True, index=True)
    user_id = Column(Uuid, nullable=True, index=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    total_fees = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default=StudentFeeStatus.unpaid.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
