"""Payment record: append-only ledger entry for a confirmed gateway payment."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid

from schoolpay.db.session import Base


class PaymentRecord(Base):
    """One row per (gateway reference, student). Completed rows are never edited."""

    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("transaction_id", "student_id", name="uq_payment_record_reference_student"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    payer_id = Column(String(100), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)  # Remita
    transaction_id = Column(String(100), nullable=False, index=True)  # gateway reference (RRR)
    order_id = Column(String(100), nullable=True)
    session = Column(String(20), nullable=False)
    term = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False)  # pending, completed, failed
    receipt_number = Column(String(30), nullable=True)
    receipt_url = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
