"""HTML receipts for completed payment records."""

from html import escape
from typing import Sequence, Tuple

from schoolpay.core.models import PaymentRecord, Student

_STYLE = """
    body { font-family: Arial, sans-serif; margin: 20px; line-height: 1.6; color: #333; }
    .receipt-content { max-width: 700px; margin: 0 auto; }
    .receipt-header { text-align: center; margin-bottom: 30px; border-bottom: 2px solid #333; padding-bottom: 20px; }
    .receipt-section { margin-bottom: 20px; padding: 15px; background-color: #f9f9f9; border: 1px solid #eee; }
    table { width: 100%; border-collapse: collapse; }
    th, td { padding: 8px; border-bottom: 1px dotted #eaeaea; text-align: left; }
    .total-row { font-weight: bold; border-top: 2px solid #000; }
    .footer { text-align: center; font-size: 0.8em; color: #666; margin-top: 40px; }
    @media print { body { margin: 0; } .receipt-section { break-inside: avoid; } }
"""

_FOOTER = (
    "<p>This is an electronically generated receipt and does not require a physical signature.</p>"
    "<p>If you have any questions, please contact the school administration office.</p>"
)


def format_naira(amount) -> str:
    return f"₦{amount:,.2f}"


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        f'<meta charset="UTF-8">\n<title>{escape(title)}</title>\n<style>{_STYLE}</style>\n'
        "</head>\n<body>\n"
        f'<div class="receipt-content">{body}<div class="footer">{_FOOTER}</div></div>\n'
        "</body>\n</html>\n"
    )


def _rows(pairs: Sequence[Tuple[str, str]]) -> str:
    return "".join(f"<tr><th>{escape(k)}</th><td>{escape(str(v))}</td></tr>" for k, v in pairs)


def render_receipt(record: PaymentRecord, student: Student, school_name: str) -> str:
    paid_at = record.created_at
    payment = _rows(
        [
            ("Transaction ID", record.transaction_id),
            ("Payment Date", paid_at.strftime("%d/%m/%Y")),
            ("Payment Time", paid_at.strftime("%H:%M:%S")),
            ("Payment Method", record.payment_method),
            ("Status", record.status.capitalize()),
        ]
    )
    student_rows = _rows(
        [
            ("Student Name", student.name),
            ("Class", student.class_name),
            ("Session", record.session),
            ("Term", record.term),
        ]
    )
    body = (
        f'<div class="receipt-header"><h1>{escape(school_name)}</h1><h2>Payment Receipt</h2>'
        f"<p><strong>Receipt Number:</strong> {escape(record.receipt_number or '')}</p></div>"
        f'<div class="receipt-section"><h3>Payment Details</h3><table>{payment}</table></div>'
        f'<div class="receipt-section"><h3>Student Information</h3><table>{student_rows}</table></div>'
        f'<div class="receipt-section"><table><tr class="total-row"><th>Amount Paid</th>'
        f"<td>{format_naira(record.amount)}</td></tr></table></div>"
    )
    return _page(f"Payment Receipt - {record.receipt_number}", body)


def render_bulk_receipt(
    items: Sequence[Tuple[PaymentRecord, Student]],
    school_name: str,
) -> str:
    """One receipt for a reference that paid for several students."""
    if not items:
        raise ValueError("A bulk receipt needs at least one payment")
    first, _ = items[0]
    total = sum(record.amount for record, _ in items)
    lines = "".join(
        f"<tr><td>{i}</td><td>{escape(student.name)}</td><td>{escape(student.class_name)}</td>"
        f"<td>{format_naira(record.amount)}</td></tr>"
        for i, (record, student) in enumerate(items, start=1)
    )
    summary = _rows(
        [
            ("Date", first.created_at.strftime("%d/%m/%Y %H:%M:%S")),
            ("Payment Method", first.payment_method),
            ("Status", first.status.capitalize()),
            ("Session", first.session),
            ("Term", first.term),
        ]
    )
    body = (
        f'<div class="receipt-header"><h1>{escape(school_name)}</h1><h2>Bulk Payment Receipt</h2>'
        f"<p><strong>Transaction ID:</strong> {escape(first.transaction_id)}</p></div>"
        f'<div class="receipt-section"><h3>Payment Summary</h3><table>{summary}</table></div>'
        '<div class="receipt-section"><h3>Students Paid For</h3><table>'
        "<tr><th>#</th><th>Student Name</th><th>Class</th><th>Amount</th></tr>"
        f'{lines}<tr class="total-row"><td colspan="3">Total Amount</td><td>{format_naira(total)}</td></tr>'
        "</table></div>"
    )
    return _page(f"Bulk Payment Receipt - {first.transaction_id}", body)
