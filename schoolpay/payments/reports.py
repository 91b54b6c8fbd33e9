"""Payment report exports (CSV and XLSX)."""

import csv
import io
from typing import List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font

from schoolpay.core.models import PaymentRecord, Student

REPORT_HEADERS = (
    "Transaction ID",
    "Student Name",
    "Class",
    "Session",
    "Term",
    "Amount",
    "Payment Method",
    "Status",
    "Date",
    "Payer ID",
)


def _report_rows(items: Sequence[Tuple[PaymentRecord, Optional[Student]]]) -> List[list]:
    rows = []
    for record, student in items:
        rows.append(
            [
                record.transaction_id,
                student.name if student else "Unknown",
                student.class_name if student else "Unknown",
                record.session,
                record.term,
                record.amount,
                record.payment_method,
                record.status,
                record.created_at.date().isoformat(),
                record.payer_id or "",
            ]
        )
    return rows


def build_csv_report(items: Sequence[Tuple[PaymentRecord, Optional[Student]]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
    writer.writerow(REPORT_HEADERS)
    for row in _report_rows(items):
        writer.writerow([str(v) for v in row])
    return buffer.getvalue().encode("utf-8")


def build_xlsx_report(items: Sequence[Tuple[PaymentRecord, Optional[Student]]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Payments"
    ws.append(list(REPORT_HEADERS))
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in _report_rows(items):
        row[5] = float(row[5])
        ws.append(row)
    ws.freeze_panes = "A2"

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
