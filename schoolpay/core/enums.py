from enum import Enum


class UserRole(str, Enum):
    PARENT = "parent"
    STUDENT = "student"
    ADMIN = "admin"


class StudentFeeStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


class PaymentRecordStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class PaymentSessionState(str, Enum):
    INITIAL = "initial"
    REFERENCE_ISSUED = "reference_issued"
    AWAITING_WIDGET_OUTCOME = "awaiting_widget_outcome"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


class VerificationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


class WidgetOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CLOSE = "close"


class ReportFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
