from schoolpay.core.models.student import Student
from schoolpay.core.models.payment_record import PaymentRecord
