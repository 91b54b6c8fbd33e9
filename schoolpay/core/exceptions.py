from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PaymentError(ServiceError):
    """Base for payment lifecycle errors. Carries a correlation id when one exists."""

    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, correlation_id: Optional[str] = None) -> None:
        super().__init__(message, self.default_status)
        self.correlation_id = correlation_id


class ValidationError(PaymentError):
    """Caller-fixable input problem (e.g. bad amount). Never reaches the network."""

    default_status = status.HTTP_400_BAD_REQUEST


class GatewayError(PaymentError):
    """Transport failure or malformed response while issuing a reference."""

    default_status = status.HTTP_502_BAD_GATEWAY


class SignatureUnavailable(GatewayError):
    """SHA-512 is not available in this interpreter; requests cannot be signed."""


class VerificationError(PaymentError):
    """Transport failure during a status probe."""

    default_status = status.HTTP_502_BAD_GATEWAY


class PaymentRejected(PaymentError):
    """Gateway explicitly reported the payment as failed."""

    default_status = status.HTTP_402_PAYMENT_REQUIRED


class VerificationTimeout(PaymentError):
    """No final status arrived before the polling ceiling."""

    default_status = status.HTTP_504_GATEWAY_TIMEOUT


class WidgetCancelled(PaymentError):
    """Payment widget closed without reporting an outcome."""

    default_status = status.HTTP_409_CONFLICT


class InvalidTransition(PaymentError):
    """Operation not allowed in the session's current state."""

    default_status = status.HTTP_409_CONFLICT


class WidgetFailed(PaymentError):
    """Payment widget reported an error for the current attempt."""

    default_status = status.HTTP_402_PAYMENT_REQUIRED
