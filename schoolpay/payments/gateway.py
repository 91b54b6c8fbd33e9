"""
Remita gateway client: reference (RRR) issuance and payment status checks.

Both calls are single attempts with a bounded network timeout. Retry
policy belongs to the payment session, which decides whether a new
reference may be requested for the same payment intent.
"""

import itertools
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from schoolpay.core.config import Settings
from schoolpay.core.enums import VerificationStatus
from schoolpay.core.exceptions import GatewayError, SignatureUnavailable, ValidationError, VerificationError

from .signer import reference_request_hash, status_check_hash
from .types import PaymentReference, VerificationOutcome

logger = logging.getLogger(__name__)

REFERENCE_PATH = "/remita/exapp/api/v1/send/api/echannelsvc/merchant/api/paymentinit"
STATUS_PATH = "/remita/exapp/api/v1/send/api/echannelsvc/{merchant_id}/{rrr}/{api_hash}/status.reg"

SUCCESS_CODES = frozenset({"00", "01"})
PENDING_CODE = "021"

STATUS_TEXT = {
    "00": "Payment Successful",
    "01": "Payment Successful",
    "021": "Transaction Pending",
    "023": "Invalid RRR",
}

_order_sequence = itertools.count(1)


def status_text(code: Optional[str]) -> str:
    return STATUS_TEXT.get(code or "", "Unknown Status")


def new_order_id() -> str:
    """SCH_<epoch ms>_<sequence><random>. The sequence keeps ids distinct within the process."""
    return f"SCH_{int(time.time() * 1000)}_{next(_order_sequence):06d}{secrets.token_hex(3)}"


def _error_correlation_id() -> str:
    return f"ERR_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def format_amount(amount: Decimal) -> str:
    """Gateway amount string: whole numbers without decimals, otherwise two places."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.quantize(Decimal("0.01")))


def validate_amount(amount: Any) -> Decimal:
    """
    Amount as the gateway will be charged. Raises ValidationError for anything
    that is not a positive figure in whole kobo (at most two decimal places).
    """
    value = _to_decimal(amount)
    if value is None or not value.is_finite():
        raise ValidationError("Amount must be a number")
    if value != value.quantize(Decimal("0.01")):
        raise ValidationError("Amount cannot have more than two decimal places")
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return value


def _to_decimal(val: Any) -> Optional[Decimal]:
    if val is None or val == "":
        return None
    try:
        return Decimal(str(val))
    except InvalidOperation:
        return None


def parse_gateway_body(body: str) -> Optional[Dict[str, Any]]:
    """
    Parse a gateway response body.

    Remita answers either with plain JSON or with a padded variant such as
    ``jsonp ({...})``. If direct parsing fails, everything before the first
    ``{`` and after the last ``}`` is stripped and parsing is retried.
    """
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(body[start : end + 1])
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


class RemitaGateway:
    """Thin async client for the two Remita calls used by a payment session."""

    def __init__(
        self,
        *,
        base_url: str,
        merchant_id: str,
        service_type_id: str,
        api_key: str,
        timeout: float = 30.0,
        default_payer_email: str = "student@schoolpay.com",
        default_payer_phone: str = "08012345678",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.merchant_id = merchant_id
        self.service_type_id = service_type_id
        self._api_key = api_key
        self.timeout = timeout
        self.default_payer_email = default_payer_email
        self.default_payer_phone = default_payer_phone
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "RemitaGateway":
        return cls(
            base_url=settings.remita_base_url,
            merchant_id=settings.remita_merchant_id,
            service_type_id=settings.remita_service_type_id,
            api_key=settings.remita_api_key,
            timeout=settings.remita_timeout_seconds,
            default_payer_email=settings.default_payer_email,
            default_payer_phone=settings.default_payer_phone,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def _headers(self, api_hash: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"remitaConsumerKey={self.merchant_id},remitaConsumerToken={api_hash}",
        }

    async def generate_reference(
        self,
        amount: Decimal,
        payer_name: str,
        payer_email: Optional[str],
        payer_phone: Optional[str],
        description: str,
        custom_fields: Optional[List[Dict[str, str]]] = None,
    ) -> PaymentReference:
        """Request a new RRR. Raises ValidationError before any I/O for an amount that cannot be charged."""
        amount_str = format_amount(validate_amount(amount))
        order_id = new_order_id()
        api_hash = reference_request_hash(
            self.merchant_id, self.service_type_id, order_id, amount_str, self._api_key
        )
        body = {
            "serviceTypeId": self.service_type_id,
            "amount": amount_str,
            "orderId": order_id,
            "payerName": payer_name,
            "payerEmail": payer_email or self.default_payer_email,
            "payerPhone": payer_phone or self.default_payer_phone,
            "description": description,
            "customFields": custom_fields or [],
        }

        logger.info("Requesting payment reference order_id=%s amount=%s", order_id, amount_str)
        try:
            async with self._client() as client:
                response = await client.post(REFERENCE_PATH, json=body, headers=self._headers(api_hash))
        except httpx.HTTPError as exc:
            correlation_id = _error_correlation_id()
            logger.error(
                "Reference request failed order_id=%s correlation_id=%s: %s", order_id, correlation_id, exc
            )
            raise GatewayError(
                f"Failed to connect to payment gateway: {exc}", correlation_id=correlation_id
            ) from exc

        data = parse_gateway_body(response.text)
        rrr = data.get("RRR") if data else None
        if not rrr:
            message = (data or {}).get("statusMessage") or "Failed to generate RRR"
            logger.error(
                "Gateway did not issue a reference order_id=%s http_status=%s message=%s",
                order_id,
                response.status_code,
                message,
            )
            raise GatewayError(message, correlation_id=order_id)

        reference = PaymentReference(
            rrr=str(rrr).strip(),
            amount=Decimal(amount_str),
            order_id=order_id,
            issued_at=datetime.now(timezone.utc),
            status_code=str(data.get("statuscode") or "00"),
            message=data.get("statusMessage") or "RRR generated successfully",
        )
        logger.info("Reference issued order_id=%s rrr=%s", order_id, reference.rrr)
        return reference

    async def verify(self, reference: PaymentReference) -> VerificationOutcome:
        """
        Probe the gateway once for the status of ``reference``.

        Transport problems raise VerificationError; every answer the gateway
        gives, including ones that cannot be parsed, becomes an outcome.
        """
        rrr = reference.rrr
        try:
            api_hash = status_check_hash(rrr, self._api_key, self.merchant_id)
        except SignatureUnavailable as exc:
            raise VerificationError(exc.message, correlation_id=rrr) from exc
        path = STATUS_PATH.format(merchant_id=self.merchant_id, rrr=rrr, api_hash=api_hash)

        try:
            async with self._client() as client:
                response = await client.get(path, headers=self._headers(api_hash))
        except httpx.HTTPError as exc:
            logger.warning("Status check transport error rrr=%s: %s", rrr, exc)
            raise VerificationError(f"Failed to verify payment: {exc}", correlation_id=rrr) from exc

        data = parse_gateway_body(response.text)
        if data is None:
            logger.warning("Unparseable status response rrr=%s http_status=%s", rrr, response.status_code)
            return VerificationOutcome(
                status=VerificationStatus.FAILED,
                code="error",
                message="Invalid response from verification server",
            )

        code = str(data.get("status") or data.get("statuscode") or "unknown")
        if code in SUCCESS_CODES:
            status = VerificationStatus.CONFIRMED
        elif code == PENDING_CODE:
            status = VerificationStatus.PENDING
        else:
            status = VerificationStatus.FAILED
        message = data.get("statusMessage") or data.get("message") or status_text(code)

        logger.info("Status check rrr=%s code=%s outcome=%s", rrr, code, status.value)
        return VerificationOutcome(
            status=status,
            code=code,
            message=message,
            amount=_to_decimal(data.get("amount")),
            payment_date=data.get("paymentDate"),
            raw=data,
        )
