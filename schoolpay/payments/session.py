"""
Payment session state machine.

    initial -> reference_issued -> awaiting_widget_outcome -> verifying -> complete
                                                                   |
                          (failed / timeout / exhausted retries) --+--> initial

Any state except ``complete`` can move to ``abandoned``. A session owns at
most one automatic verification task; manual verification shares the same
probe lock, so a confirmed reference reaches the ledger once.
"""

import asyncio
import contextlib
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from schoolpay.core.enums import PaymentSessionState, WidgetOutcome
from schoolpay.core.exceptions import (
    GatewayError,
    InvalidTransition,
    PaymentError,
    PaymentRejected,
    ServiceError,
    ValidationError,
    VerificationError,
    VerificationTimeout,
    WidgetCancelled,
    WidgetFailed,
)
from schoolpay.core.models import PaymentRecord

from .gateway import RemitaGateway, validate_amount
from .ledger import LedgerReconciler
from .types import Allocation, Payer, PaymentReference, VerificationOutcome

logger = logging.getLogger(__name__)

S = PaymentSessionState


@dataclass
class SessionError:
    """Last user-facing error of a session."""

    kind: str
    message: str
    correlation_id: Optional[str] = None

    @classmethod
    def from_exc(cls, exc: PaymentError) -> "SessionError":
        return cls(kind=type(exc).__name__, message=exc.message, correlation_id=exc.correlation_id)


@dataclass
class WidgetInvocation:
    id: int
    config: Dict[str, Any]
    outcome: Optional[WidgetOutcome] = None


class PaymentSession:
    """One payment attempt for one or more students, from reference request to ledger update."""

    def __init__(
        self,
        gateway: RemitaGateway,
        reconciler: LedgerReconciler,
        allocations: Sequence[Allocation],
        payer: Payer,
        *,
        description: Optional[str] = None,
        widget_public_key: Optional[str] = None,
        widget_script_url: Optional[str] = None,
        pending_delay: float = 5.0,
        error_delay: float = 3.0,
        max_transport_errors: int = 3,
        ceiling: float = 120.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        session_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> None:
        if not allocations:
            raise ValidationError("At least one student is required for a payment")
        self.id = session_id or uuid.uuid4().hex
        self.owner_id = owner_id
        self.allocations: List[Allocation] = list(allocations)
        self.payer = payer
        self.description = description or self._default_description()
        self.widget_public_key = widget_public_key
        self.widget_script_url = widget_script_url
        self.pending_delay = pending_delay
        self.error_delay = error_delay
        self.max_transport_errors = max_transport_errors
        self.ceiling = ceiling

        self.state: PaymentSessionState = S.INITIAL
        self.reference: Optional[PaymentReference] = None
        self.verification_attempts = 0
        self.last_error: Optional[SessionError] = None
        self.records: List[PaymentRecord] = []
        self.widget: Optional[WidgetInvocation] = None
        self.created_at = datetime.now(timezone.utc)

        self._gateway = gateway
        self._reconciler = reconciler
        self._sleep = sleep
        self._clock = clock
        self._widget_ids = itertools.count(1)
        self._generate_lock = asyncio.Lock()
        self._probe_lock = asyncio.Lock()
        self._verification_task: Optional[asyncio.Task] = None
        self._verifying_since: Optional[float] = None
        self._listeners: List[Callable[["PaymentSession"], None]] = []

    # --- properties ---
    @property
    def is_bulk(self) -> bool:
        return len(self.allocations) > 1

    @property
    def total_amount(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0"))

    @property
    def verification_active(self) -> bool:
        return self._verification_task is not None and not self._verification_task.done()

    def _default_description(self) -> str:
        if len(self.allocations) == 1:
            a = self.allocations[0]
            return f"School fees payment for {a.student_name}, Class: {a.class_name}, Term: {a.term}"
        names = ", ".join(a.student_name.split(" ")[0] for a in self.allocations)
        return f"School fees payment for {len(self.allocations)} students: {names}"

    # --- bookkeeping ---
    def add_listener(self, listener: Callable[["PaymentSession"], None]) -> None:
        """Called after every state change."""
        self._listeners.append(listener)

    def _transition(self, new_state: PaymentSessionState) -> None:
        logger.info("Payment session %s: %s -> %s", self.id, self.state.value, new_state.value)
        self.state = new_state
        for listener in self._listeners:
            listener(self)

    def _record_error(self, exc: PaymentError) -> None:
        self.last_error = SessionError.from_exc(exc)
        logger.warning("Payment session %s: %s: %s", self.id, self.last_error.kind, exc.message)

    def _require(self, action: str, *states: PaymentSessionState) -> None:
        if self.state not in states:
            raise InvalidTransition(f"Cannot {action} while the payment is {self.state.value}")

    def _revert_to_initial(self, exc: PaymentError, discard_reference: bool) -> None:
        self._record_error(exc)
        if discard_reference:
            self.reference = None
            self.widget = None
        self._transition(S.INITIAL)

    def _validate_amount(self, amount: Decimal) -> Decimal:
        amount = validate_amount(amount)
        if self.is_bulk:
            if amount != self.total_amount:
                raise ValidationError(
                    f"Bulk payments cover the full outstanding balance of ₦{self.total_amount:,}"
                )
            return amount
        outstanding = self.allocations[0].outstanding
        if amount > outstanding:
            raise ValidationError(f"Amount cannot exceed the remaining balance of ₦{outstanding:,}")
        return amount

    # --- reference ---
    async def generate(self, amount: Optional[Decimal] = None) -> PaymentSessionState:
        """Request a reference. Validation and gateway errors are recorded and leave the session in initial."""
        async with self._generate_lock:
            self._require("generate a payment reference", S.INITIAL)
            self.last_error = None
            try:
                amount = self._validate_amount(self.total_amount if amount is None else amount)
                reference = await self._gateway.generate_reference(
                    amount,
                    self.payer.name,
                    self.payer.email,
                    self.payer.phone,
                    self.description,
                    custom_fields=[
                        {
                            "name": "Student ID",
                            "value": ",".join(str(a.student_id) for a in self.allocations),
                            "type": "ALL",
                        }
                    ],
                )
            except (ValidationError, GatewayError) as exc:
                self._record_error(exc)
                return self.state

            if not self.is_bulk:
                self.allocations = [replace(self.allocations[0], amount=reference.amount)]
            self.reference = reference
            self.verification_attempts = 0
            self.widget = None
            self._transition(S.REFERENCE_ISSUED)
            return self.state

    # --- widget ---
    def launch_widget(self) -> WidgetInvocation:
        self._require("open the payment widget", S.REFERENCE_ISSUED)
        invocation = WidgetInvocation(
            id=next(self._widget_ids),
            config={
                "key": self.widget_public_key,
                "processRrr": True,
                "transactionId": self.reference.order_id,
                "extendedData": {"customFields": [{"name": "rrr", "value": self.reference.rrr}]},
                "scriptUrl": self.widget_script_url,
            },
        )
        self.widget = invocation
        self.last_error = None
        self._transition(S.AWAITING_WIDGET_OUTCOME)
        return invocation

    def _claim_widget_outcome(self, invocation_id: int, outcome: WidgetOutcome) -> bool:
        """First callback for the current invocation wins; anything else is ignored."""
        current = self.widget
        if (
            self.state != S.AWAITING_WIDGET_OUTCOME
            or current is None
            or current.id != invocation_id
            or current.outcome is not None
        ):
            logger.warning(
                "Payment session %s: ignoring widget %s for invocation %s in state %s",
                self.id,
                outcome.value,
                invocation_id,
                self.state.value,
            )
            return False
        current.outcome = outcome
        return True

    def on_widget_success(self, invocation_id: int, payload: Optional[Dict[str, Any]] = None) -> bool:
        if not self._claim_widget_outcome(invocation_id, WidgetOutcome.SUCCESS):
            return False
        logger.info("Payment session %s: widget reported success for rrr=%s", self.id, self.reference.rrr)
        self._transition(S.VERIFYING)
        self._start_verification()
        return True

    def on_widget_error(self, invocation_id: int, payload: Optional[Dict[str, Any]] = None) -> bool:
        if not self._claim_widget_outcome(invocation_id, WidgetOutcome.ERROR):
            return False
        message = (payload or {}).get("message") or "Payment failed. Please try again."
        self._record_error(WidgetFailed(message, correlation_id=self.reference.rrr))
        self._transition(S.REFERENCE_ISSUED)
        return True

    def on_widget_closed(self, invocation_id: int) -> bool:
        if not self._claim_widget_outcome(invocation_id, WidgetOutcome.CLOSE):
            return False
        self._record_error(
            WidgetCancelled("Payment window was closed before completion", correlation_id=self.reference.rrr)
        )
        self._transition(S.REFERENCE_ISSUED)
        return True

    # --- verification ---
    def _start_verification(self) -> None:
        if self.verification_active:
            return
        self._verifying_since = self._clock()
        self._verification_task = asyncio.create_task(
            self._run_verification(), name=f"payment-verification-{self.id}"
        )

    async def _probe(self) -> VerificationOutcome:
        self.verification_attempts += 1
        return await self._gateway.verify(self.reference)

    async def _settle(self, outcome: VerificationOutcome) -> None:
        """Apply a final (confirmed or failed) outcome. Caller holds the probe lock."""
        rrr = self.reference.rrr
        if not outcome.confirmed:
            self._revert_to_initial(
                PaymentRejected(f"Payment verification failed: {outcome.message}", correlation_id=rrr),
                discard_reference=True,
            )
            return
        try:
            # Shielded so that discarding the session cannot interrupt a ledger write.
            self.records = await asyncio.shield(
                self._reconciler.apply_allocations(
                    self.allocations,
                    self.reference,
                    settled_amount=outcome.amount,
                    payer_id=self.payer.payer_id,
                )
            )
        except (ServiceError, SQLAlchemyError) as exc:
            logger.exception("Payment session %s: ledger update failed for rrr=%s", self.id, rrr)
            message = getattr(exc, "message", None) or "Payment confirmed but the ledger update failed"
            self._revert_to_initial(
                VerificationError(f"{message}. Verify again to retry.", correlation_id=rrr),
                discard_reference=False,
            )
            return
        self.last_error = None
        self._transition(S.COMPLETE)

    async def _run_verification(self) -> None:
        transport_errors = 0
        try:
            while self.state == S.VERIFYING:
                async with self._probe_lock:
                    if self.state != S.VERIFYING:
                        return
                    try:
                        outcome = await self._probe()
                    except VerificationError as exc:
                        transport_errors += 1
                        if transport_errors >= self.max_transport_errors:
                            self._revert_to_initial(
                                VerificationError(
                                    f"Error verifying payment: {exc.message}. "
                                    "If you completed the payment, start a new verification.",
                                    correlation_id=exc.correlation_id,
                                ),
                                discard_reference=True,
                            )
                            return
                        logger.warning(
                            "Payment session %s: transport error %d/%d, retrying in %ss",
                            self.id,
                            transport_errors,
                            self.max_transport_errors,
                            self.error_delay,
                        )
                        delay = self.error_delay
                    else:
                        transport_errors = 0
                        if not outcome.pending:
                            await self._settle(outcome)
                            return
                        delay = self.pending_delay

                    if self._clock() - self._verifying_since >= self.ceiling:
                        self._revert_to_initial(
                            VerificationTimeout(
                                "Payment verification timeout. If you completed the payment, "
                                "use Verify Payment to check the status again.",
                                correlation_id=self.reference.rrr,
                            ),
                            discard_reference=False,
                        )
                        return
                await self._sleep(delay)
        except asyncio.CancelledError:
            logger.info("Payment session %s: verification loop cancelled", self.id)
            raise

    async def verify_now(self) -> PaymentSessionState:
        """One manual probe. Applies the same outcome rules as the automatic loop."""
        if self.reference is None:
            raise InvalidTransition("No payment reference to verify")
        self._require(
            "verify the payment",
            S.INITIAL,
            S.REFERENCE_ISSUED,
            S.AWAITING_WIDGET_OUTCOME,
            S.VERIFYING,
        )
        async with self._probe_lock:
            if self.state in (S.COMPLETE, S.ABANDONED) or self.reference is None:
                return self.state
            try:
                outcome = await self._probe()
            except VerificationError as exc:
                self._record_error(exc)
                return self.state
            if outcome.pending:
                self.last_error = SessionError(
                    kind="PaymentPending",
                    message="Payment is still pending. Please wait a moment and try verifying again.",
                    correlation_id=self.reference.rrr,
                )
                return self.state
            await self._settle(outcome)
            return self.state

    async def wait_for_verification(self) -> None:
        task = self._verification_task
        if task is not None:
            await asyncio.wait({task})

    # --- teardown ---
    async def abandon(self) -> None:
        if self.state == S.COMPLETE:
            raise InvalidTransition("A completed payment cannot be abandoned")
        if self.state != S.ABANDONED:
            self._transition(S.ABANDONED)
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the verification loop, if any, and wait for it to finish."""
        task = self._verification_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
