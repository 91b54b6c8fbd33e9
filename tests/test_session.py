import asyncio
from decimal import Decimal
from typing import List

import pytest
from sqlalchemy import select

from schoolpay.core.enums import PaymentSessionState
from schoolpay.core.exceptions import InvalidTransition, ServiceError, ValidationError
from schoolpay.core.models import PaymentRecord, Student
from schoolpay.payments.session import PaymentSession
from schoolpay.payments.types import Allocation, Payer

S = PaymentSessionState

PENDING = {"status": "021", "message": "Transaction Pending"}
CONFIRMED = {"status": "00", "message": "Successful", "amount": "120000"}
TRANSPORT_DOWN = ConnectionError("connection reset")


def _allocation(student: Student) -> Allocation:
    outstanding = Decimal(str(student.total_fees)) - Decimal(str(student.amount_paid))
    return Allocation(
        student_id=student.id,
        student_name=student.name,
        class_name=student.class_name,
        session=student.session,
        term=student.term,
        amount=outstanding,
        outstanding=outstanding,
    )


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture()
async def student(make_student) -> Student:
    return await make_student(total_fees=120000)


@pytest.fixture()
def open_session(gateway, reconciler, fake_clock):
    def _open(*students: Student, reconciler_override=None, **kwargs) -> PaymentSession:
        options = dict(
            widget_public_key="pk_test_key",
            widget_script_url="https://demo.remita.net/payment/v1/remita-pay-inline.bundle.js",
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )
        options.update(kwargs)
        return PaymentSession(
            gateway,
            reconciler_override or reconciler,
            [_allocation(s) for s in students],
            Payer(name="Ngozi Okafor", payer_id="parent-1"),
            **options,
        )

    return _open


async def _to_verifying(session: PaymentSession, amount=None) -> None:
    await session.generate(amount)
    invocation = session.launch_widget()
    assert session.on_widget_success(invocation.id)
    assert session.state == S.VERIFYING


async def _records(session_factory, student_id) -> List[PaymentRecord]:
    async with session_factory() as db:
        result = await db.execute(select(PaymentRecord).where(PaymentRecord.student_id == student_id))
        return list(result.scalars().all())


async def test_full_payment_completes_and_updates_ledger(
    open_session, student, fake_remita, session_factory
) -> None:
    fake_remita.next_rrrs = ["RRR123"]
    fake_remita.reply_status(CONFIRMED)
    session = open_session(student)

    assert await session.generate(Decimal("120000")) == S.REFERENCE_ISSUED
    assert session.reference.rrr == "RRR123"

    invocation = session.launch_widget()
    assert session.state == S.AWAITING_WIDGET_OUTCOME
    assert invocation.config["transactionId"] == session.reference.order_id
    assert invocation.config["extendedData"]["customFields"] == [{"name": "rrr", "value": "RRR123"}]

    assert session.on_widget_success(invocation.id)
    await session.wait_for_verification()

    assert session.state == S.COMPLETE
    assert session.last_error is None
    records = await _records(session_factory, student.id)
    assert len(records) == 1
    assert records[0].amount == Decimal("120000")
    assert records[0].status == "completed"
    assert [r.id for r in session.records] == [records[0].id]
    async with session_factory() as db:
        refreshed = await db.get(Student, student.id)
    assert refreshed.amount_paid == Decimal("120000")
    assert refreshed.payment_status == "paid"


async def test_pending_responses_are_retried_five_seconds_apart(
    open_session, student, fake_remita, fake_clock
) -> None:
    fake_remita.reply_status(PENDING, PENDING, PENDING, CONFIRMED)
    seen_states = []
    session = None

    async def observing_sleep(delay: float) -> None:
        seen_states.append(session.state)
        await fake_clock.sleep(delay)

    session = open_session(student, sleep=observing_sleep)
    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.COMPLETE
    assert len(fake_remita.status_requests) == 4
    assert session.verification_attempts == 4
    assert fake_clock.sleeps == [5.0, 5.0, 5.0]
    assert seen_states == [S.VERIFYING] * 3


async def test_verification_times_out_after_ceiling(open_session, student, fake_remita, fake_clock) -> None:
    fake_remita.reply_status(PENDING)
    session = open_session(student)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.INITIAL
    assert session.last_error.kind == "VerificationTimeout"
    assert session.reference is not None
    assert fake_clock.now == 120.0
    assert set(fake_clock.sleeps) == {5.0}
    # Probes at 0, 5, ..., 120 seconds.
    assert len(fake_remita.status_requests) == 25
    assert fake_remita.max_in_flight == 1


async def test_manual_verify_after_timeout_completes(
    open_session, student, fake_remita, session_factory
) -> None:
    fake_remita.reply_status(PENDING)
    session = open_session(student)
    await _to_verifying(session)
    await session.wait_for_verification()
    assert session.state == S.INITIAL

    fake_remita.reply_status(CONFIRMED)
    assert await session.verify_now() == S.COMPLETE
    assert len(await _records(session_factory, student.id)) == 1


async def test_widget_error_keeps_reference(open_session, student, fake_remita) -> None:
    session = open_session(student)
    await session.generate()
    reference = session.reference
    invocation = session.launch_widget()

    assert session.on_widget_error(invocation.id, {"message": "Card declined"})

    assert session.state == S.REFERENCE_ISSUED
    assert session.reference is reference
    assert session.last_error.kind == "WidgetFailed"
    assert session.last_error.message == "Card declined"
    assert len(fake_remita.reference_requests) == 1

    retry = session.launch_widget()
    assert retry.id != invocation.id
    assert retry.config["processRrr"] is True
    assert session.state == S.AWAITING_WIDGET_OUTCOME


async def test_widget_close_returns_to_reference_issued(open_session, student) -> None:
    session = open_session(student)
    await session.generate()
    invocation = session.launch_widget()

    assert session.on_widget_closed(invocation.id)

    assert session.state == S.REFERENCE_ISSUED
    assert session.last_error.kind == "WidgetCancelled"


async def test_only_first_widget_callback_counts(open_session, student, fake_remita) -> None:
    fake_remita.reply_status(CONFIRMED)
    session = open_session(student)
    await session.generate()
    invocation = session.launch_widget()

    assert session.on_widget_success(invocation.id)
    assert not session.on_widget_success(invocation.id)
    assert not session.on_widget_error(invocation.id)
    assert not session.on_widget_closed(invocation.id)
    await session.wait_for_verification()

    assert session.state == S.COMPLETE
    assert len(fake_remita.status_requests) == 1


async def test_callback_for_stale_invocation_is_ignored(open_session, student) -> None:
    session = open_session(student)
    await session.generate()
    first = session.launch_widget()
    session.on_widget_closed(first.id)
    second = session.launch_widget()

    assert not session.on_widget_success(first.id)
    assert session.state == S.AWAITING_WIDGET_OUTCOME
    assert session.widget.id == second.id


async def test_three_transport_errors_discard_reference(open_session, student, fake_remita, fake_clock) -> None:
    fake_remita.reply_status(TRANSPORT_DOWN)
    session = open_session(student)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.INITIAL
    assert session.reference is None
    assert session.last_error.kind == "VerificationError"
    assert "start a new verification" in session.last_error.message
    assert len(fake_remita.status_requests) == 3
    assert fake_clock.sleeps == [3.0, 3.0]


async def test_transport_error_counter_resets_after_an_answer(
    open_session, student, fake_remita, fake_clock
) -> None:
    fake_remita.reply_status(TRANSPORT_DOWN, TRANSPORT_DOWN, PENDING, TRANSPORT_DOWN, TRANSPORT_DOWN, CONFIRMED)
    session = open_session(student)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.COMPLETE
    assert fake_clock.sleeps == [3.0, 3.0, 5.0, 3.0, 3.0]


async def test_failed_status_rejects_and_discards_reference(open_session, student, fake_remita) -> None:
    fake_remita.reply_status({"status": "023", "message": "Invalid RRR"})
    session = open_session(student)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.INITIAL
    assert session.reference is None
    assert session.last_error.kind == "PaymentRejected"
    assert "Invalid RRR" in session.last_error.message

    # A fresh reference can be requested afterwards.
    assert await session.generate() == S.REFERENCE_ISSUED
    assert len(fake_remita.reference_requests) == 2


async def test_manual_verify_and_loop_reconcile_once(
    open_session, student, fake_remita, session_factory
) -> None:
    fake_remita.reply_status(CONFIRMED)
    session = open_session(student)
    await _to_verifying(session)

    await asyncio.gather(session.verify_now(), session.wait_for_verification())

    assert session.state == S.COMPLETE
    assert len(fake_remita.status_requests) == 1
    assert len(await _records(session_factory, student.id)) == 1
    async with session_factory() as db:
        assert (await db.get(Student, student.id)).amount_paid == Decimal("120000")


async def test_manual_verify_while_pending_keeps_state(open_session, student, fake_remita) -> None:
    fake_remita.reply_status(PENDING)
    session = open_session(student)
    await session.generate()

    assert await session.verify_now() == S.REFERENCE_ISSUED
    assert session.last_error.kind == "PaymentPending"


async def test_manual_verify_transport_error_keeps_reference(open_session, student, fake_remita) -> None:
    fake_remita.reply_status(TRANSPORT_DOWN)
    session = open_session(student)
    await session.generate()

    assert await session.verify_now() == S.REFERENCE_ISSUED
    assert session.reference is not None
    assert session.last_error.kind == "VerificationError"


async def test_verify_without_reference_is_rejected(open_session, student) -> None:
    session = open_session(student)

    with pytest.raises(InvalidTransition):
        await session.verify_now()


async def test_abandon_stops_verification_loop(open_session, student, fake_remita) -> None:
    fake_remita.reply_status(PENDING)
    parked = asyncio.Event()

    async def parked_sleep(delay: float) -> None:
        parked.set()
        await asyncio.Event().wait()

    session = open_session(student, sleep=parked_sleep)
    await _to_verifying(session)
    await asyncio.wait_for(parked.wait(), timeout=1)

    await session.abandon()

    assert session.state == S.ABANDONED
    assert not session.verification_active
    assert len(fake_remita.status_requests) == 1
    with pytest.raises(InvalidTransition):
        session.launch_widget()


async def test_completed_session_cannot_be_abandoned(open_session, student, fake_remita) -> None:
    fake_remita.reply_status(CONFIRMED)
    session = open_session(student)
    await _to_verifying(session)
    await session.wait_for_verification()

    with pytest.raises(InvalidTransition):
        await session.abandon()
    assert session.state == S.COMPLETE


@pytest.mark.parametrize("amount", ["0", "-500", "120000.01", "0.001", "99.999"])
async def test_invalid_amount_stays_initial_without_network(open_session, student, fake_remita, amount) -> None:
    session = open_session(student)

    assert await session.generate(Decimal(amount)) == S.INITIAL

    assert session.last_error.kind == "ValidationError"
    assert fake_remita.reference_requests == []


async def test_partial_amount_becomes_the_allocation(open_session, student, fake_remita) -> None:
    session = open_session(student)

    await session.generate(Decimal("50000"))

    assert session.allocations[0].amount == Decimal("50000")
    assert fake_remita.last_reference_body["amount"] == "50000"


async def test_gateway_failure_stays_initial(open_session, student, fake_remita) -> None:
    fake_remita.reference_reply = {"statuscode": "012", "statusMessage": "Invalid Merchant"}
    session = open_session(student)

    assert await session.generate() == S.INITIAL
    assert session.last_error.kind == "GatewayError"
    assert session.reference is None


async def test_concurrent_generate_issues_one_reference(open_session, student, fake_remita) -> None:
    session = open_session(student)

    results = await asyncio.gather(session.generate(), session.generate(), return_exceptions=True)

    assert S.REFERENCE_ISSUED in results
    assert any(isinstance(r, InvalidTransition) for r in results)
    assert len(fake_remita.reference_requests) == 1


async def test_bulk_session_requires_full_total(open_session, make_student, fake_remita) -> None:
    a = await make_student(name="Adaeze Okafor", total_fees=150000)
    b = await make_student(name="Chinedu Okafor", total_fees=175000)
    session = open_session(a, b)

    assert session.is_bulk
    assert session.total_amount == Decimal("325000")
    assert await session.generate(Decimal("300000")) == S.INITIAL
    assert session.last_error.kind == "ValidationError"

    assert await session.generate() == S.REFERENCE_ISSUED
    assert fake_remita.last_reference_body["amount"] == "325000"
    assert fake_remita.last_reference_body["description"] == "School fees payment for 2 students: Adaeze, Chinedu"


async def test_bulk_session_credits_every_student(open_session, make_student, fake_remita, session_factory) -> None:
    a = await make_student(name="Adaeze Okafor", total_fees=150000)
    b = await make_student(name="Chinedu Okafor", total_fees=175000, amount_paid=75000, payment_status="partial")
    fake_remita.reply_status({"status": "00", "amount": "250000"})
    session = open_session(a, b)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.COMPLETE
    assert {r.transaction_id for r in session.records} == {session.reference.rrr}
    async with session_factory() as db:
        assert (await db.get(Student, a.id)).payment_status == "paid"
        assert (await db.get(Student, b.id)).amount_paid == Decimal("175000")


async def test_ledger_failure_keeps_reference_for_retry(open_session, student, fake_remita, reconciler) -> None:
    class FlakyReconciler:
        def __init__(self) -> None:
            self.calls = 0

        async def apply_allocations(self, *args, **kwargs):
            self.calls += 1
            if self.calls == 1:
                raise ServiceError("Database unavailable", 503)
            return await reconciler.apply_allocations(*args, **kwargs)

    flaky = FlakyReconciler()
    fake_remita.reply_status(CONFIRMED)
    session = open_session(student, reconciler_override=flaky)

    await _to_verifying(session)
    await session.wait_for_verification()

    assert session.state == S.INITIAL
    assert session.reference is not None
    assert session.last_error.kind == "VerificationError"

    assert await session.verify_now() == S.COMPLETE
    assert flaky.calls == 2


def test_session_needs_at_least_one_student(gateway, reconciler) -> None:
    with pytest.raises(ValidationError):
        PaymentSession(gateway, reconciler, [], Payer(name="Nobody"))
