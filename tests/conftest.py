import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("REMITA_MERCHANT_ID", "2547916")
os.environ.setdefault("REMITA_SERVICE_TYPE_ID", "4430731")
os.environ.setdefault("REMITA_API_KEY", "1946")
os.environ.setdefault("REMITA_PUBLIC_KEY", "pk_test_key")

import asyncio  # noqa: E402
import json  # noqa: E402
import uuid  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Union  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from schoolpay.auth.security import create_access_token  # noqa: E402
from schoolpay.core import models  # noqa: E402,F401
from schoolpay.core.config import settings  # noqa: E402
from schoolpay.core.enums import UserRole  # noqa: E402
from schoolpay.core.models import Student  # noqa: E402
from schoolpay.db.session import Base, get_db  # noqa: E402
from schoolpay.main import create_app  # noqa: E402
from schoolpay.payments.gateway import RemitaGateway  # noqa: E402
from schoolpay.payments.ledger import LedgerReconciler  # noqa: E402
from schoolpay.payments.registry import PaymentRuntime  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite://"

StatusReply = Union[Dict[str, Any], str, Exception]


class FakeRemita:
    """
    In-process stand-in for the Remita endpoints, served through httpx.MockTransport.

    Status replies are consumed in order; the last one repeats. A reply may be a
    dict (sent as JSON), a raw string body, or an exception to raise as a
    transport failure.
    """

    def __init__(self) -> None:
        self.reference_requests: List[httpx.Request] = []
        self.status_requests: List[httpx.Request] = []
        self.next_rrrs: List[str] = []
        self.reference_reply: Optional[StatusReply] = None
        self.status_replies: List[StatusReply] = [{"status": "021", "message": "Transaction Pending"}]
        self.in_flight = 0
        self.max_in_flight = 0
        self._rrr_seq = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def last_reference_body(self) -> Dict[str, Any]:
        return json.loads(self.reference_requests[-1].content)

    def reply_status(self, *replies: StatusReply) -> None:
        self.status_replies = list(replies)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/paymentinit"):
            self.reference_requests.append(request)
            return self._respond(request, self.reference_reply or self._issue_rrr())

        self.status_requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            reply = self.status_replies.pop(0) if len(self.status_replies) > 1 else self.status_replies[0]
            return self._respond(request, reply)
        finally:
            self.in_flight -= 1

    def _issue_rrr(self) -> str:
        if self.next_rrrs:
            rrr = self.next_rrrs.pop(0)
        else:
            self._rrr_seq += 1
            rrr = f"2900{self._rrr_seq:08d}"
        payload = {"statuscode": "025", "RRR": rrr, "status": "Payment Reference generated"}
        # Remita wraps reference responses in a JSONP-style envelope.
        return f"jsonp ({json.dumps(payload)})"

    @staticmethod
    def _respond(request: httpx.Request, reply: StatusReply) -> httpx.Response:
        if isinstance(reply, Exception):
            raise httpx.ConnectError(str(reply), request=request)
        if isinstance(reply, dict):
            return httpx.Response(200, json=reply)
        return httpx.Response(200, text=reply)


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture()
async def engine() -> AsyncGenerator[Any, None]:
    """One in-memory SQLite database per test, shared by every session through StaticPool."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> Callable[[], AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_remita() -> FakeRemita:
    return FakeRemita()


@pytest.fixture()
def gateway(fake_remita: FakeRemita) -> RemitaGateway:
    return RemitaGateway.from_settings(settings, transport=fake_remita.transport())


@pytest.fixture()
def reconciler(session_factory) -> LedgerReconciler:
    return LedgerReconciler(session_factory)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def runtime(session_factory, gateway: RemitaGateway) -> AsyncGenerator[PaymentRuntime, None]:
    runtime = PaymentRuntime.build(settings, session_factory, gateway=gateway)
    yield runtime
    await runtime.registry.close_all()


@pytest.fixture()
async def client(runtime: PaymentRuntime, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a fresh app using the test database and fake gateway."""
    app = create_app(runtime=runtime)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_student(session_factory) -> Callable[..., Any]:
    async def _make(
        name: str = "Adaeze Okafor",
        total_fees: Union[int, str, Decimal] = 120000,
        amount_paid: Union[int, str, Decimal] = 0,
        parent_id: Optional[uuid.UUID] = None,
        class_name: str = "JSS 1",
        session: str = "2024/2025",
        term: str = "First Term",
        payment_status: str = "unpaid",
    ) -> Student:
        async with session_factory() as db:
            student = Student(
                name=name,
                class_name=class_name,
                session=session,
                term=term,
                parent_id=parent_id,
                total_fees=Decimal(str(total_fees)),
                amount_paid=Decimal(str(amount_paid)),
                payment_status=payment_status,
            )
            db.add(student)
            await db.commit()
            return student

    return _make


def _auth_headers(user_id: uuid.UUID, role: str, name: str = "Test User") -> Dict[str, str]:
    token = create_access_token(user_id=user_id, role=UserRole(role), claims={"name": name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def parent_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def parent_headers(parent_id: uuid.UUID) -> Dict[str, str]:
    return _auth_headers(parent_id, "parent", name="Ngozi Okafor")


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    return _auth_headers(uuid.uuid4(), "admin", name="Bursar")


@pytest.fixture()
def make_headers() -> Callable[..., Dict[str, str]]:
    return _auth_headers
