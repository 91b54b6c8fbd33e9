"""In-process registry of live payment sessions and the collaborators they share."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.config import Settings
from schoolpay.core.enums import PaymentSessionState
from schoolpay.core.exceptions import ServiceError

from .gateway import RemitaGateway
from .ledger import LedgerReconciler
from .session import PaymentSession
from .types import Allocation, Payer

logger = logging.getLogger(__name__)


class PaymentSessionRegistry:
    """
    Live payment sessions, keyed by id.

    A session leaves the live map the moment it completes; its final snapshot
    stays readable for ``completed_ttl`` seconds. Live sessions that nobody has
    touched for ``idle_ttl`` seconds are abandoned by ``sweep``, unless a
    verification loop is still running for them.
    """

    def __init__(
        self,
        idle_ttl: float = 1800.0,
        completed_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_ttl = idle_ttl
        self.completed_ttl = completed_ttl
        self._clock = clock
        self._sessions: Dict[str, PaymentSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._completed: Dict[str, Tuple[float, PaymentSession]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: PaymentSession) -> PaymentSession:
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()
        session.add_listener(self._on_state_change)
        return session

    def _on_state_change(self, session: PaymentSession) -> None:
        if session.state != PaymentSessionState.COMPLETE:
            return
        if self._sessions.pop(session.id, None) is None:
            return
        self._last_seen.pop(session.id, None)
        self._completed[session.id] = (self._clock(), session)
        logger.info("Payment session %s completed and left the live registry", session.id)

    def _prune_completed(self) -> None:
        now = self._clock()
        expired = [sid for sid, (done_at, _) in self._completed.items() if now - done_at >= self.completed_ttl]
        for session_id in expired:
            del self._completed[session_id]

    def get(self, session_id: str) -> PaymentSession:
        self._prune_completed()
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
            return session
        completed = self._completed.get(session_id)
        if completed is None:
            raise ServiceError("Payment session not found", status.HTTP_404_NOT_FOUND)
        return completed[1]

    async def discard(self, session_id: str) -> PaymentSession:
        completed = self._completed.pop(session_id, None)
        if completed is not None:
            return completed[1]
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise ServiceError("Payment session not found", status.HTTP_404_NOT_FOUND)
        self._last_seen.pop(session_id, None)
        if session.state != PaymentSessionState.COMPLETE:
            await session.abandon()
        else:
            await session.aclose()
        return session

    async def sweep(self) -> int:
        """Abandon idle live sessions and drop expired snapshots. Returns the number of sessions abandoned."""
        self._prune_completed()
        now = self._clock()
        idle = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.verification_active and now - self._last_seen[session_id] >= self.idle_ttl
        ]
        for session_id in idle:
            logger.info("Payment session %s idle for %ss, abandoning", session_id, self.idle_ttl)
            await self.discard(session_id)
        return len(idle)

    async def sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.sweep()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.discard(session_id)
        self._completed.clear()


@dataclass
class PaymentRuntime:
    """Gateway client, ledger reconciler and session registry for one application."""

    settings: Settings
    gateway: RemitaGateway
    reconciler: LedgerReconciler
    registry: PaymentSessionRegistry

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: Callable[[], AsyncSession],
        gateway: Optional[RemitaGateway] = None,
    ) -> "PaymentRuntime":
        return cls(
            settings=settings,
            gateway=gateway or RemitaGateway.from_settings(settings),
            reconciler=LedgerReconciler(session_factory),
            registry=PaymentSessionRegistry(
                idle_ttl=settings.payment_session_idle_seconds,
                completed_ttl=settings.payment_session_completed_seconds,
            ),
        )

    def open_session(self, allocations: Sequence[Allocation], payer: Payer, **overrides) -> PaymentSession:
        options = dict(
            widget_public_key=self.settings.remita_public_key,
            widget_script_url=self.settings.remita_widget_script_url,
            pending_delay=self.settings.verify_pending_delay_seconds,
            error_delay=self.settings.verify_error_delay_seconds,
            max_transport_errors=self.settings.verify_max_transport_errors,
            ceiling=self.settings.verify_ceiling_seconds,
        )
        options.update(overrides)
        session = PaymentSession(self.gateway, self.reconciler, allocations, payer, **options)
        logger.info(
            "Opened payment session %s for %d student(s), total=%s",
            session.id,
            len(allocations),
            session.total_amount,
        )
        return self.registry.add(session)
