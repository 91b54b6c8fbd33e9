import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolpay.api.v1.auth.router import router as auth_router
from schoolpay.api.v1.payment_sessions.router import router as payment_sessions_router
from schoolpay.api.v1.payments.router import router as payments_router
from schoolpay.api.v1.students.router import router as students_router
from schoolpay.core import models  # noqa: F401
from schoolpay.core.config import settings
from schoolpay.db.session import AsyncSessionLocal, Base, engine
from schoolpay.payments.registry import PaymentRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the idle-session sweeper; stop live payment sessions and release the pool on shutdown."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting SchoolPay API (gateway %s)", settings.remita_base_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    runtime: PaymentRuntime = app.state.payment_runtime
    sweeper = asyncio.create_task(runtime.registry.sweep_forever(settings.payment_session_sweep_seconds))
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await runtime.registry.close_all()
    await engine.dispose()
    logger.info("SchoolPay API shutdown complete")


def create_app(runtime: Optional[PaymentRuntime] = None) -> FastAPI:
    app = FastAPI(title="SchoolPay Backend", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.payment_runtime = runtime or PaymentRuntime.build(settings, AsyncSessionLocal)

    # Routers
    app.include_router(auth_router)
    app.include_router(students_router)
    app.include_router(payments_router)
    app.include_router(payment_sessions_router)

    return app


app = create_app()
