"""Payment sessions router: reference, widget, verification and abandon."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.auth.capabilities import CAN_PAY
from schoolpay.auth.dependencies import get_current_user
from schoolpay.auth.rbac import require_capability
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.exceptions import ServiceError
from schoolpay.db.session import get_db
from schoolpay.payments.registry import PaymentRuntime

from .schemas import (
    PaymentSessionCreate,
    PaymentSessionResponse,
    ReferenceRequest,
    WidgetCallback,
    WidgetCallbackResponse,
)
from . import service

router = APIRouter(
    prefix="/api/v1/payment-sessions",
    tags=["payment-sessions"],
    dependencies=[Depends(require_capability(CAN_PAY))],
)


def get_payment_runtime(request: Request) -> PaymentRuntime:
    return request.app.state.payment_runtime


@router.post("", response_model=PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: PaymentSessionCreate,
    db: AsyncSession = Depends(get_db),
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentSessionResponse:
    try:
        return await service.create_session(db, runtime, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{session_id}", response_model=PaymentSessionResponse)
async def get_session(
    session_id: str,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentSessionResponse:
    try:
        return await service.get_session(runtime, current_user, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/reference", response_model=PaymentSessionResponse)
async def request_reference(
    session_id: str,
    payload: ReferenceRequest,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentSessionResponse:
    try:
        return await service.request_reference(runtime, current_user, session_id, payload.amount)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/widget", response_model=PaymentSessionResponse)
async def launch_widget(
    session_id: str,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentSessionResponse:
    try:
        return await service.launch_widget(runtime, current_user, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/widget/{invocation_id}/callback", response_model=WidgetCallbackResponse)
async def widget_callback(
    session_id: str,
    invocation_id: int,
    payload: WidgetCallback,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> WidgetCallbackResponse:
    try:
        return await service.widget_callback(
            runtime, current_user, session_id, invocation_id, payload.outcome, payload.payload
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/verify", response_model=PaymentSessionResponse)
async def verify(
    session_id: str,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentSessionResponse:
    try:
        return await service.verify(runtime, current_user, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard(
    session_id: str,
    runtime: PaymentRuntime = Depends(get_payment_runtime),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.discard(runtime, current_user, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
