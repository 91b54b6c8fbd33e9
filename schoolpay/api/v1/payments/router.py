"""Payments router: payment history, receipts, report export."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.auth.capabilities import CAN_EXPORT
from schoolpay.auth.dependencies import get_current_user
from schoolpay.auth.rbac import require_capability
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.config import settings
from schoolpay.core.enums import PaymentRecordStatus, ReportFormat
from schoolpay.core.exceptions import ServiceError
from schoolpay.db.session import get_db

from .schemas import PaymentRecordResponse
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.get("", response_model=List[PaymentRecordResponse])
async def list_payments(
    search: Optional[str] = Query(None, description="Match on student name or transaction id"),
    payment_status: Optional[PaymentRecordStatus] = Query(None, alias="status"),
    session: Optional[str] = Query(None),
    term: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentRecordResponse]:
    return await service.list_payments(
        db,
        current_user,
        search=search,
        status_filter=payment_status.value if payment_status else None,
        session=session,
        term=term,
    )


@router.get(
    "/export",
    dependencies=[Depends(require_capability(CAN_EXPORT))],
)
async def export_payments(
    report_format: ReportFormat = Query(ReportFormat.CSV, alias="format"),
    payment_status: Optional[PaymentRecordStatus] = Query(None, alias="status"),
    session: Optional[str] = Query(None),
    term: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    content, media_type, filename = await service.export_report(
        db,
        current_user,
        report_format,
        status_filter=payment_status.value if payment_status else None,
        session=session,
        term=term,
    )
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/reference/{rrr}/receipt", response_class=HTMLResponse)
async def get_reference_receipt(
    rrr: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> HTMLResponse:
    try:
        html = await service.get_reference_receipt(db, current_user, rrr, settings.school_name)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return HTMLResponse(content=html)


@router.get("/{payment_id}", response_model=PaymentRecordResponse)
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentRecordResponse:
    try:
        return await service.get_payment(db, current_user, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{payment_id}/receipt", response_class=HTMLResponse)
async def get_receipt(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> HTMLResponse:
    try:
        html = await service.get_receipt(db, current_user, payment_id, settings.school_name)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return HTMLResponse(content=html)
