"""Fees router: class fee structure, payments, cancellation, fee status, defaulters."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.exceptions import PartialApplicationError, ServiceError
from schoolfees.db.session import get_db

from .schemas import (
    CancelPaymentResponse,
    FeeStructureResponse,
    FeeStructureSet,
    PaymentCancel,
    PaymentCreate,
    PaymentResponse,
    ReconcilePaymentResponse,
    RecordPaymentResponse,
    StudentFeeStatusResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


def _http_error(e: ServiceError) -> HTTPException:
    if isinstance(e, PartialApplicationError):
        return HTTPException(
            status_code=e.status_code,
            detail={"message": e.message, "payment_id": str(e.payment_id)},
        )
    return HTTPException(status_code=e.status_code, detail=e.message)


# --- Fee Structure ---
@router.put("/structures", response_model=FeeStructureResponse)
async def set_fee_structure(
    payload: FeeStructureSet,
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    try:
        return await service.set_fee_structure(db, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/structures/{class_id}", response_model=FeeStructureResponse)
async def get_fee_structure(
    class_id: str,
    term: str = Query(...),
    session: str = Query(..., description="e.g. 2025/2026"),
    db: AsyncSession = Depends(get_db),
) -> FeeStructureResponse:
    result = await service.get_fee_structure(db, class_id, term, session)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fee structure not found",
        )
    return result


# --- Payment ---
@router.post(
    "/payments",
    response_model=RecordPaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
) -> RecordPaymentResponse:
    try:
        return await service.record_payment(db, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/payments/{payment_id}/cancel", response_model=CancelPaymentResponse)
async def cancel_payment(
    payment_id: UUID,
    payload: PaymentCancel,
    db: AsyncSession = Depends(get_db),
) -> CancelPaymentResponse:
    try:
        return await service.cancel_payment(db, payment_id, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/payments/{payment_id}/reconcile", response_model=ReconcilePaymentResponse)
async def reconcile_payment(
    payment_id: UUID,
    changed_by: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> ReconcilePaymentResponse:
    try:
        return await service.reconcile_payment(db, payment_id, changed_by=changed_by)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/payments/student/{student_id}", response_model=List[PaymentResponse])
async def get_student_payments(
    student_id: str,
    term: Optional[str] = Query(None),
    session: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[PaymentResponse]:
    return await service.get_student_payments(db, student_id, term=term, session=session)


# --- Fee Status ---
@router.get("/status/{student_id}", response_model=StudentFeeStatusResponse)
async def get_student_fee_status(
    student_id: str,
    term: str = Query(...),
    session: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> StudentFeeStatusResponse:
    result = await service.get_student_fee_status(db, student_id, term, session)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student fee status not found",
        )
    return result


@router.post("/status/{student_id}/rebuild", response_model=StudentFeeStatusResponse)
async def rebuild_fee_status(
    student_id: str,
    term: str = Query(...),
    session: str = Query(...),
    changed_by: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> StudentFeeStatusResponse:
    try:
        return await service.rebuild_fee_status(db, student_id, term, session, changed_by=changed_by)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/class/{class_id}/status", response_model=List[StudentFeeStatusResponse])
async def get_class_fee_status(
    class_id: str,
    term: str = Query(...),
    session: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> List[StudentFeeStatusResponse]:
    return await service.get_class_fee_status(db, class_id, term, session)


@router.get("/defaulters", response_model=List[StudentFeeStatusResponse])
async def get_fee_defaulters(
    term: str = Query(...),
    session: str = Query(...),
    class_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[StudentFeeStatusResponse]:
    return await service.get_fee_defaulters(db, term, session, class_id=class_id)
