"""Fees service: class fee structure, payments, cancellation, reconciliation, reports. Financial logic with audit."""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from schoolfees.core.enums import DEFAULTER_STATUSES, PaymentStatus
from schoolfees.core.exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    PartialApplicationError,
    ValidationError,
)
from schoolfees.core.keys import fee_status_key, fee_structure_key, sanitize_session
from schoolfees.core.models import (
    FeeAuditLog,
    FeePayment,
    FeeStructure,
    Student,
    StudentFeeStatus,
)

from .ledger import (
    ZERO,
    apply_payment,
    derive_fee_state,
    initialize_student_fee_statuses,
    refresh_fee_state,
    reverse_payment,
    run_ledger_transaction,
    to_money,
)
from .receipts import next_receipt_number
from .schemas import (
    CancelPaymentResponse,
    FeeItem,
    FeeStructureResponse,
    FeeStructureSet,
    PaymentCancel,
    PaymentCreate,
    PaymentResponse,
    ReconcilePaymentResponse,
    RecordPaymentResponse,
    StudentFeeStatusResponse,
)

logger = logging.getLogger(__name__)


class _StructureInsertRace(Exception):
    """Another request inserted the same fee structure between our read and our insert."""


# --- Audit helper ---
def _log_fee_audit(
    db: AsyncSession,
    reference_table: str,
    reference_id: str,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[str],
) -> None:
    log = FeeAuditLog(
        reference_table=reference_table,
        reference_id=str(reference_id),
        action_type=action_type,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
    )
    db.add(log)


def _ledger_snapshot(row: StudentFeeStatus) -> dict:
    return {
        "total_fees": str(to_money(row.total_fees)),
        "amount_paid": str(to_money(row.amount_paid)),
        "balance": str(to_money(row.balance)),
        "status": row.status,
    }


# --- Fee Structure ---
def _structure_to_response(fs: FeeStructure, students_initialized: Optional[int] = None) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        class_id=fs.class_id,
        class_name=fs.class_name,
        term=fs.term,
        session=fs.session,
        academic_year=fs.academic_year,
        items=[FeeItem.model_validate(i) for i in fs.items or []],
        total_amount=to_money(fs.total_amount),
        due_date=fs.due_date,
        created_by=fs.created_by,
        is_active=fs.is_active,
        students_initialized=students_initialized,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


async def set_fee_structure(
    db: AsyncSession,
    payload: FeeStructureSet,
    today: Optional[date] = None,
) -> FeeStructureResponse:
    """
    Create or overwrite the fee structure of a class for a term/session and
    (re)initialize the fee status of every active student in that class.

    Structure and ledger rows are committed together; if initialization fails
    the structure write is rolled back as well.
    """
    if not payload.items:
        raise ValidationError("Fee structure must have at least one item")
    if any(item.amount < 0 for item in payload.items):
        raise ValidationError("Fee item amount cannot be negative")
    total = to_money(sum((item.amount for item in payload.items), ZERO))
    if total <= 0:
        raise ValidationError("Fee structure total must be greater than zero")
    if not isinstance(payload.due_date, date):
        raise ValidationError("Due date is required")

    key = fee_structure_key(payload.class_id, payload.term, payload.session)
    academic_year = (payload.academic_year or payload.session).strip()
    items = [item.model_dump(mode="json") for item in payload.items]

    async def _set():
        fs = await db.get(FeeStructure, key, populate_existing=True)
        old_value = None
        created = fs is None
        if created:
            fs = FeeStructure(id=key, class_id=payload.class_id, term=payload.term, session=payload.session)
            db.add(fs)
        else:
            old_value = {"total_amount": str(to_money(fs.total_amount)), "due_date": fs.due_date.isoformat()}
        fs.class_name = payload.class_name
        fs.academic_year = academic_year
        fs.items = items
        fs.total_amount = total
        fs.due_date = payload.due_date
        fs.created_by = payload.created_by
        fs.is_active = True
        fs.updated_at = datetime.utcnow()
        if created:
            try:
                await db.flush()
            except IntegrityError as e:
                raise _StructureInsertRace(str(e)) from e

        count = await initialize_student_fee_statuses(
            db,
            payload.class_id,
            payload.term,
            fs.session,
            academic_year,
            total,
            payload.due_date,
            today=today,
        )
        _log_fee_audit(
            db, "fee_structures", key,
            "SET", old_value,
            {"total_amount": str(total), "due_date": payload.due_date.isoformat(), "items": len(items), "students": count},
            payload.created_by,
        )
        await db.flush()
        return fs, count

    fs, count = await run_ledger_transaction(
        db, _set, "set fee structure",
        retry_on=(StaleDataError, OperationalError, _StructureInsertRace),
    )
    logger.info("Fee structure %s set: total=%s, %d students initialized", key, total, count)
    return _structure_to_response(fs, students_initialized=count)


async def get_fee_structure(
    db: AsyncSession,
    class_id: str,
    term: str,
    session: str,
) -> Optional[FeeStructureResponse]:
    fs = await db.get(FeeStructure, fee_structure_key(class_id, term, session))
    if not fs:
        return None
    return _structure_to_response(fs)


# --- Student Fee Status ---
def _fee_status_to_response(row: StudentFeeStatus, today: Optional[date] = None) -> StudentFeeStatusResponse:
    """Build the response as of today; status and overdue fields are re-derived, nothing is written."""
    state = derive_fee_state(row.total_fees, row.amount_paid, row.due_date, today)
    return StudentFeeStatusResponse(
        id=row.id,
        student_id=row.student_id,
        student_name=row.student_name or "",
        student_class=row.student_class,
        class_id=row.class_id,
        parent_id=row.parent_id,
        parent_name=row.parent_name,
        parent_phone=row.parent_phone,
        term=row.term,
        session=row.session,
        academic_year=row.academic_year,
        total_fees=to_money(row.total_fees),
        amount_paid=to_money(row.amount_paid),
        balance=state.balance,
        status=state.status,
        payment_ids=list(row.payment_ids or []),
        due_date=row.due_date,
        is_overdue=state.is_overdue,
        days_overdue=state.days_overdue,
        last_payment_date=row.last_payment_date,
        last_payment_amount=to_money(row.last_payment_amount) if row.last_payment_amount is not None else None,
        updated_at=row.updated_at,
    )


# --- Payment ---
def _payment_to_response(p: FeePayment) -> PaymentResponse:
    return PaymentResponse(
        id=p.id,
        student_id=p.student_id,
        student_name=p.student_name or "",
        student_class=p.student_class,
        student_admission_number=p.student_admission_number,
        parent_name=p.parent_name,
        parent_phone=p.parent_phone,
        term=p.term,
        session=p.session,
        academic_year=p.academic_year,
        amount=to_money(p.amount),
        method=p.method,
        payment_date=p.payment_date,
        reference=p.reference,
        bank_name=p.bank_name,
        account_name=p.account_name,
        cheque_number=p.cheque_number,
        notes=p.notes,
        items=[FeeItem.model_validate(i) for i in p.items or []],
        receipt_number=p.receipt_number,
        is_emergency_receipt=p.is_emergency_receipt,
        received_by=p.received_by,
        received_by_name=p.received_by_name,
        status=p.status,
        ledger_applied=p.ledger_applied,
        cancellation_reason=p.cancellation_reason,
        cancelled_by=p.cancelled_by,
        cancelled_at=p.cancelled_at,
        created_at=p.created_at,
    )


async def _apply_payment_to_ledger(
    db: AsyncSession,
    payment_id: UUID,
    changed_by: Optional[str],
    action_type: str,
    today: Optional[date] = None,
) -> StudentFeeStatus:
    async def _apply():
        payment = await db.get(FeePayment, payment_id, populate_existing=True)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status != PaymentStatus.verified.value:
            raise ValidationError("Only verified payments can be applied to the fee status")
        if payment.ledger_applied:
            raise ValidationError("Payment is already reflected in the fee status")
        key = fee_status_key(payment.student_id, payment.term, payment.session)
        row = await db.get(StudentFeeStatus, key, populate_existing=True)
        if not row:
            raise NotFoundError("Student fee status not found. Set up the fee structure first.")
        old_value = _ledger_snapshot(row)
        apply_payment(row, payment, today)
        _log_fee_audit(
            db, "student_fee_status", row.id,
            action_type, old_value,
            {**_ledger_snapshot(row), "payment_id": str(payment.id)},
            changed_by,
        )
        return row

    return await run_ledger_transaction(db, _apply, "apply payment to fee status")


async def record_payment(
    db: AsyncSession,
    payload: PaymentCreate,
    today: Optional[date] = None,
) -> RecordPaymentResponse:
    """
    Record a payment against a student's fee status.

    The receipt number and the payment row are committed first; the ledger is
    then updated in its own transaction. If that second step fails the payment
    stays verified with ledger_applied=False and PartialApplicationError carries
    its id for reconcile_payment.
    """
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    student = await db.get(Student, payload.student_id)
    if not student:
        raise NotFoundError("Student not found")
    key = fee_status_key(payload.student_id, payload.term, payload.session)
    ledger = await db.get(StudentFeeStatus, key)
    if not ledger:
        raise NotFoundError("Student fee status not found. Set up the fee structure first.")

    # Copied out before the receipt: a counter retry rolls back and expires loaded rows.
    # Term and session come from the ledger so payments match it however the session was typed.
    guardian = student.guardian
    details = dict(
        student_id=student.id,
        student_name=student.full_name,
        student_class=student.class_name,
        student_admission_number=student.admission_number,
        parent_id=student.parent_id,
        parent_name=guardian.full_name if guardian else None,
        parent_phone=guardian.phone_number if guardian else None,
        term=ledger.term,
        session=ledger.session,
        session_key=ledger.session_key,
        academic_year=(payload.academic_year or ledger.academic_year or ledger.session).strip(),
    )
    receipt = await next_receipt_number(db, today=today)

    payment = FeePayment(
        **details,
        amount=amount,
        method=payload.method.value,
        payment_date=payload.payment_date or datetime.now(timezone.utc),
        reference=(payload.reference or "").strip() or receipt.number,
        bank_name=payload.bank_name,
        account_name=payload.account_name,
        cheque_number=payload.cheque_number,
        notes=(payload.notes or "").strip() or None,
        items=[item.model_dump(mode="json") for item in payload.items],
        receipt_number=receipt.number,
        is_emergency_receipt=receipt.is_emergency,
        received_by=payload.received_by,
        received_by_name=payload.received_by_name,
        status=PaymentStatus.verified.value,
        ledger_applied=False,
    )
    db.add(payment)
    try:
        await db.flush()
        payment_id = payment.id
        _log_fee_audit(
            db, "fee_payments", str(payment_id),
            "CREATE", None,
            {
                "amount": str(amount),
                "method": payment.method,
                "receipt_number": receipt.number,
                "is_emergency_receipt": receipt.is_emergency,
                "student_fee_status_id": key,
            },
            payload.received_by,
        )
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Receipt number %s already in use: %s", receipt.number, e)
        raise ConcurrencyConflict(
            f"Receipt number {receipt.number} is already in use; payment was not recorded, please retry"
        ) from e
    except Exception:
        await db.rollback()
        raise

    try:
        row = await _apply_payment_to_ledger(db, payment_id, payload.received_by, "PAYMENT", today)
    except Exception as e:
        logger.exception("Payment %s (%s) recorded but not applied to fee status %s", payment_id, receipt.number, key)
        raise PartialApplicationError(
            "Payment was recorded but the fee status could not be updated; it is flagged for reconciliation",
            payment_id=payment_id,
            cause=e,
        ) from e

    logger.info("Payment %s recorded: %s %s for %s", receipt.number, amount, payload.method.value, key)
    return RecordPaymentResponse(
        payment_id=payment_id,
        receipt_number=receipt.number,
        is_emergency_receipt=receipt.is_emergency,
        fee_status=_fee_status_to_response(row, today),
    )


async def cancel_payment(
    db: AsyncSession,
    payment_id: UUID,
    payload: PaymentCancel,
    today: Optional[date] = None,
) -> CancelPaymentResponse:
    """Cancel a verified payment and reverse its effect on the fee status exactly once."""
    reason = payload.reason.strip()
    if not reason:
        raise ValidationError("Cancellation reason is required")

    async def _cancel():
        payment = await db.get(FeePayment, payment_id, populate_existing=True)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status == PaymentStatus.cancelled.value:
            raise ValidationError("Payment is already cancelled")

        row = None
        if payment.ledger_applied:
            key = fee_status_key(payment.student_id, payment.term, payment.session)
            row = await db.get(StudentFeeStatus, key, populate_existing=True)
            if not row:
                raise NotFoundError("Student fee status not found for this payment")
            old_value = _ledger_snapshot(row)
            reverse_payment(row, payment, today)
            _log_fee_audit(
                db, "student_fee_status", row.id,
                "REVERSAL", old_value,
                {**_ledger_snapshot(row), "payment_id": str(payment.id)},
                payload.cancelled_by,
            )

        payment.status = PaymentStatus.cancelled.value
        payment.cancellation_reason = reason
        payment.cancelled_by = payload.cancelled_by
        payment.cancelled_at = datetime.now(timezone.utc)
        _log_fee_audit(
            db, "fee_payments", str(payment.id),
            "CANCEL",
            {"status": PaymentStatus.verified.value},
            {"status": PaymentStatus.cancelled.value, "reason": reason, "amount": str(to_money(payment.amount))},
            payload.cancelled_by,
        )
        return payment, row

    payment, row = await run_ledger_transaction(db, _cancel, "cancel payment")
    logger.info("Payment %s (%s) cancelled by %s", payment.id, payment.receipt_number, payload.cancelled_by)
    return CancelPaymentResponse(
        payment=_payment_to_response(payment),
        fee_status=_fee_status_to_response(row, today) if row is not None else None,
    )


async def reconcile_payment(
    db: AsyncSession,
    payment_id: UUID,
    changed_by: Optional[str] = None,
    today: Optional[date] = None,
) -> ReconcilePaymentResponse:
    """Apply a verified payment whose fee status update never happened (after PartialApplicationError)."""
    row = await _apply_payment_to_ledger(db, payment_id, changed_by, "RECONCILE", today)
    logger.info("Payment %s reconciled into fee status %s", payment_id, row.id)
    return ReconcilePaymentResponse(payment_id=payment_id, fee_status=_fee_status_to_response(row, today))


async def rebuild_fee_status(
    db: AsyncSession,
    student_id: str,
    term: str,
    session: str,
    changed_by: Optional[str] = None,
    today: Optional[date] = None,
) -> StudentFeeStatusResponse:
    """
    Recompute one fee status from its verified payments.
    Repairs drift after manual fixes; every verified payment ends up applied.
    """
    key = fee_status_key(student_id, term, session)

    async def _rebuild():
        row = await db.get(StudentFeeStatus, key, populate_existing=True)
        if not row:
            raise NotFoundError("Student fee status not found")
        payments = (
            await db.execute(
                select(FeePayment)
                .where(
                    FeePayment.student_id == student_id,
                    FeePayment.term == row.term,
                    FeePayment.session_key == row.session_key,
                    FeePayment.status == PaymentStatus.verified.value,
                )
                .order_by(FeePayment.payment_date, FeePayment.created_at)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        old_value = _ledger_snapshot(row)
        row.amount_paid = to_money(sum((to_money(p.amount) for p in payments), ZERO))
        row.payment_ids = [str(p.id) for p in payments]
        if payments:
            row.last_payment_date = payments[-1].payment_date
            row.last_payment_amount = to_money(payments[-1].amount)
        for p in payments:
            if not p.ledger_applied:
                p.ledger_applied = True
        refresh_fee_state(row, today)
        _log_fee_audit(db, "student_fee_status", row.id, "REBUILD", old_value, _ledger_snapshot(row), changed_by)
        return row

    row = await run_ledger_transaction(db, _rebuild, "rebuild fee status")
    logger.info("Fee status %s rebuilt: amount_paid=%s", key, row.amount_paid)
    return _fee_status_to_response(row, today)


# --- Queries ---
async def get_student_fee_status(
    db: AsyncSession,
    student_id: str,
    term: str,
    session: str,
    today: Optional[date] = None,
) -> Optional[StudentFeeStatusResponse]:
    row = await db.get(StudentFeeStatus, fee_status_key(student_id, term, session))
    if not row:
        return None
    return _fee_status_to_response(row, today)


async def get_student_payments(
    db: AsyncSession,
    student_id: str,
    term: Optional[str] = None,
    session: Optional[str] = None,
) -> List[PaymentResponse]:
    stmt = select(FeePayment).where(FeePayment.student_id == student_id)
    if term is not None:
        stmt = stmt.where(FeePayment.term == term)
    if session is not None:
        stmt = stmt.where(FeePayment.session_key == sanitize_session(session))
    stmt = stmt.order_by(FeePayment.payment_date.desc(), FeePayment.created_at.desc())
    result = await db.execute(stmt)
    return [_payment_to_response(p) for p in result.scalars().all()]


async def get_class_fee_status(
    db: AsyncSession,
    class_id: str,
    term: str,
    session: str,
    today: Optional[date] = None,
) -> List[StudentFeeStatusResponse]:
    stmt = (
        select(StudentFeeStatus)
        .where(
            StudentFeeStatus.class_id == class_id,
            StudentFeeStatus.term == term,
            StudentFeeStatus.session_key == sanitize_session(session),
        )
        .order_by(StudentFeeStatus.student_name, StudentFeeStatus.student_id)
    )
    result = await db.execute(stmt)
    return [_fee_status_to_response(r, today) for r in result.scalars().all()]


async def get_fee_defaulters(
    db: AsyncSession,
    term: str,
    session: str,
    class_id: Optional[str] = None,
    today: Optional[date] = None,
) -> List[StudentFeeStatusResponse]:
    """Students whose fee status is unpaid, partial or overdue, largest balance first."""
    stmt = select(StudentFeeStatus).where(
        StudentFeeStatus.term == term,
        StudentFeeStatus.session_key == sanitize_session(session),
        StudentFeeStatus.status.in_([s.value for s in DEFAULTER_STATUSES]),
    )
    if class_id is not None:
        stmt = stmt.where(StudentFeeStatus.class_id == class_id)
    stmt = stmt.order_by(StudentFeeStatus.balance.desc(), StudentFeeStatus.student_name)
    result = await db.execute(stmt)
    return [_fee_status_to_response(r, today) for r in result.scalars().all()]
