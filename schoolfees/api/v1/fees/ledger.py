"""
Student fee ledger: status derivation, payment application/reversal and initialization.

Mutating helpers here only change ORM objects; callers run them inside
run_ledger_transaction, which commits and retries on version conflicts.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, List, NamedTuple, Optional, Tuple, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from schoolfees.core.config import settings
from schoolfees.core.enums import FeeStatus
from schoolfees.core.exceptions import ConcurrencyConflict, ValidationError
from schoolfees.core.keys import fee_status_key, sanitize_session
from schoolfees.core.models import FeePayment, Student, StudentFeeStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_money(val) -> Decimal:
    if val is None:
        return ZERO.quantize(CENT)
    d = val if isinstance(val, Decimal) else Decimal(str(val))
    return d.quantize(CENT)


class FeeState(NamedTuple):
    balance: Decimal
    status: FeeStatus
    is_overdue: bool
    days_overdue: int


def derive_fee_state(
    total_fees: Decimal,
    amount_paid: Decimal,
    due_date: date,
    today: Optional[date] = None,
) -> FeeState:
    """
    Pure status function of (total_fees, amount_paid, due_date, today).

    paid when nothing is owed, partial when something was paid, otherwise unpaid;
    overdue replaces unpaid/partial once today is past the due date.
    """
    today = today or date.today()
    total_fees = to_money(total_fees)
    amount_paid = to_money(amount_paid)
    balance = total_fees - amount_paid

    if balance <= 0:
        status = FeeStatus.paid
    elif amount_paid > 0:
        status = FeeStatus.partial
    else:
        status = FeeStatus.unpaid

    is_overdue = today > due_date and balance > 0
    if is_overdue:
        status = FeeStatus.overdue
    days_overdue = max(0, (today - due_date).days) if is_overdue else 0
    return FeeState(balance=balance, status=status, is_overdue=is_overdue, days_overdue=days_overdue)


def refresh_fee_state(row: StudentFeeStatus, today: Optional[date] = None) -> FeeState:
    """Recompute balance, status and overdue fields of a ledger row from its totals."""
    state = derive_fee_state(row.total_fees, row.amount_paid, row.due_date, today)
    row.balance = state.balance
    row.status = state.status.value
    row.is_overdue = state.is_overdue
    row.days_overdue = state.days_overdue
    return state


def apply_payment(row: StudentFeeStatus, payment: FeePayment, today: Optional[date] = None) -> FeeState:
    payment_id = str(payment.id)
    current_ids = list(row.payment_ids or [])
    if payment_id in current_ids:
        raise ValidationError("Payment is already applied to this fee status")
    amount = to_money(payment.amount)
    row.amount_paid = to_money(row.amount_paid) + amount
    row.payment_ids = current_ids + [payment_id]
    row.last_payment_date = payment.payment_date
    row.last_payment_amount = amount
    payment.ledger_applied = True
    return refresh_fee_state(row, today)


def reverse_payment(row: StudentFeeStatus, payment: FeePayment, today: Optional[date] = None) -> FeeState:
    payment_id = str(payment.id)
    current_ids = list(row.payment_ids or [])
    if payment_id not in current_ids:
        raise ValidationError("Payment is not applied to this fee status; nothing to reverse")
    # Clamped so a stray double reversal can never drive amount_paid negative.
    row.amount_paid = max(ZERO, to_money(row.amount_paid) - to_money(payment.amount))
    row.payment_ids = [pid for pid in current_ids if pid != payment_id]
    payment.ledger_applied = False
    return refresh_fee_state(row, today)


async def initialize_student_fee_statuses(
    db: AsyncSession,
    class_id: str,
    term: str,
    session: str,
    academic_year: str,
    total_fees: Decimal,
    due_date: date,
    today: Optional[date] = None,
) -> int:
    """
    Create or refresh the fee status of every active student in the class.

    Existing rows keep amount_paid and payment_ids; total_fees, due_date and the
    derived fields are recomputed against the new total. Runs in the caller's
    transaction so all rows are written together or not at all.
    """
    students: List[Student] = (
        (
            await db.execute(
                select(Student)
                .where(Student.class_id == class_id, Student.is_active.is_(True))
                .order_by(Student.id)
                .execution_options(populate_existing=True)
            )
        )
        .unique()
        .scalars()
        .all()
    )
    if not students:
        return 0

    keys = {s.id: fee_status_key(s.id, term, session) for s in students}
    existing = {
        row.id: row
        for row in (
            await db.execute(
                select(StudentFeeStatus)
                .where(StudentFeeStatus.id.in_(list(keys.values())))
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    }

    total_fees = to_money(total_fees)
    for student in students:
        guardian = student.guardian
        row = existing.get(keys[student.id])
        if row is None:
            row = StudentFeeStatus(
                id=keys[student.id],
                student_id=student.id,
                term=term,
                session=session,
                session_key=sanitize_session(session),
                amount_paid=ZERO,
                payment_ids=[],
            )
            db.add(row)
        row.student_name = student.full_name
        row.student_class = student.class_name
        row.class_id = student.class_id
        row.parent_id = student.parent_id
        row.parent_name = guardian.full_name if guardian else None
        row.parent_phone = guardian.phone_number if guardian else None
        row.academic_year = academic_year
        row.total_fees = total_fees
        row.due_date = due_date
        refresh_fee_state(row, today)

    logger.info(
        "Initialized fee status for %d students (class=%s term=%s session=%s)",
        len(students), class_id, term, session,
    )
    return len(students)


async def run_ledger_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    description: str,
    retry_on: Tuple[Type[Exception], ...] = (StaleDataError, OperationalError),
) -> T:
    """
    Run operation and commit, retrying the whole read-modify-write on conflicts.

    operation must re-read every row it changes (populate_existing) since a retry
    starts from a rolled-back session.
    """
    attempts = max(1, settings.ledger_max_retries)
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except retry_on as e:
            await db.rollback()
            logger.warning("Conflict while trying to %s (attempt %d/%d): %s", description, attempt, attempts, e)
        except Exception:
            await db.rollback()
            raise
    raise ConcurrencyConflict(f"Could not {description} after {attempts} attempts; please retry")
