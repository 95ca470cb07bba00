"""Unit tests for fee status derivation and ledger mutations (no database)."""

import random
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from schoolfees.api.v1.fees.ledger import apply_payment, derive_fee_state, reverse_payment
from schoolfees.core.enums import FeeStatus
from schoolfees.core.exceptions import ValidationError
from schoolfees.core.models import FeePayment, StudentFeeStatus

TODAY = date(2026, 3, 2)
FUTURE = TODAY + timedelta(days=30)
PAST = TODAY - timedelta(days=12)


def _ledger(total: str = "150000", due: date = FUTURE) -> StudentFeeStatus:
    return StudentFeeStatus(
        id="S1-First Term-2025-2026",
        student_id="S1",
        class_id="C1",
        term="First Term",
        session="2025/2026",
        academic_year="2025/2026",
        total_fees=Decimal(total),
        amount_paid=Decimal("0"),
        balance=Decimal(total),
        status=FeeStatus.unpaid.value,
        payment_ids=[],
        due_date=due,
    )


def _payment(amount: str) -> FeePayment:
    return FeePayment(id=uuid.uuid4(), amount=Decimal(amount), ledger_applied=False)


@pytest.mark.parametrize(
    "paid, expected",
    [
        ("0", FeeStatus.unpaid),
        ("0.01", FeeStatus.partial),
        ("149999.99", FeeStatus.partial),
        ("150000", FeeStatus.paid),
        ("200000", FeeStatus.paid),
    ],
)
def test_status_before_due_date(paid: str, expected: FeeStatus) -> None:
    state = derive_fee_state(Decimal("150000"), Decimal(paid), FUTURE, TODAY)
    assert state.status == expected
    assert state.balance == Decimal("150000") - Decimal(paid)
    assert state.is_overdue is False
    assert state.days_overdue == 0


def test_overdue_applies_to_unpaid_and_partial() -> None:
    unpaid = derive_fee_state(Decimal("150000"), Decimal("0"), PAST, TODAY)
    partial = derive_fee_state(Decimal("150000"), Decimal("60000"), PAST, TODAY)
    for state in (unpaid, partial):
        assert state.status == FeeStatus.overdue
        assert state.is_overdue is True
        assert state.days_overdue == 12


def test_paid_is_never_overdue() -> None:
    state = derive_fee_state(Decimal("150000"), Decimal("150000"), PAST, TODAY)
    assert state.status == FeeStatus.paid
    assert state.is_overdue is False
    assert state.days_overdue == 0


def test_due_today_is_not_overdue() -> None:
    state = derive_fee_state(Decimal("100"), Decimal("0"), TODAY, TODAY)
    assert state.status == FeeStatus.unpaid
    assert state.is_overdue is False


def test_decimal_amounts_are_exact() -> None:
    state = derive_fee_state(Decimal("0.30"), Decimal("0.10") + Decimal("0.20"), FUTURE, TODAY)
    assert state.balance == Decimal("0.00")
    assert state.status == FeeStatus.paid


def test_apply_then_reverse_restores_ledger() -> None:
    row = _ledger()
    payment = _payment("60000")
    apply_payment(row, payment, TODAY)
    assert row.amount_paid == Decimal("60000")
    assert row.balance == Decimal("90000")
    assert row.status == FeeStatus.partial.value
    assert row.payment_ids == [str(payment.id)]
    assert payment.ledger_applied is True

    reverse_payment(row, payment, TODAY)
    assert row.amount_paid == Decimal("0")
    assert row.balance == Decimal("150000")
    assert row.status == FeeStatus.unpaid.value
    assert row.payment_ids == []
    assert payment.ledger_applied is False


def test_apply_same_payment_twice_is_rejected() -> None:
    row = _ledger()
    payment = _payment("100")
    apply_payment(row, payment, TODAY)
    with pytest.raises(ValidationError):
        apply_payment(row, payment, TODAY)
    assert row.amount_paid == Decimal("100")


def test_reverse_unknown_payment_is_rejected() -> None:
    row = _ledger()
    apply_payment(row, _payment("500"), TODAY)
    with pytest.raises(ValidationError):
        reverse_payment(row, _payment("500"), TODAY)
    assert row.amount_paid == Decimal("500")


def test_reversal_clamps_amount_paid_at_zero() -> None:
    row = _ledger()
    payment = _payment("500")
    apply_payment(row, payment, TODAY)
    row.amount_paid = Decimal("200")  # drifted below the payment amount
    reverse_payment(row, payment, TODAY)
    assert row.amount_paid == Decimal("0")
    assert row.balance == row.total_fees


@pytest.mark.parametrize("seed", [1, 7, 42, 2026])
def test_random_sequences_match_recomputation(seed: int) -> None:
    """Status after any apply/reverse sequence equals a from-scratch derivation."""
    rng = random.Random(seed)
    due = rng.choice([PAST, FUTURE])
    row = _ledger(total="1000", due=due)
    applied = []
    for _ in range(40):
        if applied and rng.random() < 0.4:
            payment = applied.pop(rng.randrange(len(applied)))
            reverse_payment(row, payment, TODAY)
        else:
            payment = _payment(str(Decimal(rng.randint(1, 40000)) / 100))
            apply_payment(row, payment, TODAY)
            applied.append(payment)

        expected_paid = sum((p.amount for p in applied), Decimal("0"))
        expected = derive_fee_state(row.total_fees, expected_paid, due, TODAY)
        assert row.amount_paid == expected_paid
        assert row.amount_paid >= 0
        assert row.balance == row.total_fees - row.amount_paid
        assert row.status == expected.status.value
        assert row.days_overdue == expected.days_overdue
        assert set(row.payment_ids) == {str(p.id) for p in applied}
