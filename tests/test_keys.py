"""Unit tests for storage key building."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from schoolfees.api.v1.fees.schemas import FeeItem, FeeStructureSet, PaymentCreate
from schoolfees.core.enums import FeeCategory, PaymentMethod
from schoolfees.core.keys import (
    check_session,
    check_term,
    fee_status_key,
    fee_structure_key,
    sanitize_session,
)


def test_sanitize_session_replaces_slash() -> None:
    assert sanitize_session("2025/2026") == "2025-2026"


def test_sanitize_session_is_stable_for_safe_values() -> None:
    assert sanitize_session("2025-2026") == "2025-2026"
    assert sanitize_session(" 2025/2026 ") == "2025-2026"


def test_distinct_sessions_do_not_collide() -> None:
    sessions = ["2024/2025", "2025/2026", "2026/2027"]
    assert len({sanitize_session(s) for s in sessions}) == len(sessions)


def test_fee_structure_key() -> None:
    assert fee_structure_key("C1", "First Term", "2025/2026") == "C1-First Term-2025-2026"


def test_fee_status_key() -> None:
    """Status keys never contain '/' so they are safe as document ids."""
    key = fee_status_key("S1", "First Term", "2025/2026")
    assert key == "S1-First Term-2025-2026"
    assert "/" not in key


def test_check_term_rejects_key_separator() -> None:
    assert check_term("First Term") == "First Term"
    with pytest.raises(ValueError):
        check_term("A-Term")


@pytest.mark.parametrize("session", ["2025/2026", "2025-2026"])
def test_check_session_accepts_two_part_sessions(session: str) -> None:
    assert check_session(session) == session


@pytest.mark.parametrize("session", ["2025", "2025/2026/2027", "2025-2026-x", "2025/", "/2026"])
def test_check_session_rejects_other_shapes(session: str) -> None:
    with pytest.raises(ValueError):
        check_session(session)


def test_ambiguous_keys_cannot_be_requested() -> None:
    """C1 + "A-Term" would build the same key as "C1-A" + "Term"; only the second is accepted."""
    assert fee_structure_key("C1", "A-Term", "2025/2026") == fee_structure_key("C1-A", "Term", "2025/2026")
    base = dict(
        class_name="JSS 1",
        session="2025/2026",
        items=[FeeItem(category=FeeCategory.TUITION, description="Tuition", amount=Decimal("100"))],
        due_date=date(2026, 1, 1),
        created_by="admin-1",
    )
    FeeStructureSet(class_id="C1-A", term="Term", **base)
    with pytest.raises(PydanticValidationError):
        FeeStructureSet(class_id="C1", term="A-Term", **base)
    with pytest.raises(PydanticValidationError):
        PaymentCreate(
            student_id="S1", term="A-Term", session="2025/2026", amount=Decimal("1"),
            method=PaymentMethod.CASH, received_by="bursar-1",
        )
