"""Fee payment: one payment event. Immutable except for the verified -> cancelled transition."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from schoolfees.core.enums import PaymentStatus
from schoolfees.db.session import Base


class FeePayment(Base):
    """
    Payment against a student's fee status for one term/session.
    ledger_applied is False between the payment commit and its reconciliation;
    a verified payment left with ledger_applied=False is an orphan awaiting reconcile_payment.
    """

    __tablename__ = "fee_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_payment_amount_positive"),
        CheckConstraint("status IN ('verified','cancelled')", name="chk_fee_payment_status"),
        Index("ix_fee_payments_student_term_session", "student_id", "term", "session_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(64), nullable=False)
    student_name = Column(String(200), nullable=False, default="")
    student_class = Column(String(100), nullable=True)
    student_admission_number = Column(String(50), nullable=True)
    parent_id = Column(String(64), nullable=True)
    parent_name = Column(String(200), nullable=True)
    parent_phone = Column(String(30), nullable=True)
    term = Column(String(50), nullable=False)
    session = Column(String(20), nullable=False)
    session_key = Column(String(20), nullable=False)  # sanitize_session(session)
    academic_year = Column(String(20), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(30), nullable=False)  # cash, bank_transfer, pos, cheque, card, paystack, other
    payment_date = Column(DateTime(timezone=True), nullable=False)
    reference = Column(String(100), nullable=False)
    bank_name = Column(String(100), nullable=True)
    account_name = Column(String(100), nullable=True)
    cheque_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    items = Column(JSON, nullable=False, default=list)

    receipt_number = Column(String(50), nullable=False, unique=True)
    is_emergency_receipt = Column(Boolean, nullable=False, default=False)

    received_by = Column(String(64), nullable=False)
    received_by_name = Column(String(200), nullable=True)

    status = Column(String(20), nullable=False, default=PaymentStatus.verified.value)
    ledger_applied = Column(Boolean, nullable=False, default=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
