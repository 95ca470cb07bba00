"""Student fee status: the running ledger of one student's obligation for one term/session."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)

from schoolfees.core.enums import FeeStatus
from schoolfees.db.session import Base


class StudentFeeStatus(Base):
    """
    Keyed by fee_status_key(). Never deleted.
    balance is always total_fees - amount_paid; only the ledger reconciler and initializer write it.
    version guards read-modify-write against concurrent payments (StaleDataError on conflict).
    """

    __tablename__ = "student_fee_status"
    __table_args__ = (
        CheckConstraint(
            "status IN ('unpaid','partial','paid','overdue')",
            name="chk_student_fee_status_status",
        ),
        CheckConstraint("amount_paid >= 0", name="chk_student_fee_status_amount_paid"),
        Index("ix_student_fee_status_class_term_session", "class_id", "term", "session_key"),
        Index("ix_student_fee_status_term_session_status", "term", "session_key", "status"),
    )

    id = Column(String(200), primary_key=True)
    student_id = Column(String(64), nullable=False, index=True)
    student_name = Column(String(200), nullable=False, default="")
    student_class = Column(String(100), nullable=True)
    class_id = Column(String(64), nullable=False)
    parent_id = Column(String(64), nullable=True)
    parent_name = Column(String(200), nullable=True)
    parent_phone = Column(String(30), nullable=True)
    term = Column(String(50), nullable=False)
    session = Column(String(20), nullable=False)
    session_key = Column(String(20), nullable=False)  # sanitize_session(session)
    academic_year = Column(String(20), nullable=False)

    total_fees = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=FeeStatus.unpaid.value)
    payment_ids = Column(JSON, nullable=False, default=list)

    due_date = Column(Date, nullable=False)
    is_overdue = Column(Boolean, nullable=False, default=False)
    days_overdue = Column(Integer, nullable=False, default=0)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    last_payment_amount = Column(Numeric(12, 2), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
