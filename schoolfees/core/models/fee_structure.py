"""Fee structure: what one class owes for one term/session."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Numeric, String, UniqueConstraint

from schoolfees.db.session import Base


class FeeStructure(Base):
    """
    One row per (class, term, session), keyed by fee_structure_key().
    items is an immutable JSON snapshot of fee items; total_amount is always the sum of items.
    """

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint("class_id", "term", "session", name="uq_fee_structure_class_term_session"),
    )

    id = Column(String(200), primary_key=True)
    class_id = Column(String(64), nullable=False, index=True)
    class_name = Column(String(100), nullable=True)
    term = Column(String(50), nullable=False)
    session = Column(String(20), nullable=False)  # as entered, e.g. 2025/2026
    academic_year = Column(String(20), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    created_by = Column(String(64), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
