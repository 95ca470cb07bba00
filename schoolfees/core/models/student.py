"""Student and guardian directory. Owned by the enrolment side of the school; fees only read it."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from schoolfees.db.session import Base


class Guardian(Base):
    """Parent/guardian contact details used to denormalize fee documents."""

    __tablename__ = "guardians"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Student(Base):
    __tablename__ = "students"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    admission_number = Column(String(50), nullable=True)
    class_id = Column(String(64), nullable=False, index=True)
    class_name = Column(String(100), nullable=True)
    parent_id = Column(String(64), ForeignKey("guardians.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    guardian = relationship("Guardian", foreign_keys=[parent_id], lazy="joined")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
