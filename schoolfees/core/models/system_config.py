"""System config counters. Row name 'receipt_number' holds the yearly receipt sequence."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from schoolfees.db.session import Base

RECEIPT_COUNTER_NAME = "receipt_number"


class SystemCounter(Base):
    """
    Named counter scoped by calendar year.
    Only ever advanced by a single UPDATE ... RETURNING; never read-then-written from Python.
    """

    __tablename__ = "system_config"

    name = Column(String(50), primary_key=True)
    prefix = Column(String(20), nullable=False)
    year = Column(String(4), nullable=False)
    last_number = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
