"""
Receipt numbers. Format: PREFIX/YEAR/00001, restarting at 1 each calendar year.

The counter row in system_config is advanced by one UPDATE ... RETURNING, so two
concurrent callers can never observe the same value. Numbers are never reused,
including those of cancelled payments.
"""

import logging
import secrets
import time
from datetime import date, datetime
from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.config import settings
from schoolfees.core.exceptions import ConcurrencyConflict
from schoolfees.core.models import RECEIPT_COUNTER_NAME, SystemCounter

from .schemas import IssuedReceipt

logger = logging.getLogger(__name__)


def format_receipt_number(year: str, sequence: int, prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.receipt_prefix
    return f"{prefix}/{year}/{str(sequence).zfill(settings.receipt_number_padding)}"


def _emergency_receipt(year: str) -> IssuedReceipt:
    # Epoch milliseconds plus a random suffix; a clash still fails on the unique receipt_number.
    digits = f"{time.time_ns() // 1_000_000}{secrets.randbelow(10_000):04d}"
    number = f"{settings.receipt_prefix}/{year}/E{digits}"
    logger.warning("Issuing non-sequential emergency receipt %s", number)
    return IssuedReceipt(number=number, year=year, sequence=None, is_emergency=True)


async def _increment(db: AsyncSession, year: str) -> Optional[int]:
    # SET expressions see the pre-update row, so the CASE compares against the stored year.
    stmt = (
        update(SystemCounter)
        .where(SystemCounter.name == RECEIPT_COUNTER_NAME)
        .values(
            last_number=case(
                (SystemCounter.year == year, SystemCounter.last_number + 1),
                else_=1,
            ),
            year=year,
            prefix=settings.receipt_prefix,
            updated_at=datetime.utcnow(),
        )
        .returning(SystemCounter.last_number)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def next_receipt_number(db: AsyncSession, today: Optional[date] = None) -> IssuedReceipt:
    """
    Issue the next receipt number for the current year and commit it.

    Commits the session, so call it before staging any other work.
    Raises ConcurrencyConflict when the counter cannot be advanced within
    RECEIPT_MAX_RETRIES attempts, unless RECEIPT_EMERGENCY_FALLBACK is enabled.
    """
    year = str((today or date.today()).year)
    attempts = max(1, settings.receipt_max_retries)
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            sequence = await _increment(db, year)
            if sequence is None:
                # First receipt ever: create the counter row. A racing insert fails on the
                # primary key and the next attempt goes through the UPDATE path.
                db.add(
                    SystemCounter(
                        name=RECEIPT_COUNTER_NAME,
                        prefix=settings.receipt_prefix,
                        year=year,
                        last_number=1,
                    )
                )
                await db.flush()
                sequence = 1
            await db.commit()
        except (IntegrityError, OperationalError) as e:
            await db.rollback()
            last_error = e
            logger.warning(
                "Receipt counter update failed (attempt %d/%d): %s", attempt, attempts, e
            )
            continue
        return IssuedReceipt(
            number=format_receipt_number(year, sequence),
            year=year,
            sequence=sequence,
        )

    if settings.receipt_emergency_fallback:
        return _emergency_receipt(year)
    raise ConcurrencyConflict(
        f"Could not generate a receipt number after {attempts} attempts; payment was not recorded"
    ) from last_error
