"""Receipt sequencer: format, yearly reset, concurrency and failure handling."""

import asyncio
import re
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schoolfees.api.v1.fees import receipts
from schoolfees.api.v1.fees.receipts import format_receipt_number, next_receipt_number
from schoolfees.core.config import settings
from schoolfees.core.exceptions import ConcurrencyConflict
from schoolfees.core.models import RECEIPT_COUNTER_NAME, SystemCounter


def test_format_receipt_number() -> None:
    assert format_receipt_number("2026", 1) == "RCP/2026/00001"
    assert format_receipt_number("2026", 123456) == "RCP/2026/123456"


@pytest.mark.asyncio
async def test_first_receipt_creates_counter(db_session: AsyncSession) -> None:
    receipt = await next_receipt_number(db_session, today=date(2026, 5, 1))
    assert receipt.number == "RCP/2026/00001"
    assert receipt.sequence == 1
    assert receipt.is_emergency is False

    counter = await db_session.get(SystemCounter, RECEIPT_COUNTER_NAME, populate_existing=True)
    assert counter.year == "2026"
    assert counter.last_number == 1


@pytest.mark.asyncio
async def test_receipts_increase_by_one(db_session: AsyncSession) -> None:
    numbers = [(await next_receipt_number(db_session, today=date(2026, 5, 1))).number for _ in range(3)]
    assert numbers == ["RCP/2026/00001", "RCP/2026/00002", "RCP/2026/00003"]


@pytest.mark.asyncio
async def test_counter_resets_when_year_changes(db_session: AsyncSession) -> None:
    await next_receipt_number(db_session, today=date(2025, 12, 31))
    await next_receipt_number(db_session, today=date(2025, 12, 31))
    receipt = await next_receipt_number(db_session, today=date(2026, 1, 1))
    assert receipt.number == "RCP/2026/00001"
    assert receipt.year == "2026"


@pytest.mark.asyncio
async def test_concurrent_receipts_have_no_duplicates_or_gaps(
    db_session: AsyncSession, session_factory: async_sessionmaker
) -> None:
    # Pre-sequence counter value k = 4.
    db_session.add(SystemCounter(name=RECEIPT_COUNTER_NAME, prefix="RCP", year="2026", last_number=4))
    await db_session.commit()

    async def issue() -> int:
        async with session_factory() as session:
            receipt = await next_receipt_number(session, today=date(2026, 6, 1))
            assert re.fullmatch(r"RCP/2026/\d{5}", receipt.number)
            return receipt.sequence

    sequences = await asyncio.gather(*(issue() for _ in range(12)))
    assert sorted(sequences) == list(range(5, 17))


@pytest.mark.asyncio
async def test_exhausted_retries_abort_without_fallback(db_session: AsyncSession, monkeypatch) -> None:
    async def always_locked(db, year):
        raise OperationalError("UPDATE system_config", {}, Exception("database is locked"))

    monkeypatch.setattr(receipts, "_increment", always_locked)
    monkeypatch.setattr(settings, "receipt_emergency_fallback", False)
    with pytest.raises(ConcurrencyConflict):
        await next_receipt_number(db_session, today=date(2026, 5, 1))


@pytest.mark.asyncio
async def test_emergency_fallback_is_flagged(db_session: AsyncSession, monkeypatch) -> None:
    async def always_locked(db, year):
        raise OperationalError("UPDATE system_config", {}, Exception("database is locked"))

    monkeypatch.setattr(receipts, "_increment", always_locked)
    monkeypatch.setattr(settings, "receipt_emergency_fallback", True)
    receipt = await next_receipt_number(db_session, today=date(2026, 5, 1))
    assert receipt.is_emergency is True
    assert receipt.sequence is None
    assert re.fullmatch(r"RCP/2026/E\d+", receipt.number)


def test_emergency_numbers_do_not_wrap(monkeypatch) -> None:
    """Numbers issued 100 s apart share their last five millisecond digits but must still differ."""
    clock = iter([1_767_225_600_000_000_000, 1_767_225_700_000_000_000])
    monkeypatch.setattr(receipts, "time", SimpleNamespace(time_ns=lambda: next(clock)))
    first = receipts._emergency_receipt("2026").number
    second = receipts._emergency_receipt("2026").number
    assert first != second
    assert re.fullmatch(r"RCP/2026/E1767225600000\d{4}", first)
    assert re.fullmatch(r"RCP/2026/E1767225700000\d{4}", second)
