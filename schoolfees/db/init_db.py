"""
Create the fee tables and the receipt counter row.

Run once per database with DATABASE_URL set:
  python -m schoolfees.db.init_db

Creates:
- every table registered on Base (fee_structures, student_fee_status, fee_payments,
  system_config, fee_audit_logs, students, guardians) if missing
- system_config row 'receipt_number' for the current year (if not exists)
"""
import asyncio
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.core.config import settings
from schoolfees.core.models import RECEIPT_COUNTER_NAME, SystemCounter
from schoolfees.db.session import AsyncSessionLocal, Base, engine


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_receipt_counter(db: AsyncSession) -> None:
    counter = await db.get(SystemCounter, RECEIPT_COUNTER_NAME)
    if counter:
        print(f"Receipt counter exists: year={counter.year} last_number={counter.last_number}")
        return
    db.add(
        SystemCounter(
            name=RECEIPT_COUNTER_NAME,
            prefix=settings.receipt_prefix,
            year=str(date.today().year),
            last_number=0,
        )
    )
    await db.commit()
    print("Created receipt counter.")


async def main() -> None:
    await create_tables()
    async with AsyncSessionLocal() as db:
        try:
            await seed_receipt_counter(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
