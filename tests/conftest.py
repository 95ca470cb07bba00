import os
from datetime import date
from typing import AsyncGenerator, Callable, Iterable, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from schoolfees.core.models import Guardian, Student
from schoolfees.db.session import Base, get_db
from schoolfees.main import app


TODAY = date(2026, 3, 2)


@pytest.fixture()
def today() -> date:
    """Fixed business date for service calls."""
    return TODAY


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite DB per test so concurrent sessions get their own connections."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}"
    engine = create_async_engine(url, echo=False, future=True, connect_args={"timeout": 30})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app; each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def seed_class(db_session: AsyncSession) -> Callable:
    """Insert a guardian and active students into a class. Returns the student ids."""

    async def _seed(
        class_id: str = "C1",
        student_ids: Iterable[str] = ("S1",),
        class_name: Optional[str] = "JSS 1",
        inactive_ids: Iterable[str] = (),
    ) -> list:
        guardian = await db_session.get(Guardian, "G1")
        if guardian is None:
            db_session.add(Guardian(id="G1", first_name="Ada", last_name="Okafor", phone_number="+2348000000000"))
        ids = list(student_ids)
        inactive = list(inactive_ids)
        for i, sid in enumerate(ids + inactive):
            db_session.add(
                Student(
                    id=sid,
                    first_name=f"Student{i}",
                    last_name="Test",
                    admission_number=f"ADM{i:03d}",
                    class_id=class_id,
                    class_name=class_name,
                    parent_id="G1",
                    is_active=sid not in inactive,
                )
            )
        await db_session.commit()
        return ids

    return _seed
