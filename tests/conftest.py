from datetime import datetime

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from showtimes.catalog.catalog import CatalogStore
from showtimes.database.database import Base, get_db
from showtimes.main import app
from showtimes.scheduling.scheduling import RoomLocks, Scheduler
from showtimes.schemas.schemas import MovieIn

DAY = datetime(2026, 3, 14)


def at(hour: int, minute: int = 0) -> datetime:
    """A wall-clock time on the test day."""
    return DAY.replace(hour=hour, minute=minute)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db_engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def room_locks():
    return RoomLocks()


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


@pytest.fixture
def scheduler(db, room_locks):
    return Scheduler(db, room_locks)


@pytest.fixture
def make_movie(catalog):
    async def _make(title="Dune", duration_minutes=120, **fields):
        return await catalog.create_movie(MovieIn(title=title, duration_minutes=duration_minutes, **fields))
    return _make


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
