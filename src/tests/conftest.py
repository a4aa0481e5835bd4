import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from librarydesk.db import Base, make_engine
from librarydesk.auth import Actor
from librarydesk.models import Role
from librarydesk import models

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    # archivo temporal: la prueba de concurrencia necesita conexiones separadas
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()

@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        try:
            yield s
        finally:
            await s.rollback()

@pytest.fixture
def admin():
    return Actor(id="admin-1", name="Ada Admin", role=Role.ADMIN)

@pytest.fixture
def alice():
    return Actor(id="user-alice", name="Alice", role=Role.USER)

@pytest.fixture
def bob():
    return Actor(id="user-bob", name="Bob", role=Role.USER)
