"""
Shared fixtures: a fresh SQLite database per test and a dictionary-backed
engagement reader.
"""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.database import build_session_factory
from competition_engine.orm.base import Base
from competition_engine.tests.factories import FakeEngagementReader


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'competitions_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(engagement_timeout_seconds=2.0)


@pytest.fixture
def reader() -> FakeEngagementReader:
    return FakeEngagementReader()
