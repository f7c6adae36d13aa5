# tests/integration/conftest.py
"""Integration test fixtures - real SQLAlchemy stores on a throwaway SQLite file, scripted ClientTether"""

import pytest
import pytest_asyncio
from functools import partial
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portal_sync.database import Base
from portal_sync.models import Tenant, TenantStatus
from portal_sync.repositories import Repositories, open_repositories


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    """Fresh database file per test, schema created from the models"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal_sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def sql_repos(session):
    return Repositories.for_session(session)


@pytest.fixture
def sql_unit_of_work(session_factory):
    """Opens a new session per unit of work, like production"""
    return partial(open_repositories, session_factory)


@pytest_asyncio.fixture
async def db_tenant(session):
    """Active tenant with credentials"""
    tenant = Tenant(
        name="Integration Co",
        timezone="America/New_York",
        status=TenantStatus.ACTIVE,
        clienttether_web_key="wk_integration",
        clienttether_access_token="at_integration",
    )
    session.add(tenant)
    await session.commit()
    return tenant
