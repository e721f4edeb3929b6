"""
Shared test fixtures — two file-backed stores, wired services, FastAPI test client.

File databases (not ``:memory:``) so concurrent sessions really use separate
SQLite connections and exercise the store's locking.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from trendlog.config import Settings
from trendlog.database import init_db
from trendlog.main import app
from trendlog.services.registry import build_services

# 2025-01-25T00:00:00Z / 2025-03-01T00:00:00Z
T_DAY = 1737763200
NOW = 1740787200
DAY = 86400


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        app_database_url=f"sqlite+aiosqlite:///{tmp_path / 'app.db'}",
        timeseries_database_url=f"sqlite+aiosqlite:///{tmp_path / 'timeseries.db'}",
        scheduler_enabled=False,
        query_page_size=2,
        sync_keep_count=10,
    )


@pytest_asyncio.fixture()
async def engines(test_settings):
    app_eng = create_async_engine(test_settings.app_database_url, echo=False)
    ts_eng = create_async_engine(
        test_settings.timeseries_database_url, echo=False, connect_args={"timeout": 30}
    )
    await init_db(app_eng, ts_eng)
    yield app_eng, ts_eng
    await app_eng.dispose()
    await ts_eng.dispose()


@pytest.fixture
def app_sessions(engines):
    return async_sessionmaker(engines[0], expire_on_commit=False)


@pytest.fixture
def ts_sessions(engines):
    return async_sessionmaker(engines[1], expire_on_commit=False)


@pytest.fixture
def services(engines, app_sessions, ts_sessions, test_settings):
    return build_services(app_sessions, ts_sessions, engines[1], test_settings)


@pytest_asyncio.fixture()
async def client(services):
    """FastAPI test client with test services injected (lifespan is not run)."""
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.services
