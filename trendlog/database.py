"""
T3000 Trendlog Store — Async SQLAlchemy database setup.

Two physically separate stores:
  * application store  — sync ledger, collection status
  * time-series store  — partition directory + trendlog rows
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from trendlog.config import settings


def _make_engine(url: str):
    return create_async_engine(
        url,
        echo=False,
        # pool settings only for non-sqlite servers
        **(
            {}
            if "sqlite" in url
            else {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 300,
            }
        ),
    )


app_engine = _make_engine(settings.app_database_url)
timeseries_engine = _make_engine(settings.timeseries_database_url)

app_session = async_sessionmaker(app_engine, class_=AsyncSession, expire_on_commit=False)
timeseries_session = async_sessionmaker(
    timeseries_engine, class_=AsyncSession, expire_on_commit=False
)


class AppBase(DeclarativeBase):
    pass


class TimeseriesBase(DeclarativeBase):
    pass


async def init_db(app_eng=None, ts_eng=None) -> None:
    """Create all tables on both stores (used in lifespan and tests)."""
    # models must be imported so their tables are registered on the bases
    import trendlog.models  # noqa: F401

    async with (app_eng or app_engine).begin() as conn:
        await conn.run_sync(AppBase.metadata.create_all)
    async with (ts_eng or timeseries_engine).begin() as conn:
        await conn.run_sync(TimeseriesBase.metadata.create_all)


async def close_db() -> None:
    await app_engine.dispose()
    await timeseries_engine.dispose()
