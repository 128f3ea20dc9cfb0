"""Settings and database tests."""

import pytest
from pydantic import ValidationError

from hubstock.config import Settings
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from hubstock import database
from hubstock.database import get_db_session, init_db, normalize_database_url
from hubstock.models.enterprise import Enterprise


def test_defaults():
    config = Settings(_env_file=None)
    assert config.FEE_DECIMAL_PLACES == 2
    assert config.AVAILABILITY_SERVE_STALE is False


def test_log_level_is_normalized():
    assert Settings(_env_file=None, LOG_LEVEL=" debug ").LOG_LEVEL == "DEBUG"


def test_fee_places_bounded():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, FEE_DECIMAL_PLACES=9)


@pytest.mark.parametrize("url, expected", [
    ("postgresql://u:p@db/hub", "postgresql+psycopg://u:p@db/hub"),
    ("postgresql+asyncpg://u:p@db/hub", "postgresql+psycopg://u:p@db/hub"),
    ("sqlite+aiosqlite:///./hubstock.db", "sqlite+aiosqlite:///./hubstock.db"),
])
def test_database_url_normalized(url, expected):
    assert normalize_database_url(url) == expected


# ============================================================================
# DATABASE LIFECYCLE
# ============================================================================


async def test_init_db_creates_tables(monkeypatch, db_url):
    engine = create_async_engine(db_url, poolclass=NullPool)
    monkeypatch.setattr(database, "engine", engine)
    try:
        await init_db()
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

    assert {"enterprises", "variants", "exchange_variants", "inventory_items"} <= set(tables)


async def test_db_session_commits(monkeypatch, session_factory):
    monkeypatch.setattr(database, "async_session_factory", session_factory)

    async with get_db_session() as session:
        session.add(Enterprise(name="Committed"))

    async with session_factory() as session:
        names = (await session.execute(select(Enterprise.name))).scalars().all()
    assert names == ["Committed"]


async def test_db_session_rolls_back_on_error(monkeypatch, session_factory):
    monkeypatch.setattr(database, "async_session_factory", session_factory)

    with pytest.raises(RuntimeError):
        async with get_db_session() as session:
            session.add(Enterprise(name="Discarded"))
            await session.flush()
            raise RuntimeError("boom")

    async with session_factory() as session:
        names = (await session.execute(select(Enterprise.name))).scalars().all()
    assert names == []
