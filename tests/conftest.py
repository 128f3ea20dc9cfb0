"""
Shared pytest fixtures.

Provides a per-test SQLite database (file-backed so that cache builds run on
their own connections, as they would in production), session fixtures and
the canonical marketplace scenario:

    vendor V --(INCOMING, $1.23 flat fee)--> coordinator C --(OUTGOING)--> storefront S

inside an open order cycle OC, carrying unit X priced $10.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from hubstock import models  # noqa: F401
from hubstock.database import Base
from hubstock.services.cache_service import InMemoryCache
from hubstock.services.products_cache_service import AvailabilityCache
from tests.factories import MarketplaceScenario, build_scenario


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def db_url(tmp_path) -> str:
    """Return test database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'hubstock_test.db'}"


@pytest_asyncio.fixture
async def async_engine(db_url: str):
    """Create async database engine with all tables."""
    engine = create_async_engine(db_url, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker:
    """Create async session factory."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the test body and the write services."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ============================================================================
# CACHE FIXTURES
# ============================================================================


@pytest.fixture
def backend() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def cache(backend, session_factory) -> AvailabilityCache:
    """Availability cache reading through its own sessions."""
    return AvailabilityCache(
        backend=backend,
        session_factory=session_factory,
        serve_stale=False,
        ttl=300,
        namespace="hubstock-test",
    )


# ============================================================================
# MARKETPLACE SCENARIO
# ============================================================================


@pytest_asyncio.fixture
async def scenario(db_session: AsyncSession) -> MarketplaceScenario:
    """Vendor V, coordinator C, storefront S, open order cycle OC, unit X at $10."""
    return await build_scenario(db_session)
