"""Shared test fixtures."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import settings
from src.models.base import Base

_LEDGER_TABLES = "fee_claims, distributions, claim_locks, launched_tokens"


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a fresh engine per test with NullPool to avoid loop mismatch.

    The SQL stores commit in their own short sessions, so cleanup truncates
    the ledger tables instead of rolling back. Skips when Postgres is down.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=False,
        poolclass=NullPool,
    )
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text(f"TRUNCATE {_LEDGER_TABLES} RESTART IDENTITY"))
    except (OSError, OperationalError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL unavailable: {e}")

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE {_LEDGER_TABLES} RESTART IDENTITY"))
    await engine.dispose()
