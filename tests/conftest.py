"""Shared pytest fixtures for all test suites."""

import itertools
import os
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from schema_router.db.tenancy import TenantSchema

# Client ids handed out to postgres tests; far above real account ids
_TEST_CLIENT_IDS = itertools.count(990_001)


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.

    The pool holds a single connection so consecutive operations reuse the
    same session, which is what search_path restoration is about.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, pool_size=1, max_overflow=0, echo=False)

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not reachable: {type(e).__name__}")

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def fresh_schema(
    postgres_engine: AsyncEngine,
) -> AsyncGenerator[Callable[[], Awaitable[TenantSchema]], None]:
    """Factory for unused client schemas, dropped after the test.

    Usage:
        @pytest.mark.postgres
        async def test_something(postgres_engine, fresh_schema):
            schema = await fresh_schema()
    """
    created: list[TenantSchema] = []

    async def drop(schemas: list[TenantSchema]) -> None:
        async with postgres_engine.begin() as conn:
            for schema in schemas:
                await conn.execute(text(f"DROP SCHEMA IF EXISTS {schema.identifier} CASCADE"))

    async def factory() -> TenantSchema:
        schema = TenantSchema(next(_TEST_CLIENT_IDS))
        # Leftover from an interrupted earlier run
        await drop([schema])
        created.append(schema)
        return schema

    yield factory

    await drop(created)
