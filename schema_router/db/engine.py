"""Database engine and connection helpers."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from schema_router.config import PLACEHOLDER_POSTGRES_URL, Settings, get_settings


def async_database_url(settings: Settings) -> str:
    """Return the configured database URL using the asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL is unset, empty or still the placeholder.
    """
    database_url = settings.database_url or settings.postgres_url

    if not database_url or database_url == PLACEHOLDER_POSTGRES_URL:
        raise ValueError(
            "DATABASE_URL must be set to a valid connection string. "
            "Please configure the database_url setting."
        )

    # Convert postgresql:// to postgresql+asyncpg://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return database_url


def create_async_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create async SQLAlchemy engine from settings.

    Every pooled connection starts with the driver default search_path,
    which for client schemas is always "public".
    """
    connect_args: dict[str, Any] = {}
    if settings.db_statement_timeout_ms > 0:
        connect_args["server_settings"] = {
            "statement_timeout": str(settings.db_statement_timeout_ms)
        }

    return create_async_engine(
        async_database_url(settings),
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        echo=False,
        connect_args=connect_args,
    )


_async_engine: AsyncEngine | None = None


def get_async_engine() -> AsyncEngine:
    """Get global async engine instance."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine_from_settings(get_settings())
    return _async_engine


async def dispose_async_engine() -> None:
    """Dispose the global engine, closing pooled connections."""
    global _async_engine
    if _async_engine is not None:
        await _async_engine.dispose()
        _async_engine = None

