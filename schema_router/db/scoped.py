"""Scoped execution of database work inside one client schema.

Per connection the search_path moves DEFAULT -> SCOPED(schema) -> DEFAULT.
The scoped state never outlives the block that set it: the reset runs on
success, on error and on cancellation, before the connection goes back to
the pool.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schema_router.db.errors import PathResetFailure
from schema_router.db.tenancy import DEFAULT_SCHEMA, TenantSchema
from schema_router.utils.logging import StructuredSchemaLogger
from schema_router.utils.metrics import PrometheusSchemaMetrics

T = TypeVar("T")

logger = logging.getLogger(__name__)

_LOCK_KEY = "schema_router.search_path_lock"

RESET_SEARCH_PATH_SQL = f"SET search_path TO {DEFAULT_SCHEMA}"


def set_search_path_sql(schema: TenantSchema) -> str:
    """SQL that scopes unqualified names to ``schema`` then public."""
    return f"SET search_path TO {schema.identifier}, {DEFAULT_SCHEMA}"


def _connection_lock(conn: AsyncConnection) -> asyncio.Lock:
    # conn.info lives with the pooled DBAPI connection, so every checkout of
    # the same physical connection shares one lock
    lock = conn.info.get(_LOCK_KEY)
    if lock is None:
        lock = asyncio.Lock()
        conn.info[_LOCK_KEY] = lock
    return lock


async def current_search_path(conn: AsyncConnection) -> str:
    """Return the connection's active search_path as PostgreSQL reports it."""
    result = await conn.execute(text("SHOW search_path"))
    return str(result.scalar_one())


async def _rollback_quietly(conn: AsyncConnection, schema: TenantSchema) -> None:
    try:
        await conn.rollback()
    except Exception:
        logger.exception("[scoped] rollback failed in %s", schema.name)


async def _reset_search_path(
    conn: AsyncConnection,
    schema: TenantSchema,
    metrics: PrometheusSchemaMetrics,
) -> None:
    try:
        await conn.execute(text(RESET_SEARCH_PATH_SQL))
        await conn.commit()
    except Exception as e:
        failure = PathResetFailure(schema.name)
        logger.error(f"[scoped] {failure}: {type(e).__name__}: {e}")
        metrics.inc_path_reset_failure()
        # A connection whose path is unknown must never serve another request
        try:
            await conn.invalidate(e)
        except Exception:
            logger.exception("[scoped] invalidating connection failed for %s", schema.name)


@asynccontextmanager
async def tenant_search_path(
    conn: AsyncConnection,
    schema: TenantSchema,
    metrics: PrometheusSchemaMetrics | None = None,
) -> AsyncIterator[AsyncConnection]:
    """Scope ``conn`` to ``schema`` for the duration of the block.

    Work done inside the block is committed on normal exit and rolled back
    when the block raises; the block's exception is re-raised unchanged.
    The search_path is then reset to public. A failed reset is logged and
    the connection invalidated, never raised.

    Args:
        conn: Connection to scope; must not be mid-transaction
        schema: Client schema to activate
        metrics: Metrics sink (defaults to Prometheus)

    Yields:
        The same connection, scoped to the client schema
    """
    metrics = metrics or PrometheusSchemaMetrics()

    async with _connection_lock(conn):
        await conn.execute(text(set_search_path_sql(schema)))
        # Commit so the setting survives the block's own rollback
        await conn.commit()
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await _rollback_quietly(conn, schema)
            raise
        finally:
            await _reset_search_path(conn, schema, metrics)


class ScopedExecutor:
    """Runs single operations on pooled connections scoped to a client schema."""

    def __init__(
        self,
        engine: AsyncEngine,
        metrics: PrometheusSchemaMetrics | None = None,
        structured_logger: StructuredSchemaLogger | None = None,
    ) -> None:
        self._engine = engine
        self._metrics = metrics or PrometheusSchemaMetrics()
        self._logger = structured_logger or StructuredSchemaLogger()

    async def run(
        self,
        schema: TenantSchema,
        operation: Callable[[AsyncConnection], Awaitable[T]],
    ) -> T:
        """Run ``operation`` with search_path set to ``schema``, public.

        Args:
            schema: Client schema to scope to
            operation: Coroutine function receiving the scoped connection

        Returns:
            Whatever the operation returns

        Raises:
            Exception: The operation's own error, after the path is reset
        """
        start = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                async with tenant_search_path(conn, schema, self._metrics):
                    result = await operation(conn)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self._metrics.record_scoped("error", elapsed_ms)
            self._logger.log_scoped(
                schema.name, "error", elapsed_ms, error_reason=type(e).__name__
            )
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._metrics.record_scoped("success", elapsed_ms)
        self._logger.log_scoped(schema.name, "success", elapsed_ms)
        return result
