"""Schema router: resolve -> ensure -> run scoped."""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schema_router.db.engine import get_async_engine
from schema_router.db.provisioner import ProvisioningReport, SchemaProvisioner
from schema_router.db.resolver import ProfileMatch, TenantResolver
from schema_router.db.scoped import ScopedExecutor
from schema_router.db.tenancy import ClientId, Slug, TenantSchema
from schema_router.utils.metrics import PrometheusSchemaMetrics

T = TypeVar("T")


class SchemaRouter:
    """Entry point for per-client database work.

    Callers hand over an already authenticated client id or a public slug;
    the router does not authenticate.
    """

    def __init__(self, engine: AsyncEngine, metrics: PrometheusSchemaMetrics | None = None) -> None:
        metrics = metrics or PrometheusSchemaMetrics()
        self.resolver = TenantResolver(engine, metrics=metrics)
        self.provisioner = SchemaProvisioner(engine, metrics=metrics)
        self.executor = ScopedExecutor(engine, metrics=metrics)

    async def resolve(self, identifier: ClientId | Slug) -> TenantSchema:
        return await self.resolver.resolve(identifier)

    async def find_profile_by_slug(self, slug: str) -> ProfileMatch:
        return await self.resolver.find_profile_by_slug(slug)

    async def ensure(self, schema: TenantSchema) -> ProvisioningReport:
        return await self.provisioner.ensure(schema)

    async def run(
        self,
        schema: TenantSchema,
        operation: Callable[[AsyncConnection], Awaitable[T]],
    ) -> T:
        """Run ``operation`` scoped to an already ensured schema."""
        return await self.executor.run(schema, operation)

    async def run_for(
        self,
        identifier: ClientId | Slug,
        operation: Callable[[AsyncConnection], Awaitable[T]],
    ) -> T:
        """Full request flow: resolve, ensure structure, run scoped."""
        schema = await self.resolve(identifier)
        await self.ensure(schema)
        return await self.run(schema, operation)


_router: SchemaRouter | None = None


def get_schema_router() -> SchemaRouter:
    """Get the process-wide router bound to the global engine."""
    global _router
    if _router is None:
        _router = SchemaRouter(get_async_engine())
    return _router
