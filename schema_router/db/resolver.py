"""Tenant resolution: client id or public slug -> client schema."""

import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schema_router.db.errors import TenantNotFound
from schema_router.db.tenancy import ClientId, Slug, TenantSchema, is_tenant_schema_name
from schema_router.utils.metrics import PrometheusSchemaMetrics

logger = logging.getLogger(__name__)

# Backslash escapes the LIKE wildcard so only a literal "client_" matches
_LIST_TENANT_SCHEMAS_SQL = (
    "SELECT schema_name FROM information_schema.schemata "
    "WHERE schema_name LIKE 'client\\_%'"
)


@dataclass(frozen=True)
class ProfileMatch:
    """Where a slug's link profile lives."""

    schema: TenantSchema
    profile_id: int
    user_id: int


async def list_tenant_schemas(conn: AsyncConnection) -> list[TenantSchema]:
    """List every existing client schema, in catalog order."""
    result = await conn.execute(text(_LIST_TENANT_SCHEMAS_SQL))
    return [TenantSchema.parse(name) for (name,) in result if is_tenant_schema_name(name)]


async def _probe_schema(conn: AsyncConnection, schema: TenantSchema, slug: str) -> ProfileMatch | None:
    # Savepoint per probe: a schema without link_profiles must not abort
    # the transaction the remaining probes run in
    try:
        async with conn.begin_nested():
            result = await conn.execute(
                text(
                    f"SELECT id, user_id FROM {schema.identifier}.link_profiles "
                    "WHERE slug = :slug LIMIT 1"
                ),
                {"slug": slug},
            )
            row = result.first()
    except SQLAlchemyError as e:
        logger.warning(f"[resolve] skipping {schema.name} for slug {slug!r}: {type(e).__name__}")
        return None

    if row is None:
        return None
    return ProfileMatch(schema=schema, profile_id=int(row.id), user_id=int(row.user_id))


class TenantResolver:
    """Maps request identifiers to client schemas. Read-only."""

    def __init__(
        self,
        engine: AsyncEngine,
        metrics: PrometheusSchemaMetrics | None = None,
    ) -> None:
        self._engine = engine
        self._metrics = metrics or PrometheusSchemaMetrics()

    async def resolve(self, identifier: ClientId | Slug) -> TenantSchema:
        """Resolve a client id (no I/O) or a slug (schema scan).

        Raises:
            TenantNotFound: If no client schema has a profile with the slug
            InvalidTenantIdentifier: If the client id is not positive
        """
        if isinstance(identifier, ClientId):
            return TenantSchema(identifier.value)

        match = await self.find_profile_by_slug(identifier.value)
        return match.schema

    async def find_profile_by_slug(self, slug: str) -> ProfileMatch:
        """Scan client schemas for the profile with ``slug``.

        The first schema whose profile table contains the slug wins. Scan
        order follows the catalog and is not guaranteed to be stable; a
        slug present in several schemas has no defined winner.

        Raises:
            TenantNotFound: If no schema's profile table contains the slug
        """
        async with self._engine.connect() as conn:
            schemas = await list_tenant_schemas(conn)
            for schema in schemas:
                match = await _probe_schema(conn, schema, slug)
                if match is not None:
                    logger.info(f"[resolve] slug {slug!r} -> {schema.name}")
                    self._metrics.inc_slug_resolution("found")
                    return match

        logger.warning(f"[resolve] no profile for slug {slug!r} in {len(schemas)} schemas")
        self._metrics.inc_slug_resolution("not_found")
        raise TenantNotFound(slug)
