"""Ensure client schemas from the command line.

Usage:
    python -m scripts.provision_schemas 42 43
    python -m scripts.provision_schemas --all
"""

import argparse
import asyncio
import sys

from schema_router.config import get_settings
from schema_router.db.engine import dispose_async_engine, get_async_engine
from schema_router.db.errors import ProvisioningFailure
from schema_router.db.resolver import list_tenant_schemas
from schema_router.db.router import SchemaRouter
from schema_router.db.tenancy import TenantSchema
from schema_router.utils.logging import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or repair client schemas.")
    parser.add_argument("client_ids", nargs="*", help="client ids or client_<id> schema names")
    parser.add_argument(
        "--all",
        dest="all_schemas",
        action="store_true",
        help="re-ensure every existing client_* schema",
    )
    args = parser.parse_args(argv)
    if not args.client_ids and not args.all_schemas:
        parser.error("give at least one client id or --all")
    return args


async def provision(router: SchemaRouter, schemas: list[TenantSchema]) -> int:
    """Ensure each schema in turn, printing one line per schema.

    Returns:
        Number of schemas that failed or have constraints still missing
    """
    failures = 0
    for schema in schemas:
        try:
            report = await router.ensure(schema)
        except ProvisioningFailure as e:
            failures += 1
            print(f"  ✗ {schema.name}: {e}")
            continue

        if report.failed_constraints:
            failures += 1
            print(f"  ⚠ {schema.name}: missing constraints {', '.join(report.failed_constraints)}")
        elif report.changed:
            print(f"  ✓ {schema.name}: applied {len(report.applied)} steps")
        else:
            print(f"  ✓ {schema.name}: up to date")
    return failures


async def run(args: argparse.Namespace) -> int:
    engine = get_async_engine()
    try:
        schemas = [TenantSchema.from_header(value) for value in args.client_ids]
        if args.all_schemas:
            async with engine.connect() as conn:
                existing = await list_tenant_schemas(conn)
            schemas = sorted(set(schemas) | set(existing))

        print(f"Provisioning {len(schemas)} client schemas")
        failures = await provision(SchemaRouter(engine), schemas)
    finally:
        await dispose_async_engine()

    print(f"Done: {len(schemas) - failures}/{len(schemas)} ok")
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    """Provision the requested client schemas."""
    args = parse_args(argv)
    configure_logging(get_settings().log_level)
    try:
        return asyncio.run(run(args))
    except ValueError as e:
        # Malformed client id or missing DATABASE_URL
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
