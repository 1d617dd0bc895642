"""Idempotent provisioning of client schemas.

Provisioning is expressed as desired state (the table specs below) compared
with observed state (catalog queries), applying only the difference:

1. create the schema
2. create missing tables, referenced tables first
3. legacy payload renames on form_responses
4. add missing columns (additive only, never drops)
5. add missing named foreign keys, each in its own savepoint

Running ``ensure`` on a converged schema issues no DDL.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from schema_router.db.errors import ProvisioningFailure
from schema_router.db.tenancy import TenantSchema
from schema_router.utils.logging import StructuredSchemaLogger
from schema_router.utils.metrics import PrometheusSchemaMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSpec:
    """A column of the baseline table definition."""

    name: str
    ddl: str
    # Definition used when the column is added to an existing table
    add_ddl: str | None = None
    primary_key: bool = False

    @property
    def definition_for_add(self) -> str:
        if self.add_ddl is not None:
            return self.add_ddl
        # Existing rows would violate NOT NULL without a default
        if "NOT NULL" in self.ddl and "DEFAULT" not in self.ddl:
            return self.ddl.replace(" NOT NULL", "")
        return self.ddl


@dataclass(frozen=True)
class TableSpec:
    """A table every client schema must contain."""

    name: str
    columns: tuple[ColumnSpec, ...]
    # Inline table constraints; {schema} is replaced by the quoted schema
    inline_constraints: tuple[str, ...] = ()

    @property
    def column_names(self) -> set[str]:
        return {column.name for column in self.columns}


@dataclass(frozen=True)
class ConstraintSpec:
    """A named foreign key repaired by name."""

    name: str
    table: str
    column: str
    ref_table: str
    on_delete: str


@dataclass(frozen=True)
class RenameSpec:
    """Legacy column rename, applied only while ``new`` is absent."""

    table: str
    old: str
    new: str


_CREATED_AT = ColumnSpec("created_at", "TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()")
_UPDATED_AT = ColumnSpec("updated_at", "TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()")
_ID = ColumnSpec("id", "SERIAL PRIMARY KEY", primary_key=True)

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        "link_profiles",
        (
            _ID,
            ColumnSpec("user_id", "INTEGER NOT NULL"),
            ColumnSpec("slug", "VARCHAR(100) NOT NULL"),
            ColumnSpec("title", "VARCHAR(100) NOT NULL"),
            ColumnSpec("description", "TEXT"),
            ColumnSpec("background_color", "VARCHAR(20) DEFAULT '#ffffff'"),
            ColumnSpec("text_color", "VARCHAR(20) DEFAULT '#000000'"),
            ColumnSpec("accent_color", "VARCHAR(20) DEFAULT '#70C7BA'"),
            ColumnSpec("logo_url", "TEXT"),
            ColumnSpec("views", "INTEGER DEFAULT 0"),
            ColumnSpec("background_image", "TEXT"),
            ColumnSpec("background_pattern", "TEXT"),
            ColumnSpec("button_style", "VARCHAR(20) DEFAULT 'rounded'"),
            ColumnSpec("button_radius", "INTEGER DEFAULT 8"),
            ColumnSpec("font_family", "VARCHAR(50) DEFAULT 'Inter'"),
            ColumnSpec("animation", "VARCHAR(30) DEFAULT 'fade'"),
            ColumnSpec("custom_css", "TEXT"),
            ColumnSpec("custom_theme", "JSONB"),
            ColumnSpec("background_saturation", "INTEGER DEFAULT 100"),
            ColumnSpec("background_hue_rotate", "INTEGER DEFAULT 0"),
            ColumnSpec("background_sepia", "INTEGER DEFAULT 0"),
            ColumnSpec("background_grayscale", "INTEGER DEFAULT 0"),
            ColumnSpec("background_invert", "INTEGER DEFAULT 0"),
            ColumnSpec("background_color_filter", "VARCHAR(20)"),
            ColumnSpec("background_color_filter_opacity", "REAL DEFAULT 0.3"),
            _CREATED_AT,
            _UPDATED_AT,
            ColumnSpec("is_paused", "BOOLEAN DEFAULT false"),
        ),
    ),
    TableSpec(
        "links",
        (
            _ID,
            ColumnSpec("profile_id", "INTEGER NOT NULL"),
            ColumnSpec("title", "VARCHAR(100) NOT NULL"),
            ColumnSpec("url", "TEXT NOT NULL"),
            ColumnSpec("icon", "VARCHAR(255)"),
            ColumnSpec("enabled", "BOOLEAN DEFAULT true"),
            ColumnSpec("clicks", "INTEGER DEFAULT 0"),
            ColumnSpec("position", "INTEGER DEFAULT 0"),
            ColumnSpec("featured", "BOOLEAN DEFAULT false"),
            ColumnSpec("custom_color", "VARCHAR(20)"),
            ColumnSpec("custom_text_color", "VARCHAR(20)"),
            ColumnSpec("animation", "VARCHAR(30)"),
            ColumnSpec("type", "VARCHAR(20) DEFAULT 'link'"),
            ColumnSpec("form_definition", "JSONB"),
            _CREATED_AT,
            _UPDATED_AT,
            ColumnSpec("button_style", "VARCHAR(20)"),
            ColumnSpec("user_id", "INTEGER"),
        ),
    ),
    TableSpec(
        "forms",
        (
            _ID,
            ColumnSpec("user_id", "INTEGER NOT NULL"),
            ColumnSpec("title", "VARCHAR(100) NOT NULL"),
            ColumnSpec("description", "TEXT"),
            ColumnSpec("fields", "JSONB NOT NULL", add_ddl="JSONB NOT NULL DEFAULT '[]'::jsonb"),
            _CREATED_AT,
            _UPDATED_AT,
        ),
    ),
    TableSpec(
        "form_responses",
        (
            _ID,
            ColumnSpec("link_id", "INTEGER"),
            ColumnSpec("form_id", "INTEGER"),
            ColumnSpec(
                "response_data",
                "JSONB NOT NULL",
                add_ddl="JSONB NOT NULL DEFAULT '{}'::jsonb",
            ),
            ColumnSpec("ip_address", "TEXT"),
            ColumnSpec("user_agent", "TEXT"),
            _CREATED_AT,
        ),
    ),
    TableSpec(
        "form_submissions",
        (
            _ID,
            ColumnSpec("link_id", "INTEGER"),
            ColumnSpec("form_id", "INTEGER"),
            ColumnSpec(
                "form_data",
                "JSONB NOT NULL",
                add_ddl="JSONB NOT NULL DEFAULT '{}'::jsonb",
            ),
            ColumnSpec("ip_address", "TEXT"),
            ColumnSpec("user_agent", "TEXT"),
            _CREATED_AT,
        ),
    ),
    TableSpec(
        "link_forms",
        (
            _ID,
            ColumnSpec("link_id", "INTEGER NOT NULL"),
            ColumnSpec("form_id", "INTEGER NOT NULL"),
            _CREATED_AT,
        ),
        inline_constraints=(
            "FOREIGN KEY (link_id) REFERENCES {schema}.links(id) ON DELETE CASCADE",
            "FOREIGN KEY (form_id) REFERENCES {schema}.forms(id) ON DELETE CASCADE",
        ),
    ),
)

LEGACY_RENAMES: tuple[RenameSpec, ...] = (
    RenameSpec("form_responses", "data", "response_data"),
    RenameSpec("form_responses", "form_data", "response_data"),
)

CONSTRAINTS: tuple[ConstraintSpec, ...] = (
    ConstraintSpec("fk_form_responses_form", "form_responses", "form_id", "forms", "CASCADE"),
    ConstraintSpec("fk_form_responses_link", "form_responses", "link_id", "links", "SET NULL"),
    ConstraintSpec("fk_form_submissions_link", "form_submissions", "link_id", "links", "CASCADE"),
    ConstraintSpec("fk_form_submissions_form", "form_submissions", "form_id", "forms", "SET NULL"),
)

TABLE_NAMES: tuple[str, ...] = tuple(table.name for table in TABLES)
CONSTRAINT_NAMES: tuple[str, ...] = tuple(constraint.name for constraint in CONSTRAINTS)


@dataclass
class ObservedSchema:
    """What the catalog reports for one client schema."""

    schema_exists: bool = False
    # table name -> column names
    columns: dict[str, set[str]] = field(default_factory=dict)
    foreign_keys: set[str] = field(default_factory=set)

    def has_table(self, table: str) -> bool:
        return table in self.columns


@dataclass(frozen=True)
class DdlStep:
    """One DDL statement of a provisioning plan."""

    kind: str
    table: str | None
    sql: str
    column: str | None = None
    new_column: str | None = None
    constraint: str | None = None

    @property
    def target(self) -> str:
        if self.constraint:
            return self.constraint
        if self.table and self.column:
            return f"{self.table}.{self.column}"
        return self.table or "schema"


@dataclass
class ProvisioningReport:
    """Outcome of one ensure() call."""

    schema: str
    applied: list[str] = field(default_factory=list)
    failed_constraints: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


def _create_table_sql(schema: TenantSchema, table: TableSpec) -> str:
    parts = [f"{column.name} {column.ddl}" for column in table.columns]
    parts.extend(c.format(schema=schema.identifier) for c in table.inline_constraints)
    body = ",\n  ".join(parts)
    return f'CREATE TABLE IF NOT EXISTS {schema.identifier}."{table.name}" (\n  {body}\n)'


def plan(schema: TenantSchema, observed: ObservedSchema) -> list[DdlStep]:
    """Compute the DDL that brings ``observed`` to the desired state.

    Pure function of its inputs; an empty list means the schema is
    already converged.
    """
    steps: list[DdlStep] = []

    if not observed.schema_exists:
        steps.append(
            DdlStep("create_schema", None, f"CREATE SCHEMA IF NOT EXISTS {schema.identifier}")
        )

    for table in TABLES:
        if not observed.has_table(table.name):
            steps.append(DdlStep("create_table", table.name, _create_table_sql(schema, table)))

    # Column state after renames, per pre-existing table
    projected = {name: set(cols) for name, cols in observed.columns.items()}

    for rename in LEGACY_RENAMES:
        existing = projected.get(rename.table)
        if existing is None:
            continue
        if rename.new in existing or rename.old not in existing:
            continue
        steps.append(
            DdlStep(
                "rename_column",
                rename.table,
                f'ALTER TABLE {schema.identifier}."{rename.table}" '
                f'RENAME COLUMN "{rename.old}" TO "{rename.new}"',
                column=rename.old,
                new_column=rename.new,
            )
        )
        existing.discard(rename.old)
        existing.add(rename.new)

    for table in TABLES:
        existing = projected.get(table.name)
        if existing is None:
            continue
        for column in table.columns:
            if column.primary_key or column.name in existing:
                continue
            steps.append(
                DdlStep(
                    "add_column",
                    table.name,
                    f'ALTER TABLE {schema.identifier}."{table.name}" '
                    f"ADD COLUMN IF NOT EXISTS {column.name} {column.definition_for_add}",
                    column=column.name,
                )
            )

    for constraint in CONSTRAINTS:
        if constraint.name in observed.foreign_keys:
            continue
        steps.append(
            DdlStep(
                "add_constraint",
                constraint.table,
                f'ALTER TABLE {schema.identifier}."{constraint.table}" '
                f"ADD CONSTRAINT {constraint.name} "
                f"FOREIGN KEY ({constraint.column}) "
                f'REFERENCES {schema.identifier}."{constraint.ref_table}"(id) '
                f"ON DELETE {constraint.on_delete}",
                column=constraint.column,
                constraint=constraint.name,
            )
        )

    return steps


async def observe(conn: AsyncConnection, schema: TenantSchema) -> ObservedSchema:
    """Read the current structure of ``schema`` from the catalog."""
    params = {"schema": schema.name}

    exists = await conn.execute(
        text("SELECT 1 FROM pg_namespace WHERE nspname = :schema"), params
    )
    if exists.first() is None:
        return ObservedSchema(schema_exists=False)

    observed = ObservedSchema(schema_exists=True)

    tables = await conn.execute(
        text("SELECT tablename FROM pg_tables WHERE schemaname = :schema"), params
    )
    for (table_name,) in tables:
        observed.columns[table_name] = set()

    columns = await conn.execute(
        text(
            "SELECT table_name, column_name FROM information_schema.columns "
            "WHERE table_schema = :schema"
        ),
        params,
    )
    for table_name, column_name in columns:
        if table_name in observed.columns:
            observed.columns[table_name].add(column_name)

    constraints = await conn.execute(
        text(
            "SELECT constraint_name FROM information_schema.table_constraints "
            "WHERE constraint_type = 'FOREIGN KEY' AND table_schema = :schema"
        ),
        params,
    )
    observed.foreign_keys = {name for (name,) in constraints}

    return observed


class SchemaProvisioner:
    """Ensures client schemas contain the full expected structure."""

    def __init__(
        self,
        engine: AsyncEngine,
        metrics: PrometheusSchemaMetrics | None = None,
        structured_logger: StructuredSchemaLogger | None = None,
    ) -> None:
        self._engine = engine
        self._metrics = metrics or PrometheusSchemaMetrics()
        self._logger = structured_logger or StructuredSchemaLogger()

    async def ensure(self, schema: TenantSchema) -> ProvisioningReport:
        """Create whatever part of ``schema`` is missing.

        Safe to call on every request: a converged schema costs one
        advisory lock and three catalog reads. Concurrent calls for the
        same schema are serialised by the lock.

        Raises:
            ProvisioningFailure: If schema, table or column DDL fails
        """
        report = ProvisioningReport(schema=schema.name)
        current: DdlStep | None = None

        try:
            async with self._engine.connect() as conn:
                async with conn.begin():
                    await conn.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:schema))"),
                        {"schema": schema.name},
                    )
                    observed = await observe(conn, schema)
                    steps = plan(schema, observed)
                    for current in steps:
                        await self._apply(conn, schema, current, report)
        except SQLAlchemyError as e:
            self._metrics.inc_provision_run("error")
            logger.error(f"[provision] {schema.name} failed: {type(e).__name__}: {e}")
            raise ProvisioningFailure(
                schema.name,
                f"{type(e).__name__}: {e}",
                failed_steps=[current.target] if current else [],
            ) from e

        if report.failed_constraints:
            self._metrics.inc_provision_run("partial")
        else:
            self._metrics.inc_provision_run("changed" if report.changed else "noop")
        return report

    async def _apply(
        self,
        conn: AsyncConnection,
        schema: TenantSchema,
        step: DdlStep,
        report: ProvisioningReport,
    ) -> None:
        if step.kind != "add_constraint":
            await conn.execute(text(step.sql))
            report.applied.append(f"{step.kind}:{step.target}")
            self._metrics.inc_provision_step(step.kind, "applied")
            self._logger.log_ddl_step(schema.name, step.kind, step.target, "applied")
            return

        # Orphaned legacy rows can make a single foreign key impossible to
        # add; isolate it so the remaining constraints still get created
        try:
            async with conn.begin_nested():
                await conn.execute(text(step.sql))
        except SQLAlchemyError as e:
            report.failed_constraints.append(step.target)
            self._metrics.inc_provision_step(step.kind, "failed")
            self._logger.log_ddl_step(
                schema.name, step.kind, step.target, f"failed: {type(e).__name__}"
            )
            return

        report.applied.append(f"{step.kind}:{step.target}")
        self._metrics.inc_provision_step(step.kind, "applied")
        self._logger.log_ddl_step(schema.name, step.kind, step.target, "applied")
