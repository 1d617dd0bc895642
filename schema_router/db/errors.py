"""Exception types raised by the schema routing layer.

None of these carry HTTP semantics; route handlers map them to responses.
"""


class NotFound(Exception):
    """A tenant or a row inside a tenant schema does not exist."""

    pass


class TenantNotFound(NotFound):
    """No tenant schema's profile table contains the requested slug."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"no tenant schema has a profile with slug {slug!r}")
        self.slug = slug


class RowNotFound(NotFound):
    """A requested row does not exist within the resolved schema."""

    def __init__(self, schema: str, table: str, key: object) -> None:
        super().__init__(f"{table} row {key!r} not found in schema {schema}")
        self.schema = schema
        self.table = table
        self.key = key


class SlugTaken(Exception):
    """Another profile, in any client schema, already uses the slug."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"slug {slug!r} is already used by another profile")
        self.slug = slug


class InvalidTenantIdentifier(ValueError):
    """Client id or schema name does not follow the client_<id> convention."""

    pass


class ProvisioningFailure(Exception):
    """Schema, table, column or constraint creation failed.

    Not retried automatically. The whole ensure run is rolled back, so the
    schema is left as it was found; calling ensure again converges.
    """

    def __init__(self, schema: str, message: str, failed_steps: list[str] | None = None) -> None:
        super().__init__(f"provisioning {schema} failed: {message}")
        self.schema = schema
        self.failed_steps = failed_steps or []


class PathResetFailure(Exception):
    """Restoring the default search_path failed.

    Only ever logged; it must not replace the scoped operation's own
    result or error.
    """

    def __init__(self, schema: str) -> None:
        super().__init__(f"could not restore search_path after scoped use of {schema}")
        self.schema = schema
