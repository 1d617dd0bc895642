"""Tenant identity: client ids, public slugs and client schema names.

A client's tables live in the PostgreSQL schema ``client_<id>``. Code outside
this module never builds that name by hand; it holds a ``TenantSchema`` and
asks it for ``name`` (catalog lookups) or ``identifier`` (SQL text).
"""

import re
from dataclasses import dataclass

from schema_router.db.errors import InvalidTenantIdentifier

TENANT_SCHEMA_PREFIX = "client_"
DEFAULT_SCHEMA = "public"

_TENANT_SCHEMA_RE = re.compile(r"client_([1-9][0-9]*)")
_DIGITS_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ClientId:
    """Numeric account id, already authenticated by the caller."""

    value: int


@dataclass(frozen=True)
class Slug:
    """Public profile slug, resolved by scanning client schemas."""

    value: str


@dataclass(frozen=True, order=True)
class TenantSchema:
    """Physical schema holding one client's tables."""

    client_id: int

    def __post_init__(self) -> None:
        if isinstance(self.client_id, bool) or not isinstance(self.client_id, int):
            raise InvalidTenantIdentifier(f"client id must be an int, got {self.client_id!r}")
        if self.client_id < 1:
            raise InvalidTenantIdentifier(f"client id must be positive, got {self.client_id}")

    @property
    def name(self) -> str:
        """Schema name as stored in the catalog, e.g. ``client_42``."""
        return f"{TENANT_SCHEMA_PREFIX}{self.client_id}"

    @property
    def identifier(self) -> str:
        """Double-quoted identifier for use in SQL text."""
        # Safe to quote verbatim: name is always client_ followed by digits
        return f'"{self.name}"'

    @classmethod
    def parse(cls, name: str) -> "TenantSchema":
        """Parse an existing schema name such as ``client_42``."""
        match = _TENANT_SCHEMA_RE.fullmatch(name)
        if match is None:
            raise InvalidTenantIdentifier(f"not a client schema name: {name!r}")
        return cls(int(match.group(1)))

    @classmethod
    def from_header(cls, value: str) -> "TenantSchema":
        """Parse a raw X-Client-ID header: ``42`` or ``client_42``."""
        value = value.strip()
        if value.startswith(TENANT_SCHEMA_PREFIX):
            return cls.parse(value)
        if _DIGITS_RE.fullmatch(value) is None:
            raise InvalidTenantIdentifier(f"invalid client id: {value!r}")
        return cls(int(value))

    def __str__(self) -> str:
        return self.name


def is_tenant_schema_name(name: str) -> bool:
    """Return True if ``name`` follows the client schema naming convention."""
    return _TENANT_SCHEMA_RE.fullmatch(name) is not None
