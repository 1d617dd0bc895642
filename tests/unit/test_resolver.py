"""Unit tests for tenant resolution with a fake catalog."""

import itertools
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import ProgrammingError

from schema_router.db.errors import InvalidTenantIdentifier, NotFound, TenantNotFound
from schema_router.db.resolver import TenantResolver
from schema_router.db.tenancy import ClientId, Slug, TenantSchema


class FakeResult:
    def __init__(self, rows: list[Any]) -> None:
        self._rows = rows

    def __iter__(self) -> Iterator[Any]:
        return iter(self._rows)

    def first(self) -> Any:
        return self._rows[0] if self._rows else None


class FakeCatalogConnection:
    """Serves the schema listing and per-schema profile lookups.

    ``profiles`` maps schema name -> {slug: (profile_id, user_id)}; a schema
    listed without an entry has no link_profiles table.
    """

    def __init__(self, schema_names: list[str], profiles: dict[str, dict[str, tuple[int, int]]]) -> None:
        self.schema_names = schema_names
        self.profiles = profiles
        self.probed: list[str] = []

    async def execute(self, clause: Any, params: Any = None) -> FakeResult:
        sql = str(clause)
        if "information_schema.schemata" in sql:
            return FakeResult([(name,) for name in self.schema_names])

        schema_name = sql.split('"')[1]
        self.probed.append(schema_name)
        if schema_name not in self.profiles:
            raise ProgrammingError(sql, params, Exception("relation does not exist"))
        match = self.profiles[schema_name].get(params["slug"])
        if match is None:
            return FakeResult([])
        return FakeResult([SimpleNamespace(id=match[0], user_id=match[1])])

    @asynccontextmanager
    async def begin_nested(self) -> AsyncIterator[None]:
        yield


class FakeEngine:
    def __init__(self, conn: FakeCatalogConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[FakeCatalogConnection]:
        yield self.conn


def _resolver(conn: FakeCatalogConnection, metrics: MagicMock | None = None) -> TenantResolver:
    return TenantResolver(FakeEngine(conn), metrics=metrics or MagicMock())  # type: ignore[arg-type]


class TestResolveClientId:
    """Direct client ids never touch the database."""

    @pytest.mark.asyncio
    async def test_client_id_fast_path(self) -> None:
        engine = MagicMock()
        resolver = TenantResolver(engine, metrics=MagicMock())

        schema = await resolver.resolve(ClientId(42))

        assert schema == TenantSchema(42)
        engine.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_client_id(self) -> None:
        resolver = TenantResolver(MagicMock(), metrics=MagicMock())

        with pytest.raises(InvalidTenantIdentifier):
            await resolver.resolve(ClientId(0))


class TestResolveSlug:
    """Slug resolution scans client schemas."""

    PROFILES = {
        "client_1": {"alice": (10, 1)},
        "client_2": {"bob": (20, 2)},
        "client_3": {},
    }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "order", list(itertools.permutations(["client_1", "client_2", "client_3"]))
    )
    async def test_outcome_independent_of_scan_order(self, order: tuple[str, ...]) -> None:
        conn = FakeCatalogConnection(list(order), self.PROFILES)

        schema = await _resolver(conn).resolve(Slug("bob"))

        assert schema == TenantSchema(2)

    @pytest.mark.asyncio
    async def test_find_profile_returns_owner(self) -> None:
        conn = FakeCatalogConnection(["client_1", "client_2"], self.PROFILES)
        metrics = MagicMock()

        match = await _resolver(conn, metrics).find_profile_by_slug("alice")

        assert match.schema == TenantSchema(1)
        assert match.profile_id == 10
        assert match.user_id == 1
        metrics.inc_slug_resolution.assert_called_once_with("found")

    @pytest.mark.asyncio
    async def test_stops_at_first_match(self) -> None:
        conn = FakeCatalogConnection(["client_1", "client_2", "client_3"], self.PROFILES)

        await _resolver(conn).resolve(Slug("alice"))

        assert conn.probed == ["client_1"]

    @pytest.mark.asyncio
    async def test_schema_without_profile_table_is_skipped(self) -> None:
        conn = FakeCatalogConnection(["client_9", "client_2"], self.PROFILES)

        schema = await _resolver(conn).resolve(Slug("bob"))

        assert schema == TenantSchema(2)
        assert conn.probed == ["client_9", "client_2"]

    @pytest.mark.asyncio
    async def test_non_conforming_schema_names_are_not_probed(self) -> None:
        conn = FakeCatalogConnection(["client_abc", "client_007", "client_2"], self.PROFILES)

        await _resolver(conn).resolve(Slug("bob"))

        assert conn.probed == ["client_2"]

    @pytest.mark.asyncio
    async def test_unknown_slug_raises_not_found(self) -> None:
        conn = FakeCatalogConnection(["client_1", "client_2", "client_3"], self.PROFILES)
        metrics = MagicMock()

        with pytest.raises(TenantNotFound) as exc_info:
            await _resolver(conn, metrics).resolve(Slug("carol"))

        assert isinstance(exc_info.value, NotFound)
        assert exc_info.value.slug == "carol"
        metrics.inc_slug_resolution.assert_called_once_with("not_found")

    @pytest.mark.asyncio
    async def test_no_client_schemas(self) -> None:
        conn = FakeCatalogConnection([], {})

        with pytest.raises(TenantNotFound):
            await _resolver(conn).resolve(Slug("alice"))
