"""Unit tests for the provisioning command line script."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from schema_router.db.errors import ProvisioningFailure
from schema_router.db.provisioner import ProvisioningReport
from schema_router.db.tenancy import TenantSchema
from scripts.provision_schemas import main, parse_args, provision


def test_parse_client_ids() -> None:
    args = parse_args(["42", "client_43"])

    assert args.client_ids == ["42", "client_43"]
    assert not args.all_schemas


def test_parse_all() -> None:
    assert parse_args(["--all"]).all_schemas


def test_requires_ids_or_all() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_invalid_client_id_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    """Malformed ids are rejected before any provisioning happens."""
    with (
        patch("scripts.provision_schemas.get_async_engine"),
        patch("scripts.provision_schemas.dispose_async_engine", new_callable=AsyncMock) as dispose,
    ):
        assert main(["abc"]) == 2

    dispose.assert_awaited_once()

    assert "invalid client id" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_provision_reports_each_schema(capsys: pytest.CaptureFixture[str]) -> None:
    def ensure(schema: TenantSchema) -> ProvisioningReport:
        if schema.client_id == 1:
            return ProvisioningReport(schema=schema.name, applied=["create_schema:schema"])
        if schema.client_id == 2:
            return ProvisioningReport(schema=schema.name)
        if schema.client_id == 3:
            return ProvisioningReport(
                schema=schema.name, failed_constraints=["fk_form_responses_form"]
            )
        raise ProvisioningFailure(schema.name, "permission denied")

    router = MagicMock()
    router.ensure = AsyncMock(side_effect=ensure)

    failures = await provision(router, [TenantSchema(i) for i in (1, 2, 3, 4)])

    assert failures == 2
    out = capsys.readouterr().out
    assert "client_1: applied 1 steps" in out
    assert "client_2: up to date" in out
    assert "client_3: missing constraints fk_form_responses_form" in out
    assert "client_4: provisioning client_4 failed: permission denied" in out
