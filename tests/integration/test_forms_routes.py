"""Integration tests for form routes over in-memory repositories."""

import logging
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from schema_router.api.tenant import get_form_repository, get_router
from schema_router.db.errors import ProvisioningFailure, TenantNotFound
from schema_router.db.inmemory import InMemoryFormRepository, InMemoryStore
from schema_router.db.provisioner import ProvisioningReport
from schema_router.db.resolver import ProfileMatch
from schema_router.db.tenancy import Slug, TenantSchema
from schema_router.main import app

OWNER = 5
SCHEMA = TenantSchema(OWNER)
AUTH = {"Authorization": f"Bearer {OWNER}"}

CONTACT_FIELDS = [
    {"id": "email", "type": "email", "label": "Email", "required": True},
    {"id": "message", "type": "textarea", "label": "Message", "required": False},
]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def router() -> MagicMock:
    """Stub schema router: every schema ensures cleanly, one slug is known."""
    router = MagicMock()
    router.ensure = AsyncMock(side_effect=lambda schema: ProvisioningReport(schema=schema.name))

    async def resolve(identifier: Slug) -> TenantSchema:
        if identifier.value == "acme":
            return SCHEMA
        raise TenantNotFound(identifier.value)

    async def find_profile_by_slug(slug: str) -> ProfileMatch:
        return ProfileMatch(schema=await resolve(Slug(slug)), profile_id=1, user_id=OWNER)

    router.resolve = AsyncMock(side_effect=resolve)
    router.find_profile_by_slug = AsyncMock(side_effect=find_profile_by_slug)
    return router


@pytest.fixture
def client(store: InMemoryStore, router: MagicMock) -> Generator[TestClient, None, None]:
    """Create test client with in-memory repositories."""
    app.dependency_overrides[get_router] = lambda: router
    app.dependency_overrides[get_form_repository] = lambda: InMemoryFormRepository(store)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestPublicForm:
    """GET /forms/{form_id} and POST /forms/{form_id}/submit."""

    def test_get_form_by_client_header(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)

        response = client.get(f"/forms/{form.id}", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["title"] == "Contact"
        assert data["data"]["fields"][0]["id"] == "email"

    def test_get_form_by_slug(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)

        response = client.get(f"/forms/{form.id}", params={"slug": "acme"})

        assert response.status_code == 200
        assert response.json()["data"]["id"] == form.id

    def test_form_with_invalid_fields_is_still_served(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER, "Legacy", [{"id": "x", "type": "rating"}])

        response = client.get(f"/forms/{form.id}", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 200

    def test_form_with_non_object_fields_is_served_with_warning(
        self, client: TestClient, store: InMemoryStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Bare strings among stored field definitions are logged, not fatal."""
        form = store.add_form(SCHEMA, OWNER, "Legacy", ["email", {"id": "x"}])

        with caplog.at_level(logging.WARNING, logger="schema_router.api.routes.forms"):
            response = client.get(f"/forms/{form.id}", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 200
        assert response.json()["data"]["fields"] == ["email", {"id": "x"}]
        assert any(
            "invalid fields ['0', 'x']" in record.getMessage() for record in caplog.records
        )

    def test_form_with_single_object_fields_is_served(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER, "Legacy", {"id": "email", "type": "email"})

        response = client.get(f"/forms/{form.id}", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 200
        assert response.json()["data"]["fields"] == [{"id": "email", "type": "email"}]

    def test_form_lookup_never_crosses_clients(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(TenantSchema(99), 99, "Other client", CONTACT_FIELDS)

        response = client.get(f"/forms/{form.id}", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 404

    def test_missing_client_is_400(self, client: TestClient) -> None:
        response = client.get("/forms/1")

        assert response.status_code == 400

    def test_unknown_slug_is_404(self, client: TestClient) -> None:
        response = client.get("/forms/1", params={"slug": "nobody"})

        assert response.status_code == 404

    def test_provisioning_failure_is_503(self, client: TestClient, router: MagicMock) -> None:
        router.ensure.side_effect = ProvisioningFailure(SCHEMA.name, "permission denied")

        response = client.get("/forms/1", headers={"X-Client-ID": str(OWNER)})

        assert response.status_code == 503

    def test_every_tenant_request_is_ensured(self, client: TestClient, router: MagicMock) -> None:
        client.get("/forms/1", headers={"X-Client-ID": "client_5"})

        router.ensure.assert_awaited_once_with(SCHEMA)

    def test_submit_sanitises_and_records_metadata(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)

        response = client.post(
            f"/forms/{form.id}/submit",
            params={"slug": "acme"},
            json={"email": "a@b.c", "message": "hi<script>alert(1)</script>"},
            headers={"User-Agent": "pytest", "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True

        stored = store.tables(SCHEMA).responses[body["response_id"]]
        assert stored.response_data == {"email": "a@b.c", "message": "hi"}
        assert stored.ip_address == "203.0.113.9"
        assert stored.user_agent == "pytest"

    def test_submit_unwraps_data_envelope(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)

        response = client.post(
            f"/forms/{form.id}/submit",
            headers={"X-Client-ID": str(OWNER)},
            json={"data": {"email": "x@y.z"}},
        )

        stored = store.tables(SCHEMA).responses[response.json()["response_id"]]
        assert stored.response_data == {"email": "x@y.z"}

    def test_submit_through_link_id(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)
        profile = store.add_profile(SCHEMA, OWNER, "acme", "Acme")
        link = store.add_link(SCHEMA, profile.id, "Contact us", "#")
        store.link_form(SCHEMA, link.id, form.id)

        response = client.post(
            f"/forms/{link.id}/submit",
            headers={"X-Client-ID": str(OWNER)},
            json={"email": "x@y.z"},
        )

        assert response.status_code == 200
        stored = store.tables(SCHEMA).responses[response.json()["response_id"]]
        assert stored.form_id == form.id
        assert stored.link_id == link.id
        assert store.tables(SCHEMA).links[link.id].clicks == 1

    def test_submit_mirrors_into_legacy_submissions(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)

        client.post(
            f"/forms/{form.id}/submit", headers={"X-Client-ID": str(OWNER)}, json={"email": "x"}
        )

        (submission,) = store.tables(SCHEMA).submissions.values()
        assert submission.form_data == {"email": "x"}

    def test_submit_unknown_target_is_404(self, client: TestClient) -> None:
        response = client.post(
            "/forms/404/submit", headers={"X-Client-ID": str(OWNER)}, json={"email": "x"}
        )

        assert response.status_code == 404


class TestOwnerRoutes:
    """Authenticated response management in the caller's own schema."""

    def _submit(self, client: TestClient, form_id: int, email: str) -> int:
        response = client.post(
            f"/forms/{form_id}/submit", headers={"X-Client-ID": str(OWNER)}, json={"email": email}
        )
        return int(response.json()["response_id"])

    def test_requires_authorization(self, client: TestClient) -> None:
        response = client.get("/forms/1/responses")

        assert response.status_code == 401

    def test_list_responses_newest_first(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)
        first = self._submit(client, form.id, "first@x")
        second = self._submit(client, form.id, "second@x")

        response = client.get(f"/forms/{form.id}/responses", headers=AUTH)

        assert response.status_code == 200
        ids = [item["id"] for item in response.json()["data"]]
        assert ids == [second, first]
        assert response.json()["data"][0]["response_data"] == {"email": "second@x"}

    def test_delete_own_response(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)
        response_id = self._submit(client, form.id, "a@x")

        response = client.delete(f"/forms/responses/{response_id}", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["deleted"] == 1
        assert response_id not in store.tables(SCHEMA).responses

    def test_delete_response_of_someone_elses_form_is_404(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER + 1, "Not mine", CONTACT_FIELDS)
        response_id = self._submit(client, form.id, "a@x")

        response = client.delete(f"/forms/responses/{response_id}", headers=AUTH)

        assert response.status_code == 404
        assert response_id in store.tables(SCHEMA).responses

    def test_purge_submissions(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)
        self._submit(client, form.id, "a@x")
        self._submit(client, form.id, "b@x")

        response = client.delete(f"/forms/{form.id}/submissions", headers=AUTH)

        assert response.status_code == 200
        # Two responses plus their two legacy mirrors
        assert response.json()["deleted"] == 4
        assert store.tables(SCHEMA).responses == {}
        assert store.tables(SCHEMA).submissions == {}

    def test_list_legacy_submissions(self, client: TestClient, store: InMemoryStore) -> None:
        form = store.add_form(SCHEMA, OWNER, "Contact", CONTACT_FIELDS)
        self._submit(client, form.id, "a@x")

        response = client.get(f"/forms/{form.id}/form-submissions", headers=AUTH)

        assert response.status_code == 200
        (item,) = response.json()["data"]
        assert item["form_data"] == {"email": "a@x"}

    def test_unowned_form_submissions_are_404(
        self, client: TestClient, store: InMemoryStore
    ) -> None:
        form = store.add_form(SCHEMA, OWNER + 1, "Not mine", CONTACT_FIELDS)

        listing = client.get(f"/forms/{form.id}/form-submissions", headers=AUTH)
        purge = client.delete(f"/forms/{form.id}/submissions", headers=AUTH)

        assert listing.status_code == 404
        assert purge.status_code == 404
