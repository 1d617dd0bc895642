"""In-memory implementations of repository interfaces."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from schema_router.db.errors import RowNotFound, SlugTaken
from schema_router.db.repositories import (
    DEFAULT_PROFILE_DESCRIPTION,
    DEFAULT_PROFILE_TITLE,
    default_slug_candidates,
)
from schema_router.db.tenancy import TenantSchema
from schema_router.models.forms import (
    Form,
    FormResponse,
    FormSubmission,
    Link,
    LinkProfile,
    ProfileUpdate,
    SubmissionMetadata,
)


@dataclass
class _ClientTables:
    """Rows of one client schema."""

    forms: dict[int, Form] = field(default_factory=dict)
    responses: dict[int, FormResponse] = field(default_factory=dict)
    submissions: dict[int, FormSubmission] = field(default_factory=dict)
    profiles: dict[int, LinkProfile] = field(default_factory=dict)
    links: dict[int, Link] = field(default_factory=dict)
    # (link_id, form_id) in insertion order
    link_forms: list[tuple[int, int]] = field(default_factory=list)
    next_id: int = 1

    def allocate_id(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value


class InMemoryStore:
    """Per-schema row storage shared by the in-memory repositories."""

    def __init__(self) -> None:
        self._schemas: dict[TenantSchema, _ClientTables] = {}

    def tables(self, schema: TenantSchema) -> _ClientTables:
        return self._schemas.setdefault(schema, _ClientTables())

    def schemas(self) -> list[tuple[TenantSchema, _ClientTables]]:
        return list(self._schemas.items())

    def add_form(self, schema: TenantSchema, user_id: int, title: str, fields: Any) -> Form:
        tables = self.tables(schema)
        form = Form(
            id=tables.allocate_id(),
            user_id=user_id,
            title=title,
            fields=fields,
            created_at=datetime.now(),
        )
        tables.forms[form.id] = form
        return form

    def add_profile(self, schema: TenantSchema, user_id: int, slug: str, title: str) -> LinkProfile:
        tables = self.tables(schema)
        profile = LinkProfile(id=tables.allocate_id(), user_id=user_id, slug=slug, title=title)
        tables.profiles[profile.id] = profile
        return profile

    def add_link(
        self,
        schema: TenantSchema,
        profile_id: int,
        title: str,
        url: str,
        **fields: Any,
    ) -> Link:
        tables = self.tables(schema)
        link = Link(id=tables.allocate_id(), profile_id=profile_id, title=title, url=url, **fields)
        tables.links[link.id] = link
        return link

    def link_form(self, schema: TenantSchema, link_id: int, form_id: int) -> None:
        self.tables(schema).link_forms.append((link_id, form_id))


class InMemoryFormRepository:
    """In-memory implementation of FormRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def get_form(self, schema: TenantSchema, form_id: int) -> Form:
        form = self._store.tables(schema).forms.get(form_id)
        if form is None:
            raise RowNotFound(schema.name, "forms", form_id)
        return form

    async def submit_response(
        self,
        schema: TenantSchema,
        form_or_link_id: int,
        data: dict[str, Any],
        metadata: SubmissionMetadata,
    ) -> int:
        tables = self._store.tables(schema)

        if form_or_link_id in tables.forms:
            form_id = form_or_link_id
            link_id = next(
                (lid for lid, fid in tables.link_forms if fid == form_id and lid in tables.links),
                None,
            )
        else:
            form_id_match = next(
                (fid for lid, fid in tables.link_forms if lid == form_or_link_id and fid in tables.forms),
                None,
            )
            if form_id_match is None:
                raise RowNotFound(schema.name, "forms", form_or_link_id)
            form_id, link_id = form_id_match, form_or_link_id

        now = datetime.now()
        response = FormResponse(
            id=tables.allocate_id(),
            form_id=form_id,
            link_id=link_id,
            response_data=dict(data),
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            created_at=now,
        )
        tables.responses[response.id] = response

        submission = FormSubmission(
            id=tables.allocate_id(),
            form_id=form_id,
            link_id=link_id,
            form_data=dict(data),
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            created_at=now,
        )
        tables.submissions[submission.id] = submission

        if link_id is not None and link_id in tables.links:
            tables.links[link_id].clicks += 1

        return response.id

    async def list_responses(self, schema: TenantSchema, form_or_link_id: int) -> list[FormResponse]:
        responses = [
            r
            for r in self._store.tables(schema).responses.values()
            if form_or_link_id in (r.form_id, r.link_id)
        ]
        return sorted(responses, key=lambda r: r.id, reverse=True)

    async def delete_response(self, schema: TenantSchema, response_id: int, owner_id: int) -> None:
        tables = self._store.tables(schema)
        response = tables.responses.get(response_id)
        form = tables.forms.get(response.form_id) if response and response.form_id else None
        if form is None or form.user_id != owner_id:
            raise RowNotFound(schema.name, "form_responses", response_id)
        del tables.responses[response_id]

    def _require_owned_form(self, schema: TenantSchema, form_id: int, owner_id: int) -> None:
        form = self._store.tables(schema).forms.get(form_id)
        if form is None or form.user_id != owner_id:
            raise RowNotFound(schema.name, "forms", form_id)

    async def list_submissions(
        self, schema: TenantSchema, form_id: int, owner_id: int
    ) -> list[FormSubmission]:
        self._require_owned_form(schema, form_id, owner_id)
        submissions = [
            s for s in self._store.tables(schema).submissions.values() if s.form_id == form_id
        ]
        return sorted(submissions, key=lambda s: s.id, reverse=True)

    async def purge_submissions(self, schema: TenantSchema, form_id: int, owner_id: int) -> int:
        self._require_owned_form(schema, form_id, owner_id)
        tables = self._store.tables(schema)
        response_ids = [rid for rid, r in tables.responses.items() if r.form_id == form_id]
        submission_ids = [sid for sid, s in tables.submissions.items() if s.form_id == form_id]
        for rid in response_ids:
            del tables.responses[rid]
        for sid in submission_ids:
            del tables.submissions[sid]
        return len(response_ids) + len(submission_ids)


class InMemoryProfileRepository:
    """In-memory implementation of ProfileRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def _find(self, schema: TenantSchema, slug: str) -> LinkProfile:
        for profile in self._store.tables(schema).profiles.values():
            if profile.slug == slug:
                return profile
        raise RowNotFound(schema.name, "link_profiles", slug)

    async def get_profile(self, schema: TenantSchema, slug: str) -> LinkProfile:
        profile = self._find(schema, slug)
        links = [
            link
            for link in self._store.tables(schema).links.values()
            if link.profile_id == profile.id and link.enabled
        ]
        links.sort(key=lambda link: (link.position, link.id))
        return profile.model_copy(update={"links": links})

    async def record_profile_view(self, schema: TenantSchema, slug: str) -> None:
        self._find(schema, slug).views += 1

    async def record_link_click(self, schema: TenantSchema, link_id: int) -> None:
        link = self._store.tables(schema).links.get(link_id)
        if link is None:
            raise RowNotFound(schema.name, "links", link_id)
        link.clicks += 1

    def _owner_profile(self, schema: TenantSchema, user_id: int) -> LinkProfile | None:
        return next(
            (p for p in self._store.tables(schema).profiles.values() if p.user_id == user_id),
            None,
        )

    def _with_all_links(self, schema: TenantSchema, profile: LinkProfile) -> LinkProfile:
        links = [
            link
            for link in self._store.tables(schema).links.values()
            if link.profile_id == profile.id
        ]
        links.sort(key=lambda link: (link.position, link.id))
        return profile.model_copy(update={"links": links})

    def _slug_taken(self, slug: str, schema: TenantSchema, profile_id: int | None) -> bool:
        for other_schema, tables in self._store.schemas():
            for profile in tables.profiles.values():
                if profile.slug == slug and (other_schema != schema or profile.id != profile_id):
                    return True
        return False

    async def get_owner_profile(self, schema: TenantSchema, user_id: int) -> LinkProfile:
        profile = self._owner_profile(schema, user_id)
        if profile is None:
            slug = next(
                s for s in default_slug_candidates(user_id) if not self._slug_taken(s, schema, None)
            )
            profile = self._store.add_profile(schema, user_id, slug, DEFAULT_PROFILE_TITLE)
            profile.description = DEFAULT_PROFILE_DESCRIPTION
        return self._with_all_links(schema, profile)

    async def save_owner_profile(
        self, schema: TenantSchema, user_id: int, update: ProfileUpdate
    ) -> LinkProfile:
        profile = self._owner_profile(schema, user_id)
        if profile is None:
            raise RowNotFound(schema.name, "link_profiles", user_id)
        if update.slug != profile.slug and self._slug_taken(update.slug, schema, profile.id):
            raise SlugTaken(update.slug)

        for name, value in update.profile_columns().items():
            if name in LinkProfile.model_fields:
                setattr(profile, name, value)

        tables = self._store.tables(schema)
        existing = {lid for lid, link in tables.links.items() if link.profile_id == profile.id}
        kept = {link.stored_id for link in update.links if link.stored_id is not None}
        for link_id in existing - kept:
            used = any(
                link_id == row.link_id
                for row in [*tables.responses.values(), *tables.submissions.values()]
            )
            if used:
                tables.links[link_id].enabled = False
            else:
                del tables.links[link_id]

        for link in update.links:
            values = link.model_dump(exclude={"id", "is_new"})
            if link.stored_id in existing:
                stored = tables.links[link.stored_id]
                tables.links[stored.id] = stored.model_copy(update=values)
            else:
                self._store.add_link(schema, profile.id, **values)

        return self._with_all_links(schema, profile)
