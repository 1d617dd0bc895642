"""PostgreSQL repository implementations over client schemas.

All statements use unqualified table names and run through
``SchemaRouter.run`` so they resolve against the client schema only.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from schema_router.db.errors import RowNotFound, SlugTaken, TenantNotFound
from schema_router.db.repositories import (
    DEFAULT_PROFILE_DESCRIPTION,
    DEFAULT_PROFILE_TITLE,
    default_slug_candidates,
    response_payload,
)
from schema_router.db.router import SchemaRouter
from schema_router.db.tenancy import TenantSchema
from schema_router.models.forms import (
    Form,
    FormResponse,
    FormSubmission,
    Link,
    LinkProfile,
    LinkUpdate,
    ProfileUpdate,
    SubmissionMetadata,
)

logger = logging.getLogger(__name__)


def _present(row: Mapping[str, Any]) -> dict[str, Any]:
    """Drop NULL columns so model defaults apply."""
    return {key: value for key, value in row.items() if value is not None}


def _to_response(row: Mapping[str, Any]) -> FormResponse:
    data = dict(row)
    payload = response_payload(data)
    for column in ("data", "form_data"):
        data.pop(column, None)
    data["response_data"] = payload
    return FormResponse.model_validate(_present(data))


async def _require_owned_form(
    conn: AsyncConnection, schema: TenantSchema, form_id: int, owner_id: int
) -> None:
    result = await conn.execute(
        text("SELECT id FROM forms WHERE id = :form_id AND user_id = :owner_id LIMIT 1"),
        {"form_id": form_id, "owner_id": owner_id},
    )
    if result.first() is None:
        raise RowNotFound(schema.name, "forms", form_id)


class SqlFormRepository:
    """FormRepository backed by the client schema tables."""

    def __init__(self, router: SchemaRouter) -> None:
        self._router = router

    async def get_form(self, schema: TenantSchema, form_id: int) -> Form:
        async def op(conn: AsyncConnection) -> Form:
            result = await conn.execute(
                text("SELECT * FROM forms WHERE id = :form_id LIMIT 1"), {"form_id": form_id}
            )
            row = result.mappings().first()
            if row is None:
                raise RowNotFound(schema.name, "forms", form_id)
            return Form.model_validate(_present(row))

        return await self._router.run(schema, op)

    async def submit_response(
        self,
        schema: TenantSchema,
        form_or_link_id: int,
        data: dict[str, Any],
        metadata: SubmissionMetadata,
    ) -> int:
        payload = json.dumps(data)

        async def op(conn: AsyncConnection) -> int:
            form_id, link_id = await self._resolve_submission_target(conn, schema, form_or_link_id)
            params = {
                "form_id": form_id,
                "link_id": link_id,
                "payload": payload,
                "ip_address": metadata.ip_address,
                "user_agent": metadata.user_agent,
            }

            result = await conn.execute(
                text(
                    "INSERT INTO form_responses "
                    "(form_id, link_id, response_data, ip_address, user_agent, created_at) "
                    "VALUES (:form_id, :link_id, CAST(:payload AS JSONB), :ip_address, "
                    ":user_agent, NOW()) RETURNING id"
                ),
                params,
            )
            response_id = int(result.scalar_one())

            # The legacy table is a mirror; losing it must not lose the response
            try:
                async with conn.begin_nested():
                    await conn.execute(
                        text(
                            "INSERT INTO form_submissions "
                            "(form_id, link_id, form_data, ip_address, user_agent, created_at) "
                            "VALUES (:form_id, :link_id, CAST(:payload AS JSONB), :ip_address, "
                            ":user_agent, NOW())"
                        ),
                        params,
                    )
            except SQLAlchemyError as e:
                logger.warning(
                    f"[forms] {schema.name}: form_submissions mirror failed for "
                    f"response {response_id}: {type(e).__name__}"
                )

            if link_id is not None:
                await conn.execute(
                    text(
                        "UPDATE links SET clicks = COALESCE(clicks, 0) + 1, updated_at = NOW() "
                        "WHERE id = :link_id"
                    ),
                    {"link_id": link_id},
                )

            return response_id

        response_id = await self._router.run(schema, op)
        logger.info(f"[forms] {schema.name}: stored response {response_id}")
        return response_id

    async def _resolve_submission_target(
        self, conn: AsyncConnection, schema: TenantSchema, form_or_link_id: int
    ) -> tuple[int, int | None]:
        """Map a submitted id to (form_id, link_id)."""
        direct = await conn.execute(
            text("SELECT id FROM forms WHERE id = :id LIMIT 1"), {"id": form_or_link_id}
        )
        if direct.first() is not None:
            linked = await conn.execute(
                text(
                    "SELECT l.id FROM links l JOIN link_forms lf ON l.id = lf.link_id "
                    "WHERE lf.form_id = :form_id ORDER BY lf.id LIMIT 1"
                ),
                {"form_id": form_or_link_id},
            )
            return form_or_link_id, linked.scalar_one_or_none()

        associated = await conn.execute(
            text(
                "SELECT lf.form_id FROM link_forms lf JOIN forms f ON f.id = lf.form_id "
                "WHERE lf.link_id = :link_id ORDER BY lf.id LIMIT 1"
            ),
            {"link_id": form_or_link_id},
        )
        form_id = associated.scalar_one_or_none()
        if form_id is None:
            raise RowNotFound(schema.name, "forms", form_or_link_id)

        logger.info(f"[forms] {schema.name}: link {form_or_link_id} -> form {form_id}")
        return int(form_id), form_or_link_id

    async def list_responses(self, schema: TenantSchema, form_or_link_id: int) -> list[FormResponse]:
        async def op(conn: AsyncConnection) -> list[FormResponse]:
            result = await conn.execute(
                text(
                    "SELECT * FROM form_responses WHERE form_id = :id OR link_id = :id "
                    "ORDER BY created_at DESC, id DESC"
                ),
                {"id": form_or_link_id},
            )
            return [_to_response(row) for row in result.mappings()]

        return await self._router.run(schema, op)

    async def delete_response(self, schema: TenantSchema, response_id: int, owner_id: int) -> None:
        async def op(conn: AsyncConnection) -> None:
            owned = await conn.execute(
                text(
                    "SELECT fr.id FROM form_responses fr JOIN forms f ON fr.form_id = f.id "
                    "WHERE fr.id = :response_id AND f.user_id = :owner_id LIMIT 1"
                ),
                {"response_id": response_id, "owner_id": owner_id},
            )
            if owned.first() is None:
                raise RowNotFound(schema.name, "form_responses", response_id)

            await conn.execute(
                text("DELETE FROM form_responses WHERE id = :response_id"),
                {"response_id": response_id},
            )

        await self._router.run(schema, op)

    async def list_submissions(
        self, schema: TenantSchema, form_id: int, owner_id: int
    ) -> list[FormSubmission]:
        async def op(conn: AsyncConnection) -> list[FormSubmission]:
            await _require_owned_form(conn, schema, form_id, owner_id)
            result = await conn.execute(
                text(
                    "SELECT * FROM form_submissions WHERE form_id = :form_id "
                    "ORDER BY created_at DESC, id DESC"
                ),
                {"form_id": form_id},
            )
            return [FormSubmission.model_validate(_present(row)) for row in result.mappings()]

        return await self._router.run(schema, op)

    async def purge_submissions(self, schema: TenantSchema, form_id: int, owner_id: int) -> int:
        async def op(conn: AsyncConnection) -> int:
            await _require_owned_form(conn, schema, form_id, owner_id)
            params = {"form_id": form_id}

            responses = await conn.execute(
                text("DELETE FROM form_responses WHERE form_id = :form_id"), params
            )
            deleted = responses.rowcount or 0

            try:
                async with conn.begin_nested():
                    submissions = await conn.execute(
                        text("DELETE FROM form_submissions WHERE form_id = :form_id"), params
                    )
                    deleted += submissions.rowcount or 0
            except SQLAlchemyError as e:
                logger.warning(
                    f"[forms] {schema.name}: purging form_submissions for form {form_id} "
                    f"failed: {type(e).__name__}"
                )
            return deleted

        return await self._router.run(schema, op)


def _json_param(value: Any) -> str | None:
    """JSONB parameter; SQL NULL rather than JSON null for ``None``."""
    return None if value is None else json.dumps(value)


async def _fetch_profile(
    conn: AsyncConnection, where: str, params: dict[str, Any], *, enabled_only: bool
) -> LinkProfile | None:
    result = await conn.execute(text(f"SELECT * FROM link_profiles WHERE {where} LIMIT 1"), params)
    row = result.mappings().first()
    if row is None:
        return None

    link_filter = "AND enabled IS NOT FALSE " if enabled_only else ""
    links = await conn.execute(
        text(
            f"SELECT * FROM links WHERE profile_id = :profile_id {link_filter}"
            "ORDER BY position, id"
        ),
        {"profile_id": row["id"]},
    )
    profile = LinkProfile.model_validate(_present(row))
    profile.links = [Link.model_validate(_present(link)) for link in links.mappings()]
    return profile


async def _sync_links(conn: AsyncConnection, profile_id: int, links: list[LinkUpdate]) -> None:
    result = await conn.execute(
        text("SELECT id FROM links WHERE profile_id = :profile_id"), {"profile_id": profile_id}
    )
    existing = {int(link_id) for (link_id,) in result}
    kept = {link.stored_id for link in links if link.stored_id is not None}

    for link_id in sorted(existing - kept):
        used = await conn.execute(
            text(
                "SELECT 1 FROM form_submissions WHERE link_id = :link_id "
                "UNION ALL SELECT 1 FROM form_responses WHERE link_id = :link_id LIMIT 1"
            ),
            {"link_id": link_id},
        )
        if used.first() is None:
            await conn.execute(text("DELETE FROM links WHERE id = :link_id"), {"link_id": link_id})
            logger.info(f"[profiles] deleted link {link_id}")
        else:
            await conn.execute(
                text("UPDATE links SET enabled = false, updated_at = NOW() WHERE id = :link_id"),
                {"link_id": link_id},
            )
            logger.info(f"[profiles] disabled link {link_id}: it has submissions")

    for link in links:
        params = link.model_dump(exclude={"id", "is_new"})
        params["form_definition"] = _json_param(link.form_definition)
        params["profile_id"] = profile_id

        if link.stored_id in existing:
            params["link_id"] = link.stored_id
            await conn.execute(
                text(
                    "UPDATE links SET title = :title, url = :url, icon = :icon, "
                    "enabled = :enabled, position = :position, featured = :featured, "
                    "custom_color = :custom_color, custom_text_color = :custom_text_color, "
                    "animation = :animation, type = :type, "
                    "form_definition = CAST(:form_definition AS JSONB), updated_at = NOW() "
                    "WHERE id = :link_id AND profile_id = :profile_id"
                ),
                params,
            )
        else:
            await conn.execute(
                text(
                    "INSERT INTO links (profile_id, title, url, icon, enabled, clicks, position, "
                    "featured, custom_color, custom_text_color, animation, type, "
                    "form_definition, created_at, updated_at) "
                    "VALUES (:profile_id, :title, :url, :icon, :enabled, 0, :position, "
                    ":featured, :custom_color, :custom_text_color, :animation, :type, "
                    "CAST(:form_definition AS JSONB), NOW(), NOW())"
                ),
                params,
            )


class SqlProfileRepository:
    """ProfileRepository backed by link_profiles and links."""

    def __init__(self, router: SchemaRouter) -> None:
        self._router = router

    async def get_profile(self, schema: TenantSchema, slug: str) -> LinkProfile:
        async def op(conn: AsyncConnection) -> LinkProfile:
            profile = await _fetch_profile(conn, "slug = :slug", {"slug": slug}, enabled_only=True)
            if profile is None:
                raise RowNotFound(schema.name, "link_profiles", slug)
            return profile

        return await self._router.run(schema, op)

    async def _owner_profile(self, schema: TenantSchema, user_id: int) -> LinkProfile | None:
        async def op(conn: AsyncConnection) -> LinkProfile | None:
            return await _fetch_profile(
                conn, "user_id = :user_id", {"user_id": user_id}, enabled_only=False
            )

        return await self._router.run(schema, op)

    async def _slug_taken(self, slug: str, schema: TenantSchema, profile_id: int | None) -> bool:
        # Slugs are global: the lookup scans every client schema, so it runs
        # outside any scoped operation
        try:
            match = await self._router.find_profile_by_slug(slug)
        except TenantNotFound:
            return False
        return not (match.schema == schema and match.profile_id == profile_id)

    async def get_owner_profile(self, schema: TenantSchema, user_id: int) -> LinkProfile:
        profile = await self._owner_profile(schema, user_id)
        if profile is not None:
            return profile

        for slug in default_slug_candidates(user_id):
            if not await self._slug_taken(slug, schema, None):
                break

        async def create(conn: AsyncConnection) -> LinkProfile:
            # Concurrent first visits insert at most one row
            await conn.execute(
                text(
                    "INSERT INTO link_profiles (user_id, slug, title, description, views, "
                    "created_at, updated_at) "
                    "SELECT :user_id, :slug, :title, :description, 0, NOW(), NOW() "
                    "WHERE NOT EXISTS (SELECT 1 FROM link_profiles WHERE user_id = :user_id)"
                ),
                {
                    "user_id": user_id,
                    "slug": slug,
                    "title": DEFAULT_PROFILE_TITLE,
                    "description": DEFAULT_PROFILE_DESCRIPTION,
                },
            )
            created = await _fetch_profile(
                conn, "user_id = :user_id", {"user_id": user_id}, enabled_only=False
            )
            if created is None:
                raise RowNotFound(schema.name, "link_profiles", user_id)
            return created

        profile = await self._router.run(schema, create)
        logger.info(
            f"[profiles] {schema.name}: created profile {profile.slug!r} for user {user_id}"
        )
        return profile

    async def save_owner_profile(
        self, schema: TenantSchema, user_id: int, update: ProfileUpdate
    ) -> LinkProfile:
        existing = await self._owner_profile(schema, user_id)
        if existing is None:
            raise RowNotFound(schema.name, "link_profiles", user_id)
        if update.slug != existing.slug and await self._slug_taken(update.slug, schema, existing.id):
            raise SlugTaken(update.slug)

        columns = update.profile_columns()
        params = {**columns, "custom_theme": _json_param(update.custom_theme), "id": existing.id}
        assignments = ", ".join(
            f"{name} = CAST(:{name} AS JSONB)" if name == "custom_theme" else f"{name} = :{name}"
            for name in columns
        )

        async def op(conn: AsyncConnection) -> LinkProfile:
            await conn.execute(
                text(f"UPDATE link_profiles SET {assignments}, updated_at = NOW() WHERE id = :id"),
                params,
            )
            await _sync_links(conn, existing.id, update.links)
            saved = await _fetch_profile(conn, "id = :id", {"id": existing.id}, enabled_only=False)
            if saved is None:
                raise RowNotFound(schema.name, "link_profiles", existing.id)
            return saved

        saved = await self._router.run(schema, op)
        logger.info(
            f"[profiles] {schema.name}: saved profile {saved.slug!r} with {len(saved.links)} links"
        )
        return saved

    async def record_profile_view(self, schema: TenantSchema, slug: str) -> None:
        async def op(conn: AsyncConnection) -> None:
            result = await conn.execute(
                text(
                    "UPDATE link_profiles SET views = COALESCE(views, 0) + 1, "
                    "updated_at = NOW() WHERE slug = :slug"
                ),
                {"slug": slug},
            )
            if not result.rowcount:
                raise RowNotFound(schema.name, "link_profiles", slug)

        await self._router.run(schema, op)

    async def record_link_click(self, schema: TenantSchema, link_id: int) -> None:
        async def op(conn: AsyncConnection) -> None:
            result = await conn.execute(
                text(
                    "UPDATE links SET clicks = COALESCE(clicks, 0) + 1, "
                    "updated_at = NOW() WHERE id = :link_id"
                ),
                {"link_id": link_id},
            )
            if not result.rowcount:
                raise RowNotFound(schema.name, "links", link_id)

        await self._router.run(schema, op)
