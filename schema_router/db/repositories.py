"""Repository protocol interfaces for client-schema data access.

Every method takes the already resolved and ensured ``TenantSchema``; the
repositories never pick a schema themselves.
"""

import itertools
from collections.abc import Iterator
from typing import Any, Protocol

from schema_router.db.tenancy import TenantSchema
from schema_router.models.forms import (
    Form,
    FormResponse,
    FormSubmission,
    LinkProfile,
    ProfileUpdate,
    SubmissionMetadata,
)

DEFAULT_PROFILE_TITLE = "My links"
DEFAULT_PROFILE_DESCRIPTION = "All my links in one place"


def default_slug_candidates(user_id: int) -> Iterator[str]:
    """Slugs tried, in order, for a profile created on first visit."""
    base = f"user-{user_id}"
    yield base
    for suffix in itertools.count(1):
        yield f"{base}-{suffix}"


# Historical names of the form_responses payload column, preferred first
PAYLOAD_COLUMNS: tuple[str, ...] = ("response_data", "data", "form_data")


def response_payload(row: dict[str, Any]) -> dict[str, Any]:
    """Read a response payload from whichever legacy column the row has."""
    for column in PAYLOAD_COLUMNS:
        value = row.get(column)
        if isinstance(value, dict):
            return dict(value)
    return {}


class FormRepository(Protocol):
    """Repository for forms and their responses."""

    async def get_form(self, schema: TenantSchema, form_id: int) -> Form:
        """Get form by ID.

        Raises:
            RowNotFound: If the form does not exist
        """
        ...

    async def submit_response(
        self,
        schema: TenantSchema,
        form_or_link_id: int,
        data: dict[str, Any],
        metadata: SubmissionMetadata,
    ) -> int:
        """Store a sanitised response and return its ID.

        ``form_or_link_id`` is a form id, or a link id associated with a
        form through link_forms.

        Raises:
            RowNotFound: If neither a form nor an associated link matches
        """
        ...

    async def list_responses(self, schema: TenantSchema, form_or_link_id: int) -> list[FormResponse]:
        """List responses for a form or link, newest first."""
        ...

    async def delete_response(self, schema: TenantSchema, response_id: int, owner_id: int) -> None:
        """Delete a response whose form belongs to ``owner_id``.

        Raises:
            RowNotFound: If no such response is owned by ``owner_id``
        """
        ...

    async def list_submissions(
        self, schema: TenantSchema, form_id: int, owner_id: int
    ) -> list[FormSubmission]:
        """List legacy submissions of an owned form, newest first.

        Raises:
            RowNotFound: If the form is not owned by ``owner_id``
        """
        ...

    async def purge_submissions(self, schema: TenantSchema, form_id: int, owner_id: int) -> int:
        """Delete all responses and submissions of an owned form.

        Returns:
            Number of rows deleted across both tables

        Raises:
            RowNotFound: If the form is not owned by ``owner_id``
        """
        ...


class ProfileRepository(Protocol):
    """Repository for link profiles and their links."""

    async def get_profile(self, schema: TenantSchema, slug: str) -> LinkProfile:
        """Get profile by slug with its enabled links ordered by position.

        Raises:
            RowNotFound: If the profile does not exist
        """
        ...

    async def record_profile_view(self, schema: TenantSchema, slug: str) -> None:
        """Increment the profile's view counter.

        Raises:
            RowNotFound: If the profile does not exist
        """
        ...

    async def record_link_click(self, schema: TenantSchema, link_id: int) -> None:
        """Increment the link's click counter.

        Raises:
            RowNotFound: If the link does not exist
        """
        ...

    async def get_owner_profile(self, schema: TenantSchema, user_id: int) -> LinkProfile:
        """Get the owner's profile with all of its links, enabled or not.

        The first visit creates a default profile under the first free slug
        of ``default_slug_candidates``.
        """
        ...

    async def save_owner_profile(
        self, schema: TenantSchema, user_id: int, update: ProfileUpdate
    ) -> LinkProfile:
        """Replace the owner's profile settings and links.

        Stored links left out of ``update.links`` are deleted, or disabled
        when submissions reference them.

        Raises:
            RowNotFound: If the owner has no profile yet
            SlugTaken: If the new slug belongs to another profile
        """
        ...
