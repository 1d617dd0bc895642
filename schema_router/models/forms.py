"""Form, link and profile domain models stored in client schemas."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

FormFieldType = Literal["text", "textarea", "email", "number", "checkbox", "select"]


class FormField(BaseModel):
    """Single field of a form definition."""

    id: str
    type: FormFieldType
    label: str
    required: bool
    options: list[str] | None = None


class Form(BaseModel):
    """Form definition owned by a client user."""

    id: int
    user_id: int
    title: str
    description: str | None = None
    # Kept raw: legacy rows may hold fields that no longer validate
    fields: list[Any] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("fields", mode="before")
    @classmethod
    def coerce_fields_to_list(cls, v: Any) -> list[Any]:
        """Accept a JSON string or a single object where a list is stored."""
        if v is None:
            return []
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                return [v]
        if isinstance(v, list):
            return v
        return [v]


class FormResponse(BaseModel):
    """Stored answer to a form."""

    id: int
    form_id: int | None = None
    link_id: int | None = None
    response_data: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


class FormSubmission(BaseModel):
    """Row of the legacy form_submissions table."""

    id: int
    form_id: int | None = None
    link_id: int | None = None
    # Legacy rows are not guaranteed to hold an object
    form_data: Any = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


class Link(BaseModel):
    """Link shown on a public profile page."""

    id: int
    profile_id: int
    title: str
    url: str
    icon: str | None = None
    enabled: bool = True
    clicks: int = 0
    position: int = 0
    featured: bool = False
    custom_color: str | None = None
    custom_text_color: str | None = None
    animation: str | None = None
    type: str = "link"
    form_definition: dict[str, Any] | list[Any] | None = None


class LinkProfile(BaseModel):
    """Public link page identified by its slug."""

    id: int
    user_id: int
    slug: str
    title: str
    description: str | None = None
    background_color: str | None = None
    text_color: str | None = None
    accent_color: str | None = None
    logo_url: str | None = None
    views: int = 0
    background_image: str | None = None
    background_pattern: str | None = None
    button_style: str | None = None
    button_radius: int | None = None
    font_family: str | None = None
    animation: str | None = None
    custom_css: str | None = None
    custom_theme: dict[str, Any] | None = None
    is_paused: bool = False
    links: list[Link] = Field(default_factory=list)


class LinkUpdate(BaseModel):
    """Link as sent by the profile editor.

    Links created in the editor carry ``is_new`` or a temporary non-numeric
    id; only numeric ids refer to stored links.
    """

    id: int | str | None = None
    is_new: bool = False
    title: str
    url: str = ""
    icon: str | None = None
    enabled: bool = True
    position: int = 0
    featured: bool = False
    custom_color: str | None = None
    custom_text_color: str | None = None
    animation: str | None = None
    type: str = "link"
    form_definition: dict[str, Any] | list[Any] | None = None

    @property
    def stored_id(self) -> int | None:
        """ID of the stored link this entry updates, if any."""
        if self.is_new or self.id is None:
            return None
        try:
            return int(self.id)
        except ValueError:
            return None


class ProfileUpdate(BaseModel):
    """Full replacement of an owner's profile settings and links."""

    slug: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=100)
    description: str | None = None
    background_color: str | None = None
    text_color: str | None = None
    accent_color: str | None = None
    logo_url: str | None = None
    background_image: str | None = None
    background_pattern: str | None = None
    button_style: str | None = None
    button_radius: int | None = None
    font_family: str | None = None
    animation: str | None = None
    custom_css: str | None = None
    custom_theme: dict[str, Any] | None = None
    background_saturation: int | None = None
    background_hue_rotate: int | None = None
    background_sepia: int | None = None
    background_grayscale: int | None = None
    background_invert: int | None = None
    background_color_filter: str | None = None
    background_color_filter_opacity: float = 0.3
    # Stored links missing from this list are removed
    links: list[LinkUpdate] = Field(default_factory=list)

    def profile_columns(self) -> dict[str, Any]:
        """Column values for the link_profiles row."""
        return self.model_dump(exclude={"links"})


class SubmissionMetadata(BaseModel):
    """Request metadata recorded alongside a form response."""

    ip_address: str | None = None
    user_agent: str | None = None


def invalid_form_fields(form: Form) -> list[str]:
    """Return ids (or positions) of field definitions that fail validation."""
    invalid: list[str] = []
    for position, raw in enumerate(form.fields):
        try:
            FormField.model_validate(raw)
        except ValueError:
            invalid.append(str(raw.get("id", position)) if isinstance(raw, dict) else str(position))
    return invalid


_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)


def _clean_text(value: str) -> str:
    value = _SCRIPT_RE.sub("", value)
    value = _JS_PROTOCOL_RE.sub("", value)
    return _EVENT_HANDLER_RE.sub("", value)


def sanitize_form_data(data: Any) -> dict[str, Any]:
    """Strip script payloads from submitted form data before storage.

    Args:
        data: Submitted payload, a mapping or a JSON object string

    Returns:
        Sanitised mapping; empty when the payload is missing or unparsable
    """
    if not data:
        return {}

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Could not parse submitted form data as JSON")
            return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring non-object form data of type {type(data).__name__}")
        return {}

    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            sanitized[key] = _clean_text(value)
        elif value is None or isinstance(value, (bool, int, float)):
            sanitized[key] = value
        elif isinstance(value, list):
            sanitized[key] = [_clean_text(item) if isinstance(item, str) else item for item in value]
        elif isinstance(value, dict):
            sanitized[key] = sanitize_form_data(value)
        else:
            sanitized[key] = str(value)
    return sanitized
