"""Models package - re-exports for convenience."""

from schema_router.models.forms import (
    Form,
    FormField,
    FormResponse,
    FormSubmission,
    Link,
    LinkProfile,
    LinkUpdate,
    ProfileUpdate,
    SubmissionMetadata,
    sanitize_form_data,
)

__all__ = [
    "Form",
    "FormField",
    "FormResponse",
    "FormSubmission",
    "Link",
    "LinkProfile",
    "LinkUpdate",
    "ProfileUpdate",
    "SubmissionMetadata",
    "sanitize_form_data",
]
