"""Form endpoints: public read/submit and owner-only response management."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel

from schema_router.api.tenant import (
    get_current_user_id,
    get_form_repository,
    get_owner_schema,
    get_tenant_schema,
)
from schema_router.db.errors import RowNotFound
from schema_router.db.repositories import FormRepository
from schema_router.db.tenancy import TenantSchema
from schema_router.models.forms import (
    Form,
    FormResponse,
    FormSubmission,
    SubmissionMetadata,
    invalid_form_fields,
    sanitize_form_data,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/forms", tags=["forms"])


class FormEnvelope(BaseModel):
    """Response for GET /forms/{form_id}."""

    success: bool = True
    data: Form


class SubmitResponse(BaseModel):
    """Response for POST /forms/{form_id}/submit."""

    success: bool = True
    response_id: int


class ResponsesEnvelope(BaseModel):
    """Response for GET /forms/{form_id}/responses."""

    success: bool = True
    data: list[FormResponse]


class SubmissionsEnvelope(BaseModel):
    """Response for GET /forms/{form_id}/form-submissions."""

    success: bool = True
    data: list[FormSubmission]


class DeletedResponse(BaseModel):
    """Response for DELETE endpoints."""

    success: bool = True
    deleted: int


def _not_found(e: RowNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def submission_metadata(request: Request) -> SubmissionMetadata:
    """Client IP (first X-Forwarded-For hop, else peer) and User-Agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address: str | None = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client else None
    return SubmissionMetadata(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


@router.get("/{form_id}", response_model=FormEnvelope)
async def get_form(
    form_id: int,
    schema: Annotated[TenantSchema, Depends(get_tenant_schema)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
) -> FormEnvelope:
    """Public form definition, read from the client schema of the request."""
    try:
        form = await repository.get_form(schema, form_id)
    except RowNotFound as e:
        raise _not_found(e) from e

    invalid = invalid_form_fields(form)
    if invalid:
        logger.warning(f"[forms] {schema.name}: form {form_id} has invalid fields {invalid}")

    return FormEnvelope(data=form)


@router.post("/{form_id}/submit", response_model=SubmitResponse)
async def submit_form(
    form_id: int,
    request: Request,
    schema: Annotated[TenantSchema, Depends(get_tenant_schema)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
    payload: Annotated[Any, Body()] = None,
) -> SubmitResponse:
    """Store a public submission for a form, or for a link bound to a form.

    The payload may be wrapped as ``{"data": {...}}``; it is sanitised
    before storage.
    """
    if isinstance(payload, dict) and payload.get("data"):
        payload = payload["data"]

    data = sanitize_form_data(payload)

    try:
        response_id = await repository.submit_response(
            schema, form_id, data, submission_metadata(request)
        )
    except RowNotFound as e:
        raise _not_found(e) from e

    return SubmitResponse(response_id=response_id)


@router.get("/{form_id}/responses", response_model=ResponsesEnvelope)
async def list_responses(
    form_id: int,
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
) -> ResponsesEnvelope:
    """Responses for a form or link in the caller's schema, newest first."""
    responses = await repository.list_responses(schema, form_id)
    return ResponsesEnvelope(data=responses)


@router.delete("/responses/{response_id}", response_model=DeletedResponse)
async def delete_response(
    response_id: int,
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    user_id: Annotated[int, Depends(get_current_user_id)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
) -> DeletedResponse:
    try:
        await repository.delete_response(schema, response_id, user_id)
    except RowNotFound as e:
        raise _not_found(e) from e
    return DeletedResponse(deleted=1)


@router.delete("/{form_id}/submissions", response_model=DeletedResponse)
async def purge_submissions(
    form_id: int,
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    user_id: Annotated[int, Depends(get_current_user_id)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
) -> DeletedResponse:
    """Delete every stored response and legacy submission of an owned form."""
    try:
        deleted = await repository.purge_submissions(schema, form_id, user_id)
    except RowNotFound as e:
        raise _not_found(e) from e

    logger.info(f"[forms] {schema.name}: purged {deleted} rows for form {form_id}")
    return DeletedResponse(deleted=deleted)


@router.get("/{form_id}/form-submissions", response_model=SubmissionsEnvelope)
async def list_submissions(
    form_id: int,
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    user_id: Annotated[int, Depends(get_current_user_id)],
    repository: Annotated[FormRepository, Depends(get_form_repository)],
) -> SubmissionsEnvelope:
    try:
        submissions = await repository.list_submissions(schema, form_id, user_id)
    except RowNotFound as e:
        raise _not_found(e) from e
    return SubmissionsEnvelope(data=submissions)
