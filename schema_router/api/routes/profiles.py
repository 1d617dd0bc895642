"""Link profile endpoints: the owner's editor and the public page with its counters."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from schema_router.api.tenant import (
    ensure_schema,
    get_current_user_id,
    get_owner_schema,
    get_profile_repository,
    get_router,
    get_tenant_schema,
)
from schema_router.db.errors import RowNotFound, SlugTaken, TenantNotFound
from schema_router.db.repositories import ProfileRepository
from schema_router.db.router import SchemaRouter
from schema_router.db.tenancy import TenantSchema
from schema_router.models.forms import LinkProfile, ProfileUpdate

router = APIRouter(tags=["profiles"])


class ProfileEnvelope(BaseModel):
    """Response for profile reads and saves."""

    success: bool = True
    data: LinkProfile


class CounterResponse(BaseModel):
    """Response for counter endpoints."""

    success: bool = True


async def _schema_for_slug(schema_router: SchemaRouter, slug: str) -> TenantSchema:
    """Resolve a profile slug to its client schema and ensure it."""
    try:
        match = await schema_router.find_profile_by_slug(slug)
    except TenantNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return await ensure_schema(schema_router, match.schema)


@router.get("/profile", response_model=ProfileEnvelope)
async def get_own_profile(
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    user_id: Annotated[int, Depends(get_current_user_id)],
    repository: Annotated[ProfileRepository, Depends(get_profile_repository)],
) -> ProfileEnvelope:
    """The caller's own profile with every link; created on first visit."""
    profile = await repository.get_owner_profile(schema, user_id)
    return ProfileEnvelope(data=profile)


@router.post("/profile", response_model=ProfileEnvelope)
async def save_own_profile(
    update: ProfileUpdate,
    schema: Annotated[TenantSchema, Depends(get_owner_schema)],
    user_id: Annotated[int, Depends(get_current_user_id)],
    repository: Annotated[ProfileRepository, Depends(get_profile_repository)],
) -> ProfileEnvelope:
    """Replace the caller's profile settings and links."""
    try:
        profile = await repository.save_owner_profile(schema, user_id, update)
    except RowNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except SlugTaken as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ProfileEnvelope(data=profile)


@router.get("/profiles/{slug}", response_model=ProfileEnvelope)
async def get_profile(
    slug: str,
    schema_router: Annotated[SchemaRouter, Depends(get_router)],
    repository: Annotated[ProfileRepository, Depends(get_profile_repository)],
) -> ProfileEnvelope:
    """Public profile page with its enabled links, found by slug."""
    schema = await _schema_for_slug(schema_router, slug)
    try:
        profile = await repository.get_profile(schema, slug)
    except RowNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ProfileEnvelope(data=profile)


@router.post("/profiles/{slug}/view", response_model=CounterResponse)
async def record_profile_view(
    slug: str,
    schema_router: Annotated[SchemaRouter, Depends(get_router)],
    repository: Annotated[ProfileRepository, Depends(get_profile_repository)],
) -> CounterResponse:
    schema = await _schema_for_slug(schema_router, slug)
    try:
        await repository.record_profile_view(schema, slug)
    except RowNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return CounterResponse()


@router.post("/links/{link_id}/click", response_model=CounterResponse)
async def record_link_click(
    link_id: int,
    schema: Annotated[TenantSchema, Depends(get_tenant_schema)],
    repository: Annotated[ProfileRepository, Depends(get_profile_repository)],
) -> CounterResponse:
    """Count a click on a link; the client comes from X-Client-ID or ?slug."""
    try:
        await repository.record_link_click(schema, link_id)
    except RowNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return CounterResponse()
