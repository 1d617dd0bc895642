"""Request dependencies that pick and prepare the client schema.

The caller's identity is supplied by an upstream auth layer. Here the
X-Client-ID header is taken as already authenticated, and the bearer token
is a stub that carries the client user id.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, status

from schema_router.db.errors import InvalidTenantIdentifier, ProvisioningFailure, TenantNotFound
from schema_router.db.repositories import FormRepository, ProfileRepository
from schema_router.db.router import SchemaRouter, get_schema_router
from schema_router.db.sql_repositories import SqlFormRepository, SqlProfileRepository
from schema_router.db.tenancy import Slug, TenantSchema


def get_router() -> SchemaRouter:
    """Dependency returning the process-wide schema router."""
    return get_schema_router()


def get_form_repository(router: Annotated[SchemaRouter, Depends(get_router)]) -> FormRepository:
    return SqlFormRepository(router)


def get_profile_repository(
    router: Annotated[SchemaRouter, Depends(get_router)],
) -> ProfileRepository:
    return SqlProfileRepository(router)


async def ensure_schema(router: SchemaRouter, schema: TenantSchema) -> TenantSchema:
    """Provision ``schema``, mapping ProvisioningFailure to 503."""
    try:
        await router.ensure(schema)
    except ProvisioningFailure as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"client schema {e.schema} is unavailable",
        ) from e
    return schema


async def get_tenant_schema(
    router: Annotated[SchemaRouter, Depends(get_router)],
    x_client_id: Annotated[str | None, Header()] = None,
    slug: Annotated[str | None, Query()] = None,
) -> TenantSchema:
    """Resolve and ensure the client schema for a public request.

    An X-Client-ID header wins over a ``slug`` query parameter. The schema
    is provisioned before it is returned, so handlers can rely on every
    table being present.

    Raises:
        HTTPException: 400 for a missing or malformed identifier, 404 for an
            unknown slug, 503 when provisioning fails
    """
    if x_client_id is None and not slug:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Client-ID header or slug query parameter is required",
        )

    try:
        if x_client_id is not None:
            schema = TenantSchema.from_header(x_client_id)
        else:
            schema = await router.resolve(Slug(slug))
    except InvalidTenantIdentifier as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except TenantNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return await ensure_schema(router, schema)


async def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    """Extract the acting user's id from a ``Bearer <user_id>`` stub token.

    Raises:
        HTTPException: 401 if the header is missing or not in that format
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:].strip()
    if not token.isascii() or not token.isdigit() or int(token) < 1:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token (expected a numeric user id)",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return int(token)


async def get_owner_schema(
    router: Annotated[SchemaRouter, Depends(get_router)],
    user_id: Annotated[int, Depends(get_current_user_id)],
) -> TenantSchema:
    """Ensure and return the authenticated user's own client schema."""
    return await ensure_schema(router, TenantSchema(user_id))
