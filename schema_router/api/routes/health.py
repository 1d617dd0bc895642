"""Health check endpoints.

- /health answers as long as the process runs
- /healthz probes the database and the default search_path
"""

import json
from typing import Any

from fastapi import APIRouter, Response
from sqlalchemy.exc import SQLAlchemyError

from schema_router.db.engine import get_async_engine
from schema_router.db.scoped import current_search_path
from schema_router.db.tenancy import DEFAULT_SCHEMA

router = APIRouter()


async def check_db() -> tuple[bool, str]:
    """Check database connectivity and that a pooled connection is unscoped.

    Returns:
        (is_ok, status_message)
    """
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            search_path = await current_search_path(conn)
    except (SQLAlchemyError, OSError, ValueError) as e:
        return (False, f"error: {type(e).__name__}")

    if DEFAULT_SCHEMA not in search_path or "client_" in search_path:
        return (False, f"unexpected search_path: {search_path}")
    return (True, "ok")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple liveness check.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz() -> dict[str, Any] | Response:
    """Readiness check.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    db_ok, db_status = await check_db()

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {"db": db_status},
    }

    if not db_ok:
        return Response(
            content=json.dumps(response_body),
            status_code=503,
            media_type="application/json",
        )

    return response_body
