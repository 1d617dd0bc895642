"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from schema_router.api.routes.forms import router as forms_router
from schema_router.api.routes.health import router as health_router
from schema_router.api.routes.metrics import router as metrics_router
from schema_router.api.routes.profiles import router as profiles_router
from schema_router.config import get_settings
from schema_router.db.engine import dispose_async_engine
from schema_router.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(get_settings().log_level)
    yield
    await dispose_async_engine()


app = FastAPI(title="Link Pages API", version="0.1.0", lifespan=lifespan)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(forms_router)
app.include_router(profiles_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Link Pages API", "version": "0.1.0"}
