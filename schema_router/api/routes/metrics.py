"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - schema_provision_runs_total{outcome}
    - schema_provision_steps_total{kind, outcome}
    - scoped_operation_latency_ms{outcome}
    - search_path_reset_failures_total
    - slug_resolutions_total{outcome}
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
