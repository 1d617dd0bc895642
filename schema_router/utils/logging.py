"""Logging setup and structured logging for schema routing."""

import logging
from typing import Any

logger = logging.getLogger("schema_router")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


class StructuredSchemaLogger:
    """Structured logger for provisioning and scoped execution events."""

    def log_ddl_step(self, schema: str, kind: str, target: str, outcome: str) -> None:
        """Log a single provisioning step."""
        log_data: dict[str, Any] = {
            "schema": schema,
            "step": kind,
            "target": target,
            "outcome": outcome,
        }
        log_msg = f"[provision] {schema}: {kind} {target} - {outcome}"

        if outcome == "applied":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})

    def log_scoped(
        self,
        schema: str,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log the outcome of one scoped operation."""
        log_data: dict[str, Any] = {
            "schema": schema,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"[scoped] {schema} - {outcome}"

        if outcome == "success":
            logger.debug(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
