"""Prometheus metrics for schema routing."""

from prometheus_client import Counter, Histogram

provision_runs_total = Counter(
    "schema_provision_runs_total",
    "Total ensure() runs against client schemas",
    ["outcome"],
)

provision_steps_total = Counter(
    "schema_provision_steps_total",
    "Total DDL steps applied while provisioning client schemas",
    ["kind", "outcome"],
)

scoped_latency_ms = Histogram(
    "scoped_operation_latency_ms",
    "Scoped operation latency in milliseconds",
    ["outcome"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500],
)

search_path_reset_failures_total = Counter(
    "search_path_reset_failures_total",
    "Total failures restoring the default search_path",
)

slug_resolutions_total = Counter(
    "slug_resolutions_total",
    "Total slug to client schema resolutions",
    ["outcome"],
)


class PrometheusSchemaMetrics:
    """Prometheus-based schema routing metrics implementation."""

    def inc_provision_run(self, outcome: str) -> None:
        """Increment provisioning run counter."""
        provision_runs_total.labels(outcome=outcome).inc()

    def inc_provision_step(self, kind: str, outcome: str) -> None:
        """Increment DDL step counter."""
        provision_steps_total.labels(kind=kind, outcome=outcome).inc()

    def record_scoped(self, outcome: str, latency_ms: float) -> None:
        """Record scoped operation latency."""
        scoped_latency_ms.labels(outcome=outcome).observe(latency_ms)

    def inc_path_reset_failure(self) -> None:
        """Increment search_path reset failure counter."""
        search_path_reset_failures_total.inc()

    def inc_slug_resolution(self, outcome: str) -> None:
        """Increment slug resolution counter."""
        slug_resolutions_total.labels(outcome=outcome).inc()
