"""
Prometheus metrics for the registry transport.

Only low-cardinality labels are used: HTTP method, outcome status and failure
reason. URLs, package ids and versions never become labels.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from nugetkit.connectors.types import RequestOutcome


# Forbidden labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "url",
        "endpoint",
        "path",
        "query",
        "package_id",
        "version",
        "api_key",
        "source",
    }
)


class TransportMetricsExporter:
    """
    Prometheus metrics exporter for AuthenticatedTransport.

    Metric names:
    - nugetkit_transport_attempts_total{method}
    - nugetkit_transport_retries_total{method,reason}
    - nugetkit_transport_outcomes_total{method,status,reason}
    - nugetkit_transport_in_flight

    Usage:
        registry = CollectorRegistry()
        exporter = TransportMetricsExporter(registry=registry)
        transport = AuthenticatedTransport(metrics=exporter)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a private one is created.
        """
        self._registry = registry or CollectorRegistry()

        self._attempts = Counter(
            "nugetkit_transport_attempts",
            "Total HTTP attempts sent by the transport",
            ["method"],
            registry=self._registry,
        )
        self._retries = Counter(
            "nugetkit_transport_retries",
            "Total retries scheduled after a transient failure",
            ["method", "reason"],
            registry=self._registry,
        )
        self._outcomes = Counter(
            "nugetkit_transport_outcomes",
            "Total completed transport calls by final outcome",
            ["method", "status", "reason"],
            registry=self._registry,
        )
        self._in_flight = Gauge(
            "nugetkit_transport_in_flight",
            "Transport calls currently in progress",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def call_started(self) -> None:
        self._in_flight.inc()

    def attempt(self, method: str) -> None:
        self._attempts.labels(method=method.upper()).inc()

    def retry(self, method: str, reason: str) -> None:
        self._retries.labels(method=method.upper(), reason=reason).inc()

    def call_finished(self, method: str, outcome: RequestOutcome) -> None:
        """Record the final outcome of one transport call."""
        self._in_flight.dec()
        reason = outcome.reason.value if outcome.reason is not None else "NONE"
        self._outcomes.labels(
            method=method.upper(),
            status=outcome.status.value,
            reason=reason,
        ).inc()


# Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        "nugetkit_transport_attempts_total",
        "nugetkit_transport_retries_total",
        "nugetkit_transport_outcomes_total",
        "nugetkit_transport_in_flight",
    }
)
